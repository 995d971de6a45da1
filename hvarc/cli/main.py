#!/usr/bin/env python
"""
Human Variation Workflow Executor for Long-read Sequencing

Usage:
    hvarc init [--debug|--info] [--yml=<path>]
    hvarc run [--debug|--info] [--yml=<path>] [--cpus=<int>]
        [--workers=<int>] [--skip-cleaning] [--print-subprocesses]
        [--use-gpu] [--phased] [--gvcf] [--all-contigs] [--str]
        [--dest-dir=<path>]
    hvarc contigs [--debug|--info] [--all-contigs] <fa_path>
    hvarc tracks [--debug|--info] [--phased] [--str]
        [--cnv-backend=<name>] <track>...
    hvarc -h|--help
    hvarc --version

Commands:
    init                    Create a config YAML template
    run                     Call variants from aligned long reads
                            (Call small variants, phase, haplotag, and run the
                             other requested tracks)
    contigs                 Print the contigs selected from a FASTA index
    tracks                  Print the tracks enabled by a request

Options:
    -h, --help              Print help and exit
    --version               Print version and exit
    --debug, --info         Execute a command with debug|info messages
    --yml=<path>            Specify a config YAML path [default: hvarc.yml]
    --cpus=<int>            Limit CPU cores used
    --workers=<int>         Specify the maximum number of workers [default: 1]
    --skip-cleaning         Skip incomplete file removal when a task fails
    --print-subprocesses    Print STDOUT/STDERR outputs from subprocesses
    --use-gpu               Call small variants with Parabricks DeepVariant
    --phased                Phase small variants and haplotag reads
    --gvcf                  Write gVCF files as well
    --all-contigs           Include non-standard contigs
    --str                   Genotype short tandem repeats
    --cnv-backend=<name>    Specify the CNV backend (spectre|qdnaseq)
                            [default: spectre]
    --dest-dir=<path>       Specify a destination directory path [default: .]

Args:
    <fa_path>               Path to a reference FASTA file
                            (The index is required.)
    <track>                 Track name (snp|sv|cnv|str|mod)
"""

import logging
import os
import sys

from docopt import docopt

from .. import __version__
from ..errors import ConfigurationError
from ..plan.contigs import ContigPolicy, resolve_contig_set
from ..plan.tracks import CnvBackend, Track, TrackFlags, phasing_consumers, resolve
from .pipeline import run_variant_calling_pipeline
from .util import print_log, print_yml, write_config_yml


def main() -> None:
    args = docopt(__doc__, version=__version__)
    if args["--debug"]:
        log_level = "DEBUG"
    elif args["--info"]:
        log_level = "INFO"
    else:
        log_level = "WARNING"
    logging.basicConfig(
        format="%(asctime)s %(levelname)-8s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        level=log_level,
    )
    logger = logging.getLogger(__name__)
    logger.debug(f"args:{os.linesep}{args}")
    if args["init"]:
        write_config_yml(path=args["--yml"])
    elif args["run"]:
        try:
            driver = run_variant_calling_pipeline(
                config_yml_path=args["--yml"],
                dest_dir_path=args["--dest-dir"],
                max_n_cpu=args["--cpus"],
                max_n_worker=args["--workers"],
                skip_cleaning=args["--skip-cleaning"],
                print_subprocesses=args["--print-subprocesses"],
                console_log_level=log_level,
                use_gpu=args["--use-gpu"],
                phased=args["--phased"],
                output_gvcf=args["--gvcf"],
                all_contigs=args["--all-contigs"],
                str_enabled=args["--str"],
            )
        except ConfigurationError as e:
            logger.critical(str(e))
            sys.exit(1)
        for r in driver.runs:
            if r.failure:
                logger.critical(str(r.failure))
        for alias, tracks in driver.failed_tracks().items():
            logger.error(
                "%s: failed tracks: %s", alias, ", ".join(t.value for t in tracks)
            )
        if any(r.failure for r in driver.runs):
            sys.exit(1)
        print_log(f"Completed:\t{len(driver.runs)} sample(s)")
    elif args["contigs"]:
        contig_set = resolve_contig_set(
            args["<fa_path>"],
            policy=(
                ContigPolicy.ALL if args["--all-contigs"] else ContigPolicy.STANDARD
            ),
        )
        print_yml([{c.name: c.length} for c in contig_set])
    elif args["tracks"]:
        try:
            requested = frozenset(Track(t) for t in args["<track>"])
            flags = TrackFlags(
                phased=args["--phased"],
                cnv_backend=CnvBackend(args["--cnv-backend"]),
                str_enabled=args["--str"],
            )
        except ValueError as e:
            logger.critical(str(e))
            sys.exit(1)
        enabled = resolve(requested, flags)
        print_yml({
            "enabled_tracks": [t.value for t in Track if t in enabled],
            "phasing": [
                t.value for t in Track if t in phasing_consumers(enabled, flags)
            ],
        })
