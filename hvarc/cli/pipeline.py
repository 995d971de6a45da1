"""Pipeline orchestration and configuration management for hvarc.

This module handles the high-level pipeline execution, including configuration
file parsing and validation, executable lookup, resource allocation, and the
hand-over to the stage-by-stage driver.
"""

import logging
import os
from collections.abc import Iterable, Mapping, Sequence
from math import floor
from pathlib import Path
from pprint import pformat
from typing import Any

from psutil import cpu_count, virtual_memory

from ..errors import ConfigurationError
from ..plan.chunks import DEFAULT_CHUNK_SIZE
from ..plan.contigs import ContigPolicy
from ..plan.models import Sample
from ..plan.tracks import (
    CnvBackend,
    Track,
    TrackFlags,
    phasing_consumers,
    requires_phasing,
    resolve,
)
from ..task.controller import PrintEnvVersions, small_variant_caller
from .constants import (
    ALIGNMENT_FORMATS,
    GENOME_BUILDS,
    MEMORY_THRESHOLD_MB,
    STR_GENOME_BUILDS,
)
from .driver import PipelineDriver, RunSettings
from .util import (
    build_luigi_tasks,
    fetch_executable,
    print_log,
    print_yml,
    read_yml,
    remove_cache_dirs,
    render_luigi_log_cfg,
)


def run_variant_calling_pipeline(
    config_yml_path: str | os.PathLike[str],
    dest_dir_path: str | os.PathLike[str] | None = None,
    max_n_cpu: int | None = None,
    max_n_worker: int | None = None,
    skip_cleaning: bool = False,
    print_subprocesses: bool = False,
    console_log_level: str = "WARNING",
    file_log_level: str = "DEBUG",
    use_gpu: bool = False,
    phased: bool = False,
    output_gvcf: bool = False,
    all_contigs: bool = False,
    str_enabled: bool = False,
) -> PipelineDriver:
    """Run the variant calling pipeline for every sample in a config file.

    Args:
        config_yml_path: Path to the YAML configuration file
        dest_dir_path: Output directory path (defaults to current directory)
        max_n_cpu: Maximum number of CPUs to use (defaults to system CPU count)
        max_n_worker: Maximum number of parallel workers (defaults to max_n_cpu)
        skip_cleaning: Keep incomplete outputs and cache directories
        print_subprocesses: Print subprocess commands and output
        console_log_level: Console logging level (WARNING, INFO, DEBUG, etc.)
        file_log_level: File logging level (WARNING, INFO, DEBUG, etc.)
        use_gpu: Call small variants with Parabricks DeepVariant
        phased: Phase small variants and haplotag reads
        output_gvcf: Also write gVCF files
        all_contigs: Process all contigs instead of the standard ones
        str_enabled: Genotype short tandem repeats

    Returns:
        The driver holding the final state of every sample

    Raises:
        ConfigurationError: If the requested tracks cannot run with this setup
    """
    logger = logging.getLogger(__name__)
    logger.info("config_yml_path:\t%s", config_yml_path)
    config = _read_config_yml(path=config_yml_path)
    runs = config["runs"]
    logger.info("dest_dir_path:\t%s", dest_dir_path)
    dest_dir = Path(dest_dir_path or ".").resolve()
    log_dir = dest_dir.joinpath("log")

    track_config = config.get("tracks") or {Track.SNP.value: True}
    requested_tracks = frozenset(t for t in Track if track_config.get(t.value))
    flags = TrackFlags(
        phased=bool(phased or config.get("phased")),
        cnv_backend=_parse_cnv_backend(config.get("cnv_backend") or "spectre"),
        str_enabled=str_enabled,
    )
    enabled_tracks = resolve(requested_tracks, flags)
    caller = (
        "deepvariant" if use_gpu else (config.get("small_variant_caller") or "clair3")
    )
    logger.debug(
        "requested_tracks:\t%s, enabled_tracks:\t%s, flags:\t%s, caller:\t%s",
        sorted(t.value for t in requested_tracks),
        sorted(t.value for t in enabled_tracks),
        flags,
        caller,
    )
    resources = config["resources"]
    validate_run_config(
        enabled_tracks=enabled_tracks,
        flags=flags,
        genome_build=(config.get("genome_build") or "hg38"),
        caller=caller,
        clair3_model_path=(config.get("clair3") or {}).get("model_path"),
        str_loci_bed_path=resources.get("str_loci_bed"),
        alignment_format=(config.get("alignment_format") or "bam"),
    )

    command_dict = resolve_executables(
        enabled_tracks=enabled_tracks, flags=flags, caller=caller
    )
    logger.debug("command_dict:%s%s", os.linesep, pformat(command_dict))

    n_cpu = cpu_count()
    max_cpu = int(max_n_cpu or n_cpu)
    n_worker = max(1, min(int(max_n_worker or max_cpu), max_cpu))
    n_cpu_per_worker = max(1, floor(max_cpu / n_worker))
    memory_mb = virtual_memory().total / 1024 / 1024
    if memory_mb / n_worker < MEMORY_THRESHOLD_MB:
        logger.warning(
            "memory per worker is below %d MB:\t%d MB",
            MEMORY_THRESHOLD_MB,
            memory_mb / n_worker,
        )

    sh_config = {
        "log_dir_path": str(log_dir),
        "remove_if_failed": (not skip_cleaning),
        "quiet": (not print_subprocesses),
        "executable": fetch_executable("bash"),
    }
    logger.debug("sh_config:%s%s", os.linesep, pformat(sh_config))

    resource_path_dict = {
        k: (_resolve_file_path(resources[k]) if resources.get(k) else "")
        for k in [
            "reference_fa", "region_bed", "str_loci_bed", "reference_variants_vcf"
        ]
    }
    logger.debug("resource_path_dict:%s%s", os.linesep, pformat(resource_path_dict))

    samples = [
        _determine_input_sample(run_dict=r, fa_path=resource_path_dict["reference_fa"])
        for r in runs
    ]
    logger.debug("samples:%s%s", os.linesep, pformat(samples))

    clair3_config = config.get("clair3") or {}
    caller_config = (
        {
            "model_path": str(Path(clair3_config["model_path"]).resolve()),
            "platform": (clair3_config.get("platform") or "ont"),
            "chunk_size": int(clair3_config.get("chunk_size") or DEFAULT_CHUNK_SIZE),
            **{k: v for k, v in command_dict.items() if k == "run_clair3"},
        }
        if caller == "clair3" and Track.SNP in enabled_tracks
        else {k: v for k, v in command_dict.items() if k == "pbrun"}
    )
    contig_policy = (
        ContigPolicy.ALL
        if (all_contigs or config.get("include_all_contigs"))
        else ContigPolicy.STANDARD
    )
    run_params = {
        "reference_name": (config.get("reference_name") or ""),
        "genome_build": (config.get("genome_build") or "hg38"),
        "small_variant_caller": caller,
        "phased": flags.phased,
        "cnv_backend": flags.cnv_backend.value,
        "output_gvcf": bool(output_gvcf or config.get("output_gvcf")),
        "contig_policy": contig_policy.value,
        "resources": resource_path_dict,
    }

    print_log(f"Call variants from long-read alignments:\t{dest_dir}")
    print_yml([
        {
            "config": [
                {"requested_tracks": sorted(t.value for t in requested_tracks)},
                {"enabled_tracks": sorted(t.value for t in enabled_tracks)},
                {
                    "phasing": sorted(
                        t.value for t in phasing_consumers(enabled_tracks, flags)
                    )
                },
                {"small_variant_caller": caller},
                {"n_worker": n_worker},
                {"n_cpu": n_cpu},
                {"memory_mb": int(memory_mb)},
            ]
        },
        {
            "input": [
                {"n_sample": len(samples)},
                {"samples": [s.alias for s in samples]},
            ]
        },
    ])
    log_cfg_path = str(log_dir.joinpath("luigi.log.cfg"))
    log_txt_path = render_luigi_log_cfg(
        log_cfg_path=log_cfg_path,
        console_log_level=console_log_level,
        file_log_level=file_log_level,
    )
    print_log(f"Luigi log:\t{log_txt_path}")

    build_luigi_tasks(
        tasks=[
            PrintEnvVersions(
                command_paths=list(command_dict.values()), sh_config=sh_config
            )
        ],
        workers=1,
        log_level=console_log_level,
        logging_conf_file=log_cfg_path,
        hide_summary=True,
    )
    driver = PipelineDriver(
        samples=samples,
        settings=RunSettings(
            dest_dir_path=str(dest_dir),
            requested_tracks=requested_tracks,
            flags=flags,
            contig_policy=contig_policy,
            small_variant_caller=caller,
            caller_config=caller_config,
            output_gvcf=run_params["output_gvcf"],
            bed_path=resource_path_dict["region_bed"],
            str_loci_bed_path=resource_path_dict["str_loci_bed"],
            reference_variants_vcf_path=resource_path_dict["reference_variants_vcf"],
            genome_build=run_params["genome_build"],
            alignment_format=(config.get("alignment_format") or "bam"),
            commands=command_dict,
            n_cpu=n_cpu_per_worker,
            n_worker=n_worker,
            sh_config=sh_config,
            run_params=run_params,
            log_level=console_log_level,
            logging_conf_file=log_cfg_path,
        ),
    )
    driver.run()
    if not skip_cleaning:
        remove_cache_dirs(dest_dir)
    return driver


def validate_run_config(
    enabled_tracks: Iterable[Track],
    flags: TrackFlags,
    genome_build: str = "hg38",
    caller: str = "clair3",
    clair3_model_path: str | None = None,
    str_loci_bed_path: str | None = None,
    alignment_format: str = "bam",
) -> None:
    """Check that the enabled tracks can run before anything is scheduled.

    Args:
        enabled_tracks: Tracks resolved from the request
        flags: Run-level flags
        genome_build: Reference build label
        caller: Small-variant calling backend
        clair3_model_path: Clair3 model directory
        str_loci_bed_path: Repeat loci for STR genotyping
        alignment_format: Format of the haplotagged alignment

    Raises:
        ConfigurationError: If a track/build combination is unsupported or a
            backend resource is missing
    """
    enabled_tracks = frozenset(enabled_tracks)
    if genome_build not in GENOME_BUILDS:
        msg = f"Unsupported genome build: {genome_build}"
        raise ConfigurationError(msg)
    elif alignment_format not in ALIGNMENT_FORMATS:
        msg = f"Unsupported alignment format: {alignment_format}"
        raise ConfigurationError(msg)
    if Track.STR in enabled_tracks:
        if genome_build not in STR_GENOME_BUILDS:
            msg = f"STR genotyping is not supported for {genome_build}"
            raise ConfigurationError(msg)
        elif not (str_loci_bed_path and Path(str_loci_bed_path).is_file()):
            msg = f"STR loci BED not found: {str_loci_bed_path}"
            raise ConfigurationError(msg)
    if Track.SNP in enabled_tracks:
        small_variant_caller(caller)
        if caller == "deepvariant":
            for c in ["nvidia-smi", "pbrun"]:
                if not fetch_executable(c, ignore_errors=True):
                    msg = f"DeepVariant requires a GPU host with {c}"
                    raise ConfigurationError(msg)
        elif not (clair3_model_path and Path(clair3_model_path).is_dir()):
            msg = f"Clair3 model directory not found: {clair3_model_path}"
            raise ConfigurationError(msg)
    logging.getLogger(__name__).debug(
        "phasing required:\t%s", requires_phasing(enabled_tracks, flags)
    )


def resolve_executables(
    enabled_tracks: Iterable[Track], flags: TrackFlags, caller: str = "clair3"
) -> dict[str, str]:
    """Locate the executables needed by the enabled tracks.

    Returns:
        Executable paths keyed by the task parameter that takes them

    Raises:
        RuntimeError: If an executable is not found in PATH
    """
    enabled_tracks = frozenset(enabled_tracks)
    commands = {"bcftools": "bcftools", "bgzip": "bgzip", "samtools": "samtools"}
    commands["tabix"] = "tabix"
    if Track.SNP in enabled_tracks:
        if caller == "deepvariant":
            commands["pbrun"] = "pbrun"
        else:
            commands["run_clair3"] = "run_clair3.sh"
        if requires_phasing(enabled_tracks, flags):
            commands["whatshap"] = "whatshap"
    if Track.SV in enabled_tracks:
        commands["sniffles"] = "sniffles"
    if Track.CNV in enabled_tracks:
        if flags.cnv_backend is CnvBackend.SPECTRE:
            commands["mosdepth"] = "mosdepth"
            commands["spectre"] = "spectre"
        else:
            commands["run_qdnaseq"] = "run_qdnaseq.r"
    if Track.STR in enabled_tracks:
        commands["straglr"] = "straglr-genotype"
    if Track.MOD in enabled_tracks:
        commands["modkit"] = "modkit"
    return {k: fetch_executable(v) for k, v in commands.items()}


def _parse_cnv_backend(name: str) -> CnvBackend:
    try:
        return CnvBackend(name)
    except ValueError as e:
        msg = f"Unknown CNV backend: {name}"
        raise ConfigurationError(msg) from e


def _read_config_yml(path: str | os.PathLike[str]) -> dict[str, Any]:
    """Read and validate the YAML configuration file.

    Args:
        path: Path to the YAML configuration file

    Returns:
        Validated configuration dictionary

    Raises:
        ValueError: If the configuration is invalid or malformed
        TypeError: If configuration values have incorrect types
    """
    config = read_yml(path=Path(path).resolve())
    if not (isinstance(config, dict) and config.get("resources")):
        msg = f"Invalid config structure: {config}"
        raise ValueError(msg)
    if not isinstance(config["resources"], dict):
        msg = f"Invalid resources structure: {config['resources']}"
        raise TypeError(msg)
    if not isinstance(config["resources"].get("reference_fa"), str):
        msg = f"Expected string for reference_fa, got {config['resources']}"
        raise TypeError(msg)
    for k in ["region_bed", "str_loci_bed", "reference_variants_vcf"]:
        v = config["resources"].get(k)
        if v is not None and not isinstance(v, str):
            msg = f"Expected string for {k}, got {type(v)}"
            raise TypeError(msg)
    for k in ["tracks", "clair3"]:
        if config.get(k) is not None and not isinstance(config[k], dict):
            msg = f"Expected dict for {k}, got {type(config[k])}"
            raise TypeError(msg)
    unknown_tracks = set(config.get("tracks") or {}) - {t.value for t in Track}
    if unknown_tracks:
        msg = f"Unknown tracks: {sorted(unknown_tracks)}"
        raise ValueError(msg)
    for k in ["phased", "output_gvcf", "include_all_contigs"]:
        if config.get(k) is not None and not isinstance(config[k], bool):
            msg = f"Expected bool for {k}, got {type(config[k])}"
            raise TypeError(msg)
    if not config.get("runs"):
        msg = f"Missing 'runs' in config: {config}"
        raise ValueError(msg)
    if not isinstance(config["runs"], list):
        msg = f"Expected list for runs, got {type(config['runs'])}"
        raise TypeError(msg)
    for r in config["runs"]:
        if not isinstance(r, dict):
            msg = f"Expected dict for run, got {type(r)}: {r}"
            raise TypeError(msg)
        if not r.get("alignment"):
            msg = f"Missing 'alignment' in run: {r}"
            raise ValueError(msg)
        if not str(r["alignment"]).endswith((".bam", ".cram")):
            msg = f"alignment must be a BAM or CRAM file: {r['alignment']}"
            raise ValueError(msg)
    if not _has_unique_elements([_sample_alias(r) for r in config["runs"]]):
        msg = "Duplicate sample aliases found in runs"
        raise ValueError(msg)
    return config


def _has_unique_elements(elements: Sequence[object]) -> bool:
    return len(set(elements)) == len(tuple(elements))


def _resolve_file_path(path: str | os.PathLike[str]) -> str:
    """Resolve and validate a file path.

    Args:
        path: File path to resolve

    Returns:
        Absolute path string

    Raises:
        FileNotFoundError: If the file does not exist
    """
    p = Path(path).resolve()
    if not p.is_file():
        msg = f"file not found: {p}"
        raise FileNotFoundError(msg)
    return str(p)


def _sample_alias(run_dict: Mapping[str, Any]) -> str:
    alignment_name = Path(run_dict["alignment"]).name
    return str(run_dict.get("alias") or alignment_name.split(".")[0])


def _determine_input_sample(run_dict: Mapping[str, Any], fa_path: str) -> Sample:
    """Build a Sample from a run entry.

    Missing alignments are not checked here; the driver fails such samples
    individually.
    """
    return Sample(
        alias=_sample_alias(run_dict),
        alignment_path=str(Path(run_dict["alignment"]).resolve()),
        fa_path=fa_path,
        bed_path=(
            str(Path(run_dict["bed"]).resolve()) if run_dict.get("bed") else None
        ),
        sex=(run_dict.get("sex") or None),
    )
