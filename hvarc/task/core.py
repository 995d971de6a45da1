"""Core base classes and shared functionality for hvarc Luigi tasks.

This module provides the shell-backed task base classes used to invoke the
external calling, phasing, and alignment tools, and helpers shared across the
alignment and call-set tasks.
"""

import logging
import os
import sys
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, datetime, timedelta
from pathlib import Path

import luigi
from shoper.shelloperator import ShellOperator

from ..plan.models import alignment_index_path


class ShellTask(luigi.Task, ABC):
    """Abstract base class for Luigi tasks that execute shell commands.

    Commands run through shoper's ShellOperator, which logs them, checks the
    declared input and output files, and removes outputs of failed commands.

    Attributes:
        retry_count: Number of times to retry the task on failure (default: 0).
    """

    retry_count = 0

    def __init__(self, *args: object, **kwargs: object) -> None:
        super().__init__(*args, **kwargs)
        self.initialize_shell()

    @luigi.Task.event_handler(luigi.Event.PROCESSING_TIME)
    def print_execution_time(self, processing_time: float) -> None:
        """Print task execution time when task completes.

        Args:
            processing_time: Total processing time in seconds
        """
        logger = logging.getLogger("task-timer")
        message = (
            f"{self.__class__.__module__}.{self.__class__.__name__} - "
            f"total elapsed time:\t{timedelta(seconds=processing_time)}"
        )
        logger.info(message)
        print(message, flush=True)

    @classmethod
    def print_log(cls, message: str, new_line: bool = True) -> None:
        logger = logging.getLogger(cls.__name__)
        logger.info(message)
        print((os.linesep if new_line else "") + f">>\t{message}", flush=True)

    @classmethod
    def initialize_shell(cls) -> None:
        cls.__log_txt_path = None
        cls.__sh = None
        cls.__run_kwargs = None

    @classmethod
    def setup_shell(
        cls,
        run_id: str | int | None = None,
        log_dir_path: str | os.PathLike[str] | None = None,
        commands: str | Sequence[str] | None = None,
        cwd: str | os.PathLike[str] | None = None,
        remove_if_failed: bool = True,
        clear_log_txt: bool = False,
        print_command: bool = True,
        quiet: bool = True,
        executable: str = "/bin/bash",
        env: Mapping[str, str] | None = None,
        **kwargs: object,
    ) -> None:
        """Configure the shell and print the versions of the given commands.

        Args:
            run_id: Identifier used in the shell log file name
            log_dir_path: Directory to store shell log files
            commands: Executables whose versions are printed
            cwd: Working directory for shell execution
            remove_if_failed: Remove output files if a command fails
            clear_log_txt: Clear the log file before writing
            print_command: Print commands before execution
            quiet: Suppress stdout from commands
            executable: Shell executable to use
            env: Environment variables added to the current environment
            **kwargs: Default keyword arguments for every run_shell call
        """
        cls.__log_txt_path = (
            str(
                Path(log_dir_path)
                .joinpath(f"{cls.__module__}.{cls.__name__}.{run_id}.sh.log.txt")
                .resolve()
            )
            if log_dir_path and run_id
            else None
        )
        cls.__sh = ShellOperator(
            log_txt=cls.__log_txt_path,
            quiet=quiet,
            clear_log_txt=clear_log_txt,
            logger=logging.getLogger(cls.__name__),
            print_command=print_command,
            executable=executable,
        )
        cls.__run_kwargs = {
            "cwd": cwd,
            "remove_if_failed": remove_if_failed,
            "env": (
                {**env, **{k: v for k, v in os.environ.items() if k not in env}}
                if env
                else dict(os.environ)
            ),
            **kwargs,
        }
        cls.make_dirs(log_dir_path, cwd)
        if commands:
            cls.run_shell(args=list(cls.generate_version_commands(commands)))

    @classmethod
    def make_dirs(cls, *paths: object) -> None:
        for p in paths:
            if p:
                d = Path(str(p)).resolve()
                if not d.is_dir():
                    cls.print_log(f"Make a directory:\t{d}", new_line=False)
                    d.mkdir(parents=True, exist_ok=True)

    @classmethod
    def run_shell(cls, *args: object, **kwargs: object) -> None:
        """Execute shell commands using the configured ShellOperator.

        Args:
            *args: Arguments to pass to the shell operator
            **kwargs: Keyword arguments overriding the setup_shell defaults
        """
        logger = logging.getLogger(cls.__name__)
        start_datetime = datetime.now(UTC)
        cls.__sh.run(
            *args,
            **kwargs,
            **{k: v for k, v in cls.__run_kwargs.items() if k not in kwargs},
        )
        elapsed_timedelta = datetime.now(UTC) - start_datetime
        message = f"shell elapsed time:\t{elapsed_timedelta}"
        logger.info(message)
        if cls.__log_txt_path:
            with Path(cls.__log_txt_path).open("a", encoding="utf-8") as f:
                f.write(f"### {message}{os.linesep}")

    @classmethod
    def remove_files_and_dirs(cls, *paths: str | os.PathLike[str]) -> None:
        targets = [Path(str(p)) for p in paths if Path(str(p)).exists()]
        if targets:
            cls.run_shell(
                args=" ".join([
                    "rm",
                    ("-rf" if [t for t in targets if t.is_dir()] else "-f"),
                    *[str(t) for t in targets],
                ])
            )

    @classmethod
    def print_env_versions(cls) -> None:
        """Print version information for Python and the operating system."""
        python = sys.executable
        version_files = [
            Path("/proc/version"),
            *[
                o
                for o in Path("/etc").iterdir()
                if o.name.endswith(("-release", "_version"))
            ],
        ]
        cls.run_shell(
            args=[
                f"{python} --version",
                f"{python} -m pip --version",
                f"{python} -m pip freeze --no-cache-dir",
                "uname -a",
                *[f"cat {o}" for o in version_files if o.is_file()],
            ]
        )

    @staticmethod
    @abstractmethod
    def generate_version_commands(commands: str | Sequence[str]) -> Iterable[str]:
        raise NotImplementedError


class HvarcTask(ShellTask):
    """Base task class for hvarc pipeline operations.

    Adds version commands for the calling, phasing, and alignment tools, and
    helpers for indexing alignments and call sets.
    """

    @staticmethod
    def generate_version_commands(commands: str | Sequence[str]) -> Iterable[str]:
        """Generate version checking commands for the given executables.

        Args:
            commands: Command name(s) to generate version commands for

        Yields:
            Version checking command strings
        """
        for c in [commands] if isinstance(commands, str) else commands:
            n = Path(c).name
            if n == "pbrun":
                yield f"{c} version"
            elif n in {"tabix", "bgzip"}:
                yield f"{c} --version | head -1"
            elif n == "straglr-genotype":
                yield f"{c} --help | head -1"
            elif n == "spectre":
                yield f"{c} version"
            elif n.endswith(".r"):
                yield "Rscript --version"
            else:
                yield f"{c} --version"

    @classmethod
    def samtools_index(
        cls,
        sam_path: str | os.PathLike[str],
        samtools: str = "samtools",
        n_cpu: int = 1,
    ) -> None:
        """Index a BAM/CRAM file using samtools.

        Args:
            sam_path: Path to a BAM/CRAM file
            samtools: Path to samtools executable
            n_cpu: Number of CPU threads to use
        """
        cls.run_shell(
            args=(
                f"set -e && {samtools} quickcheck -v {sam_path}"
                f" && {samtools} index -@ {n_cpu} {sam_path}"
            ),
            input_files_or_dirs=sam_path,
            output_files_or_dirs=alignment_index_path(str(sam_path)),
        )

    @classmethod
    def samtools_view(
        cls,
        input_sam_path: str | os.PathLike[str],
        fa_path: str | os.PathLike[str],
        output_sam_path: str | os.PathLike[str],
        samtools: str = "samtools",
        n_cpu: int = 1,
        add_args: str | Sequence[str] | None = None,
        regions: Sequence[str] | None = None,
        index_sam: bool = False,
    ) -> None:
        """Write (a slice of) an alignment with samtools view.

        Args:
            input_sam_path: Input BAM/CRAM file path
            fa_path: Reference FASTA file path
            output_sam_path: Output BAM/CRAM file path
            samtools: Path to samtools executable
            n_cpu: Number of CPU threads to use
            add_args: Additional arguments for samtools view
            regions: Regions to extract (all reads if omitted)
            index_sam: Create an index for the output file
        """
        cls.run_shell(
            args=(
                f"set -e && {samtools} quickcheck -v {input_sam_path}"
                f" && {samtools} view -@ {n_cpu} -T {fa_path}"
                + " -{}".format("C" if str(output_sam_path).endswith(".cram") else "b")
                + (
                    "".join(
                        f" {a}"
                        for a in ([add_args] if isinstance(add_args, str) else add_args)
                    )
                    if add_args
                    else ""
                )
                + f" -o {output_sam_path} {input_sam_path}"
                + "".join(f" {r}" for r in (regions or []))
            ),
            input_files_or_dirs=[input_sam_path, fa_path, f"{fa_path}.fai"],
            output_files_or_dirs=output_sam_path,
        )
        if index_sam:
            cls.samtools_index(sam_path=output_sam_path, samtools=samtools, n_cpu=n_cpu)

    @classmethod
    def tabix_index(
        cls, vcf_gz_path: str | os.PathLike[str], tabix: str = "tabix"
    ) -> None:
        cls.run_shell(
            args=f"set -e && {tabix} --preset vcf {vcf_gz_path}",
            input_files_or_dirs=vcf_gz_path,
            output_files_or_dirs=f"{vcf_gz_path}.tbi",
        )

    @classmethod
    def compress_and_index_vcf(
        cls,
        input_vcf_path: str | os.PathLike[str],
        output_vcf_gz_path: str | os.PathLike[str],
        bcftools: str = "bcftools",
        tabix: str = "tabix",
        n_cpu: int = 1,
        remove_input: bool = True,
    ) -> None:
        """Write a bgzipped, tabix-indexed copy of a coordinate-sorted VCF.

        tabix rejects unsorted input, so a successful call guarantees a
        coordinate-sorted, indexed call set.

        Args:
            input_vcf_path: VCF or VCF.gz file path
            output_vcf_gz_path: Output VCF.gz file path
            bcftools: Path to bcftools executable
            tabix: Path to tabix executable
            n_cpu: Number of CPU threads to use
            remove_input: Remove the input file afterwards
        """
        cls.run_shell(
            args=(
                f"set -e && {bcftools} view --no-version --threads {n_cpu}"
                f" -O z -o {output_vcf_gz_path} {input_vcf_path}"
            ),
            input_files_or_dirs=input_vcf_path,
            output_files_or_dirs=output_vcf_gz_path,
        )
        cls.tabix_index(vcf_gz_path=output_vcf_gz_path, tabix=tabix)
        if remove_input:
            cls.remove_files_and_dirs(input_vcf_path)
