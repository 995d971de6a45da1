"""High-level controller tasks for hvarc.

This module provides the environment report printed at the start of a run and
the wrapper that dispatches small-variant calling to a backend by name.
"""

from pathlib import Path
from socket import gethostname

import luigi

from ..errors import ConfigurationError
from .caller import SmallVariantCallTask
from .clair3 import CallSmallVariantsWithClair3
from .core import HvarcTask
from .deepvariant import CallSmallVariantsWithDeepVariant

SMALL_VARIANT_CALLERS: dict[str, type[SmallVariantCallTask]] = {
    "clair3": CallSmallVariantsWithClair3,
    "deepvariant": CallSmallVariantsWithDeepVariant,
}


class PrintEnvVersions(HvarcTask):
    """Luigi task for printing environment and tool versions.

    Parameters:
        command_paths: List of command executables to check versions.
        run_id: Identifier for this run (defaults to hostname).
        sh_config: Shell configuration parameters.
    """

    command_paths = luigi.ListParameter(default=[])
    run_id = luigi.Parameter(default=gethostname())
    sh_config = luigi.DictParameter(default={})
    __is_completed: bool = False

    def complete(self) -> bool:
        return self.__is_completed

    def run(self) -> None:
        self.print_log(f"Print environment versions:\t{self.run_id}")
        self.setup_shell(
            run_id=self.run_id, commands=self.command_paths, **self.sh_config
        )
        self.print_env_versions()
        self.__is_completed = True


def small_variant_caller(name: str) -> type[SmallVariantCallTask]:
    """Look up a small-variant calling backend by name.

    Raises:
        ConfigurationError: If no backend has that name
    """
    try:
        return SMALL_VARIANT_CALLERS[name]
    except KeyError as e:
        msg = (
            f"Unknown small-variant caller: {name}"
            f" (choose from {', '.join(SMALL_VARIANT_CALLERS)})"
        )
        raise ConfigurationError(msg) from e


class CallSmallVariants(luigi.WrapperTask):
    """Luigi wrapper task calling small variants with the selected backend.

    Both backends share one output contract, so consumers never depend on
    which one ran.

    Parameters:
        alignment_path: Coordinate-sorted BAM/CRAM file.
        fa_path: Reference FASTA file.
        sample_name: Sample identifier.
        dest_dir_path: Output directory.
        bed_path: Optional region filter ("" for none).
        contig_names: Contigs to call (empty for all in the FASTA index).
        output_gvcf: Also write a gVCF.
        caller: Backend name (clair3 or deepvariant).
        caller_config: Backend-specific parameters.
        bcftools: Path to the bcftools executable.
        tabix: Path to the tabix executable.
        n_cpu: Number of CPU threads to use.
        sh_config: Shell configuration parameters.
    """

    alignment_path = luigi.Parameter()
    fa_path = luigi.Parameter()
    sample_name = luigi.Parameter()
    dest_dir_path = luigi.Parameter(default=".")
    bed_path = luigi.Parameter(default="")
    contig_names = luigi.ListParameter(default=[])
    output_gvcf = luigi.BoolParameter(default=False)
    caller = luigi.Parameter(default="clair3")
    caller_config = luigi.DictParameter(default={})
    bcftools = luigi.Parameter(default="bcftools")
    tabix = luigi.Parameter(default="tabix")
    n_cpu = luigi.IntParameter(default=1)
    sh_config = luigi.DictParameter(default={})
    priority = 70

    def requires(self) -> SmallVariantCallTask:
        return small_variant_caller(self.caller)(
            alignment_path=self.alignment_path,
            fa_path=self.fa_path,
            sample_name=self.sample_name,
            dest_dir_path=str(Path(self.dest_dir_path).resolve()),
            bed_path=self.bed_path,
            contig_names=self.contig_names,
            output_gvcf=self.output_gvcf,
            bcftools=self.bcftools,
            tabix=self.tabix,
            n_cpu=self.n_cpu,
            sh_config=self.sh_config,
            **self.caller_config,
        )

    def output(self) -> list[luigi.LocalTarget]:
        return self.input()
