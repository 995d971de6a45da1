"""Resource preparation tasks for the hvarc pipeline.

This module provides Luigi tasks that make the shared, read-only resources
usable by every sample: the indexed reference FASTA and the optional
reference-variant database.
"""

import re
from pathlib import Path

import luigi

from .core import HvarcTask
from .samtools import SamtoolsFaidx


class FetchReferenceFasta(luigi.WrapperTask):
    """Luigi wrapper task ensuring a reference FASTA has a samtools index.

    Parameters:
        fa_path: Path to the reference FASTA file.
        samtools: Path to the samtools executable.
        sh_config: Shell configuration parameters.
    """

    fa_path = luigi.Parameter()
    samtools = luigi.Parameter(default="samtools")
    sh_config = luigi.DictParameter(default={})
    priority = 100

    def requires(self) -> luigi.Task:
        return SamtoolsFaidx(
            fa_path=self.fa_path, samtools=self.samtools, sh_config=self.sh_config
        )

    def output(self) -> list[luigi.LocalTarget]:
        """Return the FASTA and its index.

        Returns:
            list[luigi.LocalTarget]: Reference FASTA and FASTA index (.fai).
        """
        return [luigi.LocalTarget(Path(self.fa_path).resolve()), self.input()]


class FetchResourceVcf(HvarcTask):
    """Luigi task for bgzip-compressing and indexing a resource VCF.

    The copy is written to ``dest_dir_path`` so the source is never modified.

    Parameters:
        src_path: Path to the source VCF file.
        dest_dir_path: Output directory.
        bgzip: Path to the bgzip executable.
        tabix: Path to the tabix executable.
        n_cpu: Number of CPU threads to use.
        sh_config: Shell configuration parameters.
    """

    src_path = luigi.Parameter()
    dest_dir_path = luigi.Parameter(default=".")
    bgzip = luigi.Parameter(default="bgzip")
    tabix = luigi.Parameter(default="tabix")
    n_cpu = luigi.IntParameter(default=1)
    sh_config = luigi.DictParameter(default={})
    priority = 100

    def output(self) -> list[luigi.LocalTarget]:
        dest_vcf = (
            Path(self.dest_dir_path)
            .resolve()
            .joinpath(re.sub(r"\.(gz|bgz)$", "", Path(self.src_path).name) + ".gz")
        )
        return [luigi.LocalTarget(f"{dest_vcf}{s}") for s in ["", ".tbi"]]

    def run(self) -> None:
        dest_vcf = Path(self.output()[0].path)
        run_id = Path(dest_vcf.stem).stem
        self.print_log(f"Prepare a resource VCF:\t{run_id}")
        self.setup_shell(
            run_id=run_id,
            commands=[self.bgzip, self.tabix],
            cwd=dest_vcf.parent,
            **self.sh_config,
        )
        self.run_shell(
            args=(
                f"set -e && cp {self.src_path} {dest_vcf}"
                if self.src_path.endswith((".gz", ".bgz"))
                else (
                    f"set -e && {self.bgzip} -@ {self.n_cpu}"
                    f" -c {self.src_path} > {dest_vcf}"
                )
            ),
            input_files_or_dirs=self.src_path,
            output_files_or_dirs=dest_vcf,
        )
        self.tabix_index(vcf_gz_path=dest_vcf, tabix=self.tabix)


if __name__ == "__main__":
    luigi.run()
