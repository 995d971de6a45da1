"""WhatsHap phasing and haplotagging tasks for the hvarc pipeline.

Phasing runs once per sample; every consumer of the phased call set requires
the same PhaseVariants task, which Luigi deduplicates by its parameters.
Haplotagging then fans out per contig.
"""

from pathlib import Path

import luigi
from luigi.util import requires

from ..plan.contigs import read_site_counts, select_haplotag_contigs
from ..plan.models import alignment_index_path
from .core import HvarcTask


class PhaseVariants(HvarcTask):
    """Luigi task for phasing a sample's small-variant calls with WhatsHap.

    Parameters:
        input_vcf_path: Unphased call set (bgzipped, indexed).
        alignment_path: Sample BAM/CRAM file.
        fa_path: Reference FASTA file.
        sample_name: Sample identifier.
        dest_dir_path: Output directory.
        whatshap: Path to the whatshap executable.
        tabix: Path to the tabix executable.
        add_phase_args: Additional arguments for whatshap phase.
        sh_config: Shell configuration parameters.
    """

    input_vcf_path = luigi.Parameter()
    alignment_path = luigi.Parameter()
    fa_path = luigi.Parameter()
    sample_name = luigi.Parameter()
    dest_dir_path = luigi.Parameter(default=".")
    whatshap = luigi.Parameter(default="whatshap")
    tabix = luigi.Parameter(default="tabix")
    add_phase_args = luigi.ListParameter(default=["--ignore-read-groups"])
    sh_config = luigi.DictParameter(default={})
    priority = 60

    def output(self) -> list[luigi.LocalTarget]:
        phased_vcf = (
            Path(self.dest_dir_path)
            .resolve()
            .joinpath(f"{self.sample_name}.wf_snp.phased.vcf.gz")
        )
        return [luigi.LocalTarget(f"{phased_vcf}{s}") for s in ["", ".tbi"]]

    def run(self) -> None:
        phased_vcf = Path(self.output()[0].path)
        run_id = self.sample_name
        self.print_log(f"Phase small variants:\t{run_id}")
        self.setup_shell(
            run_id=run_id,
            commands=self.whatshap,
            cwd=phased_vcf.parent,
            **self.sh_config,
        )
        self.run_shell(
            args=(
                f"set -e && {self.whatshap} phase"
                + f" --reference {self.fa_path}"
                + "".join(f" {a}" for a in self.add_phase_args)
                + f" --output {phased_vcf}"
                + f" {self.input_vcf_path} {self.alignment_path}"
            ),
            input_files_or_dirs=[
                self.input_vcf_path,
                self.alignment_path,
                self.fa_path,
            ],
            output_files_or_dirs=phased_vcf,
        )
        self.tabix_index(vcf_gz_path=phased_vcf, tabix=self.tabix)


@requires(PhaseVariants)
class CountPhasedSitesPerContig(HvarcTask):
    """Luigi task counting phased genotypes per contig."""

    bcftools = luigi.Parameter(default="bcftools")
    priority = 60

    def output(self) -> luigi.LocalTarget:
        return luigi.LocalTarget(
            Path(self.input()[0].path).parent.joinpath(
                f"{self.sample_name}.wf_snp.phased.contig_counts.tsv"
            )
        )

    def run(self) -> None:
        phased_vcf = Path(self.input()[0].path)
        output_tsv = Path(self.output().path)
        self.print_log(f"Count phased sites per contig:\t{self.sample_name}")
        self.setup_shell(
            run_id=self.sample_name,
            commands=self.bcftools,
            cwd=output_tsv.parent,
            **self.sh_config,
        )
        tmp_tsv = output_tsv.with_name(output_tsv.name + ".tmp")
        self.run_shell(
            args=(
                f"set -eo pipefail && {self.bcftools} view --phased --no-header"
                f" {phased_vcf} | cut -f 1 | uniq -c"
                f" | awk -v OFS='\\t' '{{print $2, $1}}' > {tmp_tsv}"
                f" && mv {tmp_tsv} {output_tsv}"
            ),
            input_files_or_dirs=[phased_vcf, f"{phased_vcf}.tbi"],
            output_files_or_dirs=output_tsv,
        )


@requires(PhaseVariants)
class SummarizeHaplotypeBlocks(HvarcTask):
    """Luigi task writing haplotype-block statistics with whatshap stats."""

    priority = 50

    def output(self) -> list[luigi.LocalTarget]:
        phased_vcf = Path(self.input()[0].path)
        return [
            luigi.LocalTarget(
                phased_vcf.parent.joinpath(f"{self.sample_name}.wf_snp.{s}")
            )
            for s in ["haploblocks.tsv", "haplostats.tsv"]
        ]

    def run(self) -> None:
        phased_vcf = Path(self.input()[0].path)
        blocks_tsv, stats_tsv = (Path(o.path) for o in self.output())
        self.print_log(f"Summarize haplotype blocks:\t{self.sample_name}")
        self.setup_shell(
            run_id=self.sample_name,
            commands=self.whatshap,
            cwd=blocks_tsv.parent,
            **self.sh_config,
        )
        self.run_shell(
            args=(
                f"set -e && {self.whatshap} stats"
                + f" --block-list {blocks_tsv} --tsv {stats_tsv} {phased_vcf}"
            ),
            input_files_or_dirs=phased_vcf,
            output_files_or_dirs=[blocks_tsv, stats_tsv],
        )


class HaplotagContig(HvarcTask):
    """Luigi task haplotagging the reads of a single contig.

    Contigs have no shared state, so these tasks run independently.

    Parameters:
        phased_vcf_path: Phased call set.
        alignment_path: Sample BAM/CRAM file.
        fa_path: Reference FASTA file.
        sample_name: Sample identifier.
        contig: Contig to haplotag.
        dest_dir_path: Output directory.
        alignment_format: Output format, bam or cram.
        whatshap: Path to the whatshap executable.
        samtools: Path to the samtools executable.
        n_cpu: Number of CPU threads to use.
        sh_config: Shell configuration parameters.
    """

    phased_vcf_path = luigi.Parameter()
    alignment_path = luigi.Parameter()
    fa_path = luigi.Parameter()
    sample_name = luigi.Parameter()
    contig = luigi.Parameter()
    dest_dir_path = luigi.Parameter(default=".")
    alignment_format = luigi.Parameter(default="bam")
    whatshap = luigi.Parameter(default="whatshap")
    samtools = luigi.Parameter(default="samtools")
    n_cpu = luigi.IntParameter(default=1)
    sh_config = luigi.DictParameter(default={})
    priority = 50

    def output(self) -> list[luigi.LocalTarget]:
        fragment = (
            Path(self.dest_dir_path)
            .resolve()
            .joinpath(
                f"{self.sample_name}.{self.contig}.haplotagged.{self.alignment_format}"
            )
        )
        return [
            luigi.LocalTarget(fragment),
            luigi.LocalTarget(alignment_index_path(str(fragment))),
        ]

    def run(self) -> None:
        fragment = Path(self.output()[0].path)
        run_id = f"{self.sample_name}.{self.contig}"
        self.print_log(f"Haplotag reads:\t{run_id}")
        self.setup_shell(
            run_id=run_id,
            commands=[self.whatshap, self.samtools],
            cwd=fragment.parent,
            **self.sh_config,
        )
        self.run_shell(
            args=(
                f"set -e && {self.whatshap} haplotag"
                + f" --reference {self.fa_path}"
                + f" --regions {self.contig}"
                + " --ignore-read-groups --skip-missing-contigs"
                + f" --output-threads {self.n_cpu}"
                + f" --output {fragment}"
                + f" {self.phased_vcf_path} {self.alignment_path}"
            ),
            input_files_or_dirs=[
                self.phased_vcf_path,
                self.alignment_path,
                self.fa_path,
            ],
            output_files_or_dirs=fragment,
        )
        self.samtools_index(sam_path=fragment, samtools=self.samtools, n_cpu=self.n_cpu)


@requires(CountPhasedSitesPerContig)
class HaplotagAlignment(luigi.Task):
    """Luigi task fanning haplotagging out over the eligible contigs.

    The contigs to haplotag are chosen from the per-contig site counts of the
    phased call set; the others are left for the aggregation step to carry
    through unmodified.

    Parameters:
        contig_names: ContigSet of the sample, in reference order.
        alignment_format: Output format of the per-contig fragments.
        samtools: Path to the samtools executable.
        n_cpu: Number of CPU threads to use per contig.
    """

    contig_names = luigi.ListParameter()
    alignment_format = luigi.Parameter(default="bam")
    samtools = luigi.Parameter(default="samtools")
    n_cpu = luigi.IntParameter(default=1)
    priority = 50

    def haplotagged_contigs(self) -> list[str]:
        counts_tsv = Path(self.input().path)
        if not counts_tsv.is_file():
            return []
        return select_haplotag_contigs(
            contig_names=list(self.contig_names),
            site_counts=read_site_counts(counts_tsv),
        )

    def haplotag_tasks(self) -> list[HaplotagContig]:
        phased_vcf_path = self.requires().input()[0].path
        dest_dir = Path(phased_vcf_path).parent.joinpath("haplotag")
        return [
            HaplotagContig(
                phased_vcf_path=phased_vcf_path,
                alignment_path=self.alignment_path,
                fa_path=self.fa_path,
                sample_name=self.sample_name,
                contig=c,
                dest_dir_path=str(dest_dir),
                alignment_format=self.alignment_format,
                whatshap=self.whatshap,
                samtools=self.samtools,
                n_cpu=self.n_cpu,
                sh_config=self.sh_config,
            )
            for c in self.haplotagged_contigs()
        ]

    def complete(self) -> bool:
        return self.requires().complete() and all(
            t.complete() for t in self.haplotag_tasks()
        )

    def output(self) -> list[list[luigi.LocalTarget]]:
        return [t.output() for t in self.haplotag_tasks()]

    def run(self):
        yield self.haplotag_tasks()


if __name__ == "__main__":
    luigi.run()
