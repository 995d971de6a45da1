"""Samtools operations for the hvarc pipeline.

This module provides Luigi tasks for FASTA indexing, per-contig extraction of
alignments, and the concatenation of per-contig fragments into a single
haplotagged alignment per sample.
"""

from pathlib import Path

import luigi
from luigi.util import requires

from ..plan.models import ContigAlignment, alignment_index_path
from ..plan.partition import (
    group_fragments_by_sample,
    order_fragments,
    partition_contigs,
)
from .core import HvarcTask
from .whatshap import HaplotagAlignment, HaplotagContig


class SamtoolsFaidx(HvarcTask):
    """Luigi task for creating FASTA index files using samtools faidx.

    Parameters:
        fa_path: Path to the FASTA file to index.
        samtools: Path to the samtools executable.
        add_faidx_args: Additional arguments for samtools faidx.
        sh_config: Shell configuration parameters.
    """

    fa_path = luigi.Parameter()
    samtools = luigi.Parameter(default="samtools")
    add_faidx_args = luigi.ListParameter(default=[])
    sh_config = luigi.DictParameter(default={})
    priority = 100

    def output(self) -> luigi.LocalTarget:
        fa = Path(self.fa_path).resolve()
        return luigi.LocalTarget(f"{fa}.fai")

    def run(self) -> None:
        run_id = Path(self.fa_path).stem
        self.print_log(f"Index FASTA:\t{run_id}")
        fa = Path(self.fa_path).resolve()
        self.setup_shell(
            run_id=run_id, commands=self.samtools, cwd=fa.parent, **self.sh_config
        )
        self.run_shell(
            args=(
                f"set -e && {self.samtools} faidx"
                + "".join(f" {a}" for a in self.add_faidx_args)
                + f" {fa}"
            ),
            input_files_or_dirs=fa,
            output_files_or_dirs=f"{fa}.fai",
        )


class ExtractContigAlignment(HvarcTask):
    """Luigi task copying the reads of one contig out of an alignment.

    Used for contigs that are not haplotagged, so that the merged alignment
    still covers the whole ContigSet.

    Parameters:
        input_sam_path: Path to the input BAM/CRAM file.
        fa_path: Path to the reference FASTA file.
        sample_name: Sample identifier.
        contig: Contig to extract.
        dest_dir_path: Output directory.
        alignment_format: Output format, bam or cram.
        samtools: Path to the samtools executable.
        n_cpu: Number of CPU threads to use.
        sh_config: Shell configuration parameters.
    """

    input_sam_path = luigi.Parameter()
    fa_path = luigi.Parameter()
    sample_name = luigi.Parameter()
    contig = luigi.Parameter()
    dest_dir_path = luigi.Parameter(default=".")
    alignment_format = luigi.Parameter(default="bam")
    samtools = luigi.Parameter(default="samtools")
    n_cpu = luigi.IntParameter(default=1)
    sh_config = luigi.DictParameter(default={})
    priority = 50

    def output(self) -> list[luigi.LocalTarget]:
        fragment = (
            Path(self.dest_dir_path)
            .resolve()
            .joinpath(
                f"{self.sample_name}.{self.contig}.passthrough.{self.alignment_format}"
            )
        )
        return [
            luigi.LocalTarget(fragment),
            luigi.LocalTarget(alignment_index_path(str(fragment))),
        ]

    def run(self) -> None:
        output_sam = Path(self.output()[0].path)
        run_id = f"{self.sample_name}.{self.contig}"
        self.print_log(f"Extract reads on a contig:\t{run_id}")
        dest_dir = output_sam.parent
        self.setup_shell(
            run_id=run_id,
            commands=self.samtools,
            cwd=dest_dir,
            **self.sh_config,
            env={"REF_CACHE": str(dest_dir.joinpath(".ref_cache"))},
        )
        self.samtools_view(
            input_sam_path=Path(self.input_sam_path).resolve(),
            fa_path=Path(self.fa_path).resolve(),
            output_sam_path=output_sam,
            samtools=self.samtools,
            n_cpu=self.n_cpu,
            regions=[self.contig],
            index_sam=True,
        )


@requires(HaplotagAlignment)
class MergeContigAlignments(HvarcTask):
    """Luigi task concatenating per-contig fragments into one alignment.

    Every contig of the ContigSet contributes exactly one fragment, either
    haplotagged or passed through, and fragments are concatenated in ContigSet
    order. Unmapped reads are not carried over.
    """

    priority = 40

    def output(self) -> list[luigi.LocalTarget]:
        merged = (
            Path(self.dest_dir_path)
            .resolve()
            .joinpath(f"{self.sample_name}.haplotagged.{self.alignment_format}")
        )
        return [
            luigi.LocalTarget(merged),
            luigi.LocalTarget(alignment_index_path(str(merged))),
        ]

    def run(self):
        merged = Path(self.output()[0].path)
        haplotag_tasks = self.requires().haplotag_tasks()
        partition = partition_contigs(
            contig_names=list(self.contig_names),
            haplotagged=[t.contig for t in haplotag_tasks],
        )
        extract_tasks = [
            ExtractContigAlignment(
                input_sam_path=self.alignment_path,
                fa_path=self.fa_path,
                sample_name=self.sample_name,
                contig=c,
                dest_dir_path=str(merged.parent.joinpath("passthrough")),
                alignment_format=self.alignment_format,
                samtools=self.samtools,
                n_cpu=self.n_cpu,
                sh_config=self.sh_config,
            )
            for c in partition.ordered_pass_through()
        ]
        yield extract_tasks
        fragments = [
            ContigAlignment(
                sample=t.sample_name,
                contig=t.contig,
                alignment_path=t.output()[0].path,
                index_path=t.output()[1].path,
                haplotagged=isinstance(t, HaplotagContig),
            )
            for t in [*haplotag_tasks, *extract_tasks]
        ]
        ordered = order_fragments(
            contig_names=list(self.contig_names),
            fragments=group_fragments_by_sample(fragments).get(self.sample_name, []),
        )
        run_id = self.sample_name
        self.print_log(f"Merge per-contig alignments:\t{run_id}")
        self.setup_shell(
            run_id=run_id,
            commands=self.samtools,
            cwd=merged.parent,
            **self.sh_config,
            env={"REF_CACHE": str(merged.parent.joinpath(".ref_cache"))},
        )
        self.run_shell(
            args=(
                f"set -e && {self.samtools} cat -@ {self.n_cpu} -o {merged}"
                + "".join(f" {f.alignment_path}" for f in ordered)
            ),
            input_files_or_dirs=[f.alignment_path for f in ordered],
            output_files_or_dirs=merged,
        )
        self.samtools_index(sam_path=merged, samtools=self.samtools, n_cpu=self.n_cpu)


if __name__ == "__main__":
    luigi.run()
