"""Chunked small-variant calling with Clair3.

The ContigSet (restricted to the optional BED) is split into chunks, each chunk
is called by an independent Luigi task, and the chunk call sets are merged in
chunk order, regardless of the order in which the chunks finished.
"""

from pathlib import Path

import luigi

from ..errors import BackendInvocationError
from ..plan.chunks import DEFAULT_CHUNK_SIZE, Chunk, plan_chunks, write_bed
from .caller import SmallVariantCallTask
from .core import HvarcTask

CANCELLATION_SENTINEL_NAME = ".calling.failed"


class CallChunkWithClair3(HvarcTask):
    """Luigi task calling small variants on a single chunk with Clair3.

    A chunk does not start once another chunk of the same sample has failed;
    see ``mark_calling_failed``.

    Parameters:
        alignment_path: Coordinate-sorted BAM/CRAM file.
        fa_path: Reference FASTA file.
        sample_name: Sample identifier.
        chunk_index: Position of the chunk in merge order.
        contig: Contig of the chunk.
        start: 0-based chunk start.
        end: Chunk end (exclusive).
        dest_dir_path: Directory holding the chunk directories of the sample.
        model_path: Clair3 model directory.
        platform: Sequencing platform passed to Clair3.
        run_clair3: Path to the run_clair3.sh executable.
        add_clair3_args: Additional arguments for run_clair3.sh.
        output_gvcf: Also write a gVCF.
        n_cpu: Number of CPU threads to use.
        sh_config: Shell configuration parameters.
    """

    alignment_path = luigi.Parameter()
    fa_path = luigi.Parameter()
    sample_name = luigi.Parameter()
    chunk_index = luigi.IntParameter()
    contig = luigi.Parameter()
    start = luigi.IntParameter()
    end = luigi.IntParameter()
    dest_dir_path = luigi.Parameter(default=".")
    model_path = luigi.Parameter()
    platform = luigi.Parameter(default="ont")
    run_clair3 = luigi.Parameter(default="run_clair3.sh")
    add_clair3_args = luigi.ListParameter(default=[])
    output_gvcf = luigi.BoolParameter(default=False)
    n_cpu = luigi.IntParameter(default=1)
    sh_config = luigi.DictParameter(default={})
    priority = 70

    @property
    def chunk(self) -> Chunk:
        return Chunk(
            index=self.chunk_index, contig=self.contig, start=self.start, end=self.end
        )

    def chunk_dir(self) -> Path:
        return Path(self.dest_dir_path).resolve().joinpath(self.chunk.name)

    def cancellation_sentinel(self) -> Path:
        return Path(self.dest_dir_path).resolve().parent.joinpath(
            CANCELLATION_SENTINEL_NAME
        )

    def output(self) -> list[luigi.LocalTarget]:
        chunk_dir = self.chunk_dir()
        return [
            luigi.LocalTarget(chunk_dir.joinpath(f"merge_output.{t}{s}"))
            for t in (["vcf.gz", "gvcf.gz"] if self.output_gvcf else ["vcf.gz"])
            for s in ["", ".tbi"]
        ]

    def run(self) -> None:
        sentinel = self.cancellation_sentinel()
        if sentinel.exists():
            msg = (
                f"Chunk {self.chunk.name} of {self.sample_name} was cancelled"
                f" after a failure: {sentinel.read_text(encoding='utf-8').strip()}"
            )
            raise BackendInvocationError(msg)
        chunk_dir = self.chunk_dir()
        run_id = f"{self.sample_name}.{self.chunk.name}"
        self.print_log(f"Call small variants on a chunk with Clair3:\t{run_id}")
        self.setup_shell(
            run_id=run_id,
            commands=self.run_clair3,
            cwd=chunk_dir,
            **self.sh_config,
        )
        chunk_bed = chunk_dir.joinpath("chunk.bed")
        write_bed([self.chunk], chunk_bed)
        self.run_shell(
            args=(
                f"set -e && {self.run_clair3}"
                + f" --bam_fn={self.alignment_path}"
                + f" --ref_fn={self.fa_path}"
                + f" --threads={self.n_cpu}"
                + f" --platform={self.platform}"
                + f" --model_path={self.model_path}"
                + f" --sample_name={self.sample_name}"
                + f" --bed_fn={chunk_bed}"
                + f" --output={chunk_dir}"
                + (" --gvcf" if self.output_gvcf else "")
                + "".join(f" {a}" for a in self.add_clair3_args)
            ),
            input_files_or_dirs=[
                self.alignment_path,
                self.fa_path,
                self.model_path,
                chunk_bed,
            ],
            output_files_or_dirs=[o.path for o in self.output()],
        )


@CallChunkWithClair3.event_handler(luigi.Event.FAILURE)
def mark_calling_failed(task: CallChunkWithClair3, exception: BaseException) -> None:
    """Write the per-sample sentinel that cancels the chunks not yet started."""
    if isinstance(exception, BackendInvocationError):
        return
    sentinel = task.cancellation_sentinel()
    sentinel.parent.mkdir(parents=True, exist_ok=True)
    sentinel.write_text(f"{task.chunk.name}: {exception}\n", encoding="utf-8")


class CallSmallVariantsWithClair3(SmallVariantCallTask):
    """Luigi task calling small variants chunk by chunk with Clair3.

    Parameters:
        chunk_size: Maximum chunk length in bp.
        model_path: Clair3 model directory.
        platform: Sequencing platform passed to Clair3.
        run_clair3: Path to the run_clair3.sh executable.
        add_clair3_args: Additional arguments for run_clair3.sh.
    """

    chunk_size = luigi.IntParameter(default=DEFAULT_CHUNK_SIZE)
    model_path = luigi.Parameter()
    platform = luigi.Parameter(default="ont")
    run_clair3 = luigi.Parameter(default="run_clair3.sh")
    add_clair3_args = luigi.ListParameter(default=[])

    def plan(self) -> tuple[Chunk, ...]:
        return plan_chunks(
            contigs=self.calling_contigs(),
            chunk_size=self.chunk_size,
            regions=self.calling_regions(),
        )

    def chunk_tasks(self) -> list[CallChunkWithClair3]:
        chunks_dir = Path(self.dest_dir_path).resolve().joinpath("clair3_chunks")
        return [
            CallChunkWithClair3(
                alignment_path=self.alignment_path,
                fa_path=self.fa_path,
                sample_name=self.sample_name,
                chunk_index=c.index,
                contig=c.contig,
                start=c.start,
                end=c.end,
                dest_dir_path=str(chunks_dir),
                model_path=self.model_path,
                platform=self.platform,
                run_clair3=self.run_clair3,
                add_clair3_args=self.add_clair3_args,
                output_gvcf=self.output_gvcf,
                n_cpu=self.n_cpu,
                sh_config=self.sh_config,
            )
            for c in self.plan()
        ]

    def run(self):
        chunk_tasks = self.chunk_tasks()
        if not all(t.complete() for t in chunk_tasks):
            sentinel = Path(self.dest_dir_path).resolve().joinpath(
                CANCELLATION_SENTINEL_NAME
            )
            if sentinel.exists():
                sentinel.unlink()
        yield chunk_tasks
        run_id = self.sample_name
        self.print_log(f"Merge chunk call sets:\t{run_id}")
        dest_dir = Path(self.dest_dir_path).resolve()
        self.setup_shell(
            run_id=run_id,
            commands=[self.bcftools, self.tabix],
            cwd=dest_dir,
            **self.sh_config,
        )
        targets = self.output()
        for i, t in enumerate(targets[::2]):
            chunk_vcfs = [c.output()[i * 2].path for c in chunk_tasks]
            self.merge_chunk_vcfs(
                chunk_vcf_paths=chunk_vcfs,
                output_vcf_gz_path=t.path,
                list_path=f"{t.path}.chunks.txt",
            )

    def merge_chunk_vcfs(
        self, chunk_vcf_paths: list[str], output_vcf_gz_path: str, list_path: str
    ) -> None:
        """Concatenate chunk call sets in the given order and index the result.

        Args:
            chunk_vcf_paths: Chunk VCF.gz files in merge order
            output_vcf_gz_path: Output VCF.gz file path
            list_path: File listing the chunk VCFs for bcftools
        """
        Path(list_path).write_text(
            "".join(f"{p}\n" for p in chunk_vcf_paths), encoding="utf-8"
        )
        self.run_shell(
            args=(
                f"set -e && {self.bcftools} concat --no-version --threads {self.n_cpu}"
                f" -a -D -O z -o {output_vcf_gz_path} --file-list {list_path}"
            ),
            input_files_or_dirs=[list_path, *chunk_vcf_paths],
            output_files_or_dirs=output_vcf_gz_path,
        )
        self.tabix_index(vcf_gz_path=output_vcf_gz_path, tabix=self.tabix)


if __name__ == "__main__":
    luigi.run()
