"""Luigi tasks for the structural, copy-number, repeat, and modification tracks.

Each track writes to its own directory. Tracks that consume the small-variant
outputs receive the published paths as plain parameters.
"""

from pathlib import Path

import luigi

from ..plan.tracks import CnvBackend, Track
from .core import HvarcTask


class TrackTask(HvarcTask):
    """Base task for a downstream analysis track of one sample.

    Parameters:
        alignment_path: BAM/CRAM file (haplotagged when phased).
        fa_path: Reference FASTA file.
        sample_name: Sample identifier.
        dest_dir_path: Output directory of the track.
        snv_vcf_path: Small-variant call set, phased when available ("" for none).
        bcftools: Path to the bcftools executable.
        tabix: Path to the tabix executable.
        n_cpu: Number of CPU threads to use.
        sh_config: Shell configuration parameters.
    """

    track: Track
    alignment_path = luigi.Parameter()
    fa_path = luigi.Parameter()
    sample_name = luigi.Parameter()
    dest_dir_path = luigi.Parameter(default=".")
    snv_vcf_path = luigi.Parameter(default="")
    bcftools = luigi.Parameter(default="bcftools")
    tabix = luigi.Parameter(default="tabix")
    n_cpu = luigi.IntParameter(default=1)
    sh_config = luigi.DictParameter(default={})
    priority = 30

    def output_prefix(self) -> Path:
        return (
            Path(self.dest_dir_path)
            .resolve()
            .joinpath(f"{self.sample_name}.wf_{self.track.value}")
        )

    def output(self) -> list[luigi.LocalTarget]:
        return [
            luigi.LocalTarget(f"{self.output_prefix()}.vcf.gz{s}") for s in ["", ".tbi"]
        ]

    def prepare_shell(self, message: str, commands: list[str]) -> Path:
        dest_dir = Path(self.dest_dir_path).resolve()
        self.print_log(f"{message}:\t{self.sample_name}")
        self.setup_shell(
            run_id=self.sample_name,
            commands=commands,
            cwd=dest_dir,
            **self.sh_config,
            env={"REF_CACHE": str(dest_dir.joinpath(".ref_cache"))},
        )
        return dest_dir


class CallStructuralVariants(TrackTask):
    """Luigi task calling structural variants with Sniffles2.

    Parameters:
        sniffles: Path to the sniffles executable.
        phased: Emit haplotype-resolved calls from a haplotagged alignment.
        tandem_repeats_bed_path: Optional tandem-repeat annotation ("" for none).
        add_sniffles_args: Additional arguments for sniffles.
    """

    track = Track.SV
    sniffles = luigi.Parameter(default="sniffles")
    phased = luigi.BoolParameter(default=False)
    tandem_repeats_bed_path = luigi.Parameter(default="")
    add_sniffles_args = luigi.ListParameter(default=[])

    def run(self) -> None:
        self.prepare_shell(
            message="Call structural variants with Sniffles2",
            commands=[self.sniffles, self.bcftools, self.tabix],
        )
        raw_vcf = Path(f"{self.output_prefix()}.sniffles.vcf")
        self.run_shell(
            args=(
                f"set -e && {self.sniffles}"
                + f" --input {self.alignment_path}"
                + f" --reference {self.fa_path}"
                + f" --sample-id {self.sample_name}"
                + f" --threads {self.n_cpu}"
                + (
                    f" --tandem-repeats {self.tandem_repeats_bed_path}"
                    if self.tandem_repeats_bed_path
                    else ""
                )
                + (" --phase" if self.phased else "")
                + "".join(f" {a}" for a in self.add_sniffles_args)
                + f" --vcf {raw_vcf}"
            ),
            input_files_or_dirs=[self.alignment_path, self.fa_path],
            output_files_or_dirs=raw_vcf,
        )
        self.compress_and_index_vcf(
            input_vcf_path=raw_vcf,
            output_vcf_gz_path=self.output()[0].path,
            bcftools=self.bcftools,
            tabix=self.tabix,
            n_cpu=self.n_cpu,
        )


class CallCopyNumberVariants(TrackTask):
    """Luigi task calling copy-number variants with Spectre or QDNAseq.

    Spectre works on mosdepth coverage and uses the phased small-variant call
    set for allele frequencies; QDNAseq reads the alignment directly.

    Parameters:
        cnv_backend: spectre or qdnaseq.
        genome_build: Reference build label passed to QDNAseq.
        mosdepth: Path to the mosdepth executable.
        spectre: Path to the spectre executable.
        run_qdnaseq: Path to the run_qdnaseq.r script.
        bin_size: Coverage bin size in bp.
    """

    track = Track.CNV
    cnv_backend = luigi.Parameter(default=CnvBackend.SPECTRE.value)
    genome_build = luigi.Parameter(default="hg38")
    mosdepth = luigi.Parameter(default="mosdepth")
    spectre = luigi.Parameter(default="spectre")
    run_qdnaseq = luigi.Parameter(default="run_qdnaseq.r")
    bin_size = luigi.IntParameter(default=1000)

    def run(self) -> None:
        if CnvBackend(self.cnv_backend) is CnvBackend.SPECTRE:
            self.call_with_spectre()
        else:
            self.call_with_qdnaseq()

    def call_with_spectre(self) -> None:
        dest_dir = self.prepare_shell(
            message="Call copy-number variants with Spectre",
            commands=[self.mosdepth, self.spectre, self.bcftools, self.tabix],
        )
        mosdepth_prefix = dest_dir.joinpath(f"{self.sample_name}.mosdepth")
        mosdepth_bed = Path(f"{mosdepth_prefix}.regions.bed.gz")
        self.run_shell(
            args=(
                f"set -e && {self.mosdepth} --threads {self.n_cpu} --no-per-base"
                + f" --by {self.bin_size} --mapq 20 --fasta {self.fa_path}"
                + f" {mosdepth_prefix} {self.alignment_path}"
            ),
            input_files_or_dirs=[self.alignment_path, self.fa_path],
            output_files_or_dirs=mosdepth_bed,
        )
        spectre_dir = dest_dir.joinpath("spectre")
        spectre_vcf = spectre_dir.joinpath(f"{self.sample_name}.vcf.gz")
        self.run_shell(
            args=(
                f"set -e && {self.spectre} CNVCaller"
                + f" --bin-size {self.bin_size}"
                + f" --coverage {mosdepth_bed}"
                + f" --sample-id {self.sample_name}"
                + f" --output-dir {spectre_dir}"
                + f" --reference {self.fa_path}"
                + (f" --snv {self.snv_vcf_path}" if self.snv_vcf_path else "")
                + f" --threads {self.n_cpu}"
            ),
            input_files_or_dirs=[
                mosdepth_bed,
                self.fa_path,
                *([self.snv_vcf_path] if self.snv_vcf_path else []),
            ],
            output_files_or_dirs=[spectre_dir, spectre_vcf],
        )
        self.compress_and_index_vcf(
            input_vcf_path=spectre_vcf,
            output_vcf_gz_path=self.output()[0].path,
            bcftools=self.bcftools,
            tabix=self.tabix,
            n_cpu=self.n_cpu,
            remove_input=False,
        )

    def call_with_qdnaseq(self) -> None:
        dest_dir = self.prepare_shell(
            message="Call copy-number variants with QDNAseq",
            commands=[self.run_qdnaseq, self.bcftools, self.tabix],
        )
        qdnaseq_prefix = dest_dir.joinpath(f"{self.sample_name}.qdnaseq")
        qdnaseq_vcf = Path(f"{qdnaseq_prefix}_calls.vcf")
        self.run_shell(
            args=(
                f"set -e && {self.run_qdnaseq}"
                + f" --bam {self.alignment_path}"
                + f" --out_prefix {qdnaseq_prefix}"
                + f" --binsize {self.bin_size // 1000}"
                + f" --reference {self.genome_build}"
                + " --method cutoff"
            ),
            input_files_or_dirs=self.alignment_path,
            output_files_or_dirs=qdnaseq_vcf,
        )
        self.compress_and_index_vcf(
            input_vcf_path=qdnaseq_vcf,
            output_vcf_gz_path=self.output()[0].path,
            bcftools=self.bcftools,
            tabix=self.tabix,
            n_cpu=self.n_cpu,
            remove_input=False,
        )


class GenotypeRepeats(TrackTask):
    """Luigi task genotyping short tandem repeats with Straglr.

    Straglr reads the haplotagged alignment, so this track always runs after
    phasing.

    Parameters:
        str_loci_bed_path: Repeat loci to genotype.
        sex: Karyotypic sex of the sample ("" if unknown).
        straglr: Path to the straglr-genotype executable.
    """

    track = Track.STR
    str_loci_bed_path = luigi.Parameter()
    sex = luigi.Parameter(default="")
    straglr = luigi.Parameter(default="straglr-genotype")

    def output(self) -> list[luigi.LocalTarget]:
        return [
            *super().output(),
            luigi.LocalTarget(f"{self.output_prefix()}.straglr.tsv"),
        ]

    def run(self) -> None:
        self.prepare_shell(
            message="Genotype repeat expansions with Straglr",
            commands=[self.straglr, self.bcftools, self.tabix],
        )
        raw_vcf = Path(f"{self.output_prefix()}.straglr.vcf")
        output_tsv = Path(self.output()[2].path)
        self.run_shell(
            args=(
                f"set -e && {self.straglr}"
                + f" --loci {self.str_loci_bed_path}"
                + f" --sample {self.sample_name}"
                + (f" --sex {self.sex}" if self.sex else "")
                + f" --tsv {output_tsv}"
                + f" -v {raw_vcf}"
                + f" {self.alignment_path} {self.fa_path}"
            ),
            input_files_or_dirs=[
                self.alignment_path,
                self.fa_path,
                self.str_loci_bed_path,
            ],
            output_files_or_dirs=[raw_vcf, output_tsv],
        )
        self.compress_and_index_vcf(
            input_vcf_path=raw_vcf,
            output_vcf_gz_path=self.output()[0].path,
            bcftools=self.bcftools,
            tabix=self.tabix,
            n_cpu=self.n_cpu,
        )


class CallBaseModifications(TrackTask):
    """Luigi task aggregating base modifications with modkit.

    With a haplotagged alignment, the pileup is partitioned by the HP tag into
    one bedMethyl file per haplotype plus the ungrouped reads.

    Parameters:
        modkit: Path to the modkit executable.
        bgzip: Path to the bgzip executable.
        phased: Partition the pileup by haplotype.
        add_pileup_args: Additional arguments for modkit pileup.
    """

    track = Track.MOD
    modkit = luigi.Parameter(default="modkit")
    bgzip = luigi.Parameter(default="bgzip")
    phased = luigi.BoolParameter(default=False)
    add_pileup_args = luigi.ListParameter(default=["--combine-strands", "--cpg"])

    def bedmethyl_names(self) -> list[str]:
        if self.phased:
            return [
                f"{self.sample_name}_{h}.bed" for h in ["1", "2", "ungrouped"]
            ]
        else:
            return [f"{self.sample_name}.bed"]

    def output(self) -> list[luigi.LocalTarget]:
        pileup_dir = Path(self.dest_dir_path).resolve().joinpath("pileup")
        return [
            luigi.LocalTarget(pileup_dir.joinpath(f"{n}.gz"))
            for n in self.bedmethyl_names()
        ]

    def run(self) -> None:
        dest_dir = self.prepare_shell(
            message="Aggregate base modifications with modkit",
            commands=[self.modkit, self.bgzip],
        )
        pileup_dir = dest_dir.joinpath("pileup")
        self.make_dirs(pileup_dir)
        beds = [pileup_dir.joinpath(n) for n in self.bedmethyl_names()]
        self.run_shell(
            args=(
                f"set -e && {self.modkit} pileup"
                + f" --ref {self.fa_path}"
                + f" --threads {self.n_cpu}"
                + "".join(f" {a}" for a in self.add_pileup_args)
                + (
                    f" --partition-tag HP --prefix {self.sample_name}"
                    f" {self.alignment_path} {pileup_dir}"
                    if self.phased
                    else f" {self.alignment_path} {beds[0]}"
                )
            ),
            input_files_or_dirs=[self.alignment_path, self.fa_path],
            output_files_or_dirs=beds,
        )
        for b in beds:
            self.run_shell(
                args=f"set -e && {self.bgzip} -@ {self.n_cpu} {b}",
                input_files_or_dirs=b,
                output_files_or_dirs=f"{b}.gz",
            )


TRACK_TASKS: dict[Track, type[TrackTask]] = {
    Track.SV: CallStructuralVariants,
    Track.CNV: CallCopyNumberVariants,
    Track.STR: GenotypeRepeats,
    Track.MOD: CallBaseModifications,
}


if __name__ == "__main__":
    luigi.run()
