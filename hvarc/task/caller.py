"""Common contract of the small-variant calling backends.

Every backend is a ``SmallVariantCallTask``: the same parameters in, the same
output targets out. The gVCF targets exist only when a gVCF is requested.
"""

from pathlib import Path

import luigi

from ..errors import BackendInvocationError
from ..plan.chunks import Region, read_bed, restrict_regions
from ..plan.contigs import Contig, read_fai
from ..plan.models import CallSet, PhaseState
from ..plan.tracks import Track
from .core import HvarcTask


class SmallVariantCallTask(HvarcTask):
    """Base task for calling small variants on one sample.

    Parameters:
        alignment_path: Coordinate-sorted BAM/CRAM file.
        fa_path: Reference FASTA file.
        sample_name: Sample identifier.
        dest_dir_path: Output directory.
        bed_path: Optional region filter ("" for none).
        contig_names: ContigSet to call on (all indexed contigs if empty).
        output_gvcf: Also write a gVCF.
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
    bcftools = luigi.Parameter(default="bcftools")
    tabix = luigi.Parameter(default="tabix")
    n_cpu = luigi.IntParameter(default=1)
    sh_config = luigi.DictParameter(default={})
    priority = 70

    def output(self) -> list[luigi.LocalTarget]:
        """Return the call set and, if requested, the gVCF.

        Returns:
            list[luigi.LocalTarget]: VCF.gz and TBI, followed by gVCF.gz and TBI
                when ``output_gvcf`` is set.
        """
        dest_dir = Path(self.dest_dir_path).resolve()
        prefixes = [
            dest_dir.joinpath(f"{self.sample_name}.wf_snp.{s}")
            for s in (["vcf.gz", "gvcf.gz"] if self.output_gvcf else ["vcf.gz"])
        ]
        return [luigi.LocalTarget(f"{p}{s}") for p in prefixes for s in ["", ".tbi"]]

    def call_set(self) -> CallSet:
        vcf, tbi = self.output()[:2]
        return CallSet(
            sample=self.sample_name,
            track=Track.SNP,
            phase_state=PhaseState.UNPHASED,
            vcf_path=vcf.path,
            index_path=tbi.path,
        )

    def gvcf_path(self) -> str | None:
        return self.output()[2].path if self.output_gvcf else None

    def calling_contigs(self) -> list[Contig]:
        contigs = read_fai(f"{self.fa_path}.fai")
        if not self.contig_names:
            return contigs
        by_name = {c.name: c for c in contigs}
        return [by_name[n] for n in self.contig_names]

    def calling_regions(self) -> list[Region]:
        """Return the ContigSet restricted to the optional BED filter.

        Raises:
            BackendInvocationError: If nothing is left to call
        """
        regions = restrict_regions(
            self.calling_contigs(),
            regions=(read_bed(self.bed_path) if self.bed_path else None),
        )
        if not regions:
            msg = f"No regions to call for {self.sample_name}"
            raise BackendInvocationError(msg)
        return regions
