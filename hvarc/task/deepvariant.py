"""Single-step small-variant calling with Parabricks DeepVariant."""

from pathlib import Path

import luigi

from ..plan.chunks import write_bed
from .caller import SmallVariantCallTask


class CallSmallVariantsWithDeepVariant(SmallVariantCallTask):
    """Luigi task calling small variants with ``pbrun deepvariant``.

    The ContigSet, restricted to the optional BED, is written to an interval
    file and called in one invocation. When a gVCF is requested, a second
    invocation with ``--gvcf`` writes it.

    Parameters:
        pbrun: Path to the pbrun executable.
        add_deepvariant_args: Additional arguments for pbrun deepvariant.
    """

    pbrun = luigi.Parameter(default="pbrun")
    add_deepvariant_args = luigi.ListParameter(default=["--mode", "ont"])

    def run(self) -> None:
        dest_dir = Path(self.dest_dir_path).resolve()
        run_id = self.sample_name
        self.print_log(f"Call small variants with DeepVariant:\t{run_id}")
        self.setup_shell(
            run_id=run_id,
            commands=[self.pbrun, self.bcftools, self.tabix],
            cwd=dest_dir,
            **self.sh_config,
        )
        regions_bed = dest_dir.joinpath(f"{self.sample_name}.calling_regions.bed")
        write_bed(self.calling_regions(), regions_bed)
        targets = self.output()
        for i, t in enumerate(targets[::2]):
            gvcf = i == 1
            raw_vcf = dest_dir.joinpath(
                f"{self.sample_name}.deepvariant.{'g.vcf' if gvcf else 'vcf'}"
            )
            self.run_shell(
                args=(
                    f"set -e && {self.pbrun} deepvariant"
                    + f" --ref {self.fa_path}"
                    + f" --in-bam {self.alignment_path}"
                    + f" --interval-file {regions_bed}"
                    + (" --gvcf" if gvcf else "")
                    + "".join(f" {a}" for a in self.add_deepvariant_args)
                    + f" --out-variants {raw_vcf}"
                ),
                input_files_or_dirs=[self.alignment_path, self.fa_path, regions_bed],
                output_files_or_dirs=raw_vcf,
            )
            self.compress_and_index_vcf(
                input_vcf_path=raw_vcf,
                output_vcf_gz_path=t.path,
                bcftools=self.bcftools,
                tabix=self.tabix,
                n_cpu=self.n_cpu,
            )


if __name__ == "__main__":
    luigi.run()
