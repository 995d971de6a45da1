"""Run manifest and small-variant report tasks."""

import json
import os
from pathlib import Path
from typing import Any

import luigi
from jinja2 import Environment, FileSystemLoader
from luigi.freezing import recursively_unfreeze
from luigi.util import requires

from .core import HvarcTask


class WriteRunManifest(HvarcTask):
    """Luigi task recording software versions and run parameters.

    Parameters:
        sample_name: Sample identifier.
        dest_dir_path: Output directory.
        command_paths: Executables whose versions are recorded.
        run_params: Parameters of the run, serialized as JSON.
        sh_config: Shell configuration parameters.
    """

    sample_name = luigi.Parameter()
    dest_dir_path = luigi.Parameter(default=".")
    command_paths = luigi.ListParameter(default=[])
    run_params = luigi.DictParameter(default={})
    sh_config = luigi.DictParameter(default={})
    priority = 20

    def output(self) -> list[luigi.LocalTarget]:
        dest_dir = Path(self.dest_dir_path).resolve()
        return [
            luigi.LocalTarget(dest_dir.joinpath(f"{self.sample_name}.{s}"))
            for s in ["versions.txt", "params.json"]
        ]

    def run(self) -> None:
        versions_txt, params_json = (Path(o.path) for o in self.output())
        self.print_log(f"Write a run manifest:\t{self.sample_name}")
        self.setup_shell(
            run_id=self.sample_name, cwd=versions_txt.parent, **self.sh_config
        )
        self.run_shell(
            args=(
                "("
                + "; ".join(
                    f"echo '### {Path(c).name}' && {v}"
                    for c, v in zip(
                        self.command_paths,
                        self.generate_version_commands(list(self.command_paths)),
                    )
                )
                + f") > {versions_txt} 2>&1"
            )
            if self.command_paths
            else f"set -e && touch {versions_txt}",
            output_files_or_dirs=versions_txt,
        )
        with params_json.open(mode="w", encoding="utf-8") as f:
            json.dump(recursively_unfreeze(self.run_params), f, indent=2, default=str)
            f.write(os.linesep)


class CollectVariantStats(HvarcTask):
    """Luigi task collecting call-set statistics with bcftools stats.

    When a reference-variant database is given, the statistics also compare
    the call set against it.

    Parameters:
        vcf_path: Call set to summarize.
        fa_path: Reference FASTA file.
        sample_name: Sample identifier.
        dest_dir_path: Output directory.
        reference_variants_vcf_path: Optional database VCF ("" for none).
        bcftools: Path to the bcftools executable.
        n_cpu: Number of CPU threads to use.
        sh_config: Shell configuration parameters.
    """

    vcf_path = luigi.Parameter()
    fa_path = luigi.Parameter()
    sample_name = luigi.Parameter()
    dest_dir_path = luigi.Parameter(default=".")
    reference_variants_vcf_path = luigi.Parameter(default="")
    bcftools = luigi.Parameter(default="bcftools")
    n_cpu = luigi.IntParameter(default=1)
    sh_config = luigi.DictParameter(default={})
    priority = 20

    def output(self) -> luigi.LocalTarget:
        return luigi.LocalTarget(
            Path(self.dest_dir_path)
            .resolve()
            .joinpath(f"{self.sample_name}.wf_snp.stats")
        )

    def run(self) -> None:
        output_stats = Path(self.output().path)
        self.print_log(f"Collect variant statistics:\t{self.sample_name}")
        self.setup_shell(
            run_id=self.sample_name,
            commands=self.bcftools,
            cwd=output_stats.parent,
            **self.sh_config,
        )
        self.run_shell(
            args=(
                f"set -e && {self.bcftools} stats --threads {self.n_cpu}"
                + f" -F {self.fa_path} -s - {self.vcf_path}"
                + (
                    f" {self.reference_variants_vcf_path}"
                    if self.reference_variants_vcf_path
                    else ""
                )
                + f" > {output_stats}"
            ),
            input_files_or_dirs=[
                self.vcf_path,
                self.fa_path,
                *(
                    [self.reference_variants_vcf_path]
                    if self.reference_variants_vcf_path
                    else []
                ),
            ],
            output_files_or_dirs=output_stats,
        )


def parse_bcftools_stats(path: str | os.PathLike[str]) -> dict[str, Any]:
    """Read the summary numbers (SN section) of a bcftools stats file.

    With a second VCF, bcftools stats reports each summary line per set:
    ``0`` for records private to the call set, ``1`` for records private to
    the database, ``2`` for shared records.

    Args:
        path: Path to a bcftools stats output file

    Returns:
        Mapping of set id to {metric: value}
    """
    summary: dict[str, dict[str, int]] = {}
    with Path(path).open(encoding="utf-8") as f:
        for line in f:
            if not line.startswith("SN\t"):
                continue
            _, set_id, key, value = line.rstrip("\n").split("\t")[:4]
            summary.setdefault(set_id, {})[
                key.rstrip(":").replace("number of ", "")
            ] = int(value)
    return summary


@requires(WriteRunManifest, CollectVariantStats)
class MakeSnpReport(luigi.Task):
    """Luigi task rendering the small-variant report.

    Writes a JSON summary of the variant statistics and an HTML report
    rendered with jinja2.

    Parameters:
        haploblocks_path: Haplotype-block summary ("" when not phased).
        phased: The call set is phased.
    """

    haploblocks_path = luigi.Parameter(default="")
    phased = luigi.BoolParameter(default=False)
    priority = 10

    def output(self) -> list[luigi.LocalTarget]:
        dest_dir = Path(self.dest_dir_path).resolve()
        return [
            luigi.LocalTarget(dest_dir.joinpath(f"{self.sample_name}.wf_snp.{s}"))
            for s in ["html", "stats.json"]
        ]

    def run(self) -> None:
        report_html, stats_json = (Path(o.path) for o in self.output())
        versions_txt, params_json = (Path(i.path) for i in self.input()[0])
        summary = parse_bcftools_stats(self.input()[1].path)
        HvarcTask.print_log(f"Render a variant report:\t{self.sample_name}")
        with stats_json.open(mode="w", encoding="utf-8") as f:
            json.dump(summary, f, indent=2)
            f.write(os.linesep)
        with report_html.open(mode="w", encoding="utf-8") as f:
            f.write(
                Environment(
                    loader=FileSystemLoader(
                        str(Path(__file__).parent.joinpath("../template")),
                        encoding="utf8",
                    ),
                    autoescape=True,
                )
                .get_template("snp_report.html.j2")
                .render({
                    "sample_name": self.sample_name,
                    "phased": self.phased,
                    "summary": summary,
                    "haploblocks_path": self.haploblocks_path,
                    "versions": versions_txt.read_text(encoding="utf-8"),
                    "params": json.loads(params_json.read_text(encoding="utf-8")),
                })
                + os.linesep
            )


if __name__ == "__main__":
    luigi.run()
