"""Tests for the run manifest and the small-variant report."""

import json
from pathlib import Path

import pytest

from hvarc.task.report import (
    CollectVariantStats,
    MakeSnpReport,
    WriteRunManifest,
    parse_bcftools_stats,
)

BCFTOOLS_STATS = """\
# This file was produced by bcftools stats
# SN\t[2]id\t[3]key\t[4]value
SN\t0\tnumber of samples:\t1
SN\t0\tnumber of records:\t4523
SN\t0\tnumber of SNPs:\t4001
SN\t0\tnumber of indels:\t522
SN\t2\tnumber of records:\t3900
TSTV\t0\t2801\t1200\t2.33
"""


@pytest.fixture
def stats_path(tmp_path):
    p = tmp_path / "S1.wf_snp.stats"
    p.write_text(BCFTOOLS_STATS)
    return p


def test_parse_bcftools_stats(stats_path):
    summary = parse_bcftools_stats(stats_path)
    assert summary == {
        "0": {"samples": 1, "records": 4523, "SNPs": 4001, "indels": 522},
        "2": {"records": 3900},
    }


def test_collect_variant_stats_with_database(tmp_path, fa_path, shell_calls):
    task = CollectVariantStats(
        vcf_path="/out/snp/S1/S1.wf_snp.phased.vcf.gz",
        fa_path=str(fa_path),
        sample_name="S1",
        dest_dir_path=str(tmp_path / "report" / "S1"),
        reference_variants_vcf_path="/out/resource/dbsnp.vcf.gz",
    )
    task.run()
    args = shell_calls[0]["args"]
    assert args.startswith("set -e && bcftools stats --threads 1")
    assert args.endswith(
        " -s - /out/snp/S1/S1.wf_snp.phased.vcf.gz /out/resource/dbsnp.vcf.gz"
        f" > {task.output().path}"
    )


def test_write_run_manifest(tmp_path, shell_calls):
    task = WriteRunManifest(
        sample_name="S1",
        dest_dir_path=str(tmp_path / "report" / "S1"),
        command_paths=["/usr/bin/bcftools", "/opt/clair3/run_clair3.sh"],
        run_params={"phased": True, "resources": {"reference_fa": "/ref.fa"}},
    )
    task.run()
    versions_cmd = shell_calls[0]["args"]
    assert "echo '### bcftools' && /usr/bin/bcftools --version" in versions_cmd
    assert "echo '### run_clair3.sh' && /opt/clair3/run_clair3.sh --version" in (
        versions_cmd
    )
    params = json.loads(Path(task.output()[1].path).read_text())
    assert params == {"phased": True, "resources": {"reference_fa": "/ref.fa"}}


def test_make_snp_report(tmp_path, fa_path, stats_path, shell_calls):
    report_dir = tmp_path / "report" / "S1"
    kwargs = {
        "sample_name": "S1",
        "dest_dir_path": str(report_dir),
        "vcf_path": "/out/snp/S1/S1.wf_snp.vcf.gz",
        "fa_path": str(fa_path),
    }
    task = MakeSnpReport(**kwargs, phased=False)
    manifest, stats = task.requires()
    manifest.run()
    Path(stats.output().path).write_text(stats_path.read_text())
    task.run()
    report_html, stats_json = (Path(o.path) for o in task.output())
    html = report_html.read_text()
    assert "<h1>S1: small variants</h1>" in html
    assert "Call set: unphased" in html
    assert "4,523" in html
    assert "Haplotype blocks" not in html
    assert json.loads(stats_json.read_text())["0"]["records"] == 4523
