"""Tests for the structural, copy-number, repeat, and modification tracks."""

from pathlib import Path

import pytest

from hvarc.plan.tracks import Track
from hvarc.task.tracks import (
    TRACK_TASKS,
    CallBaseModifications,
    CallCopyNumberVariants,
    CallStructuralVariants,
    GenotypeRepeats,
)


@pytest.fixture
def track_kwargs(tmp_path, fa_path, samples):
    def _kwargs(track):
        return {
            "alignment_path": samples[0].alignment_path,
            "fa_path": str(fa_path),
            "sample_name": "S1",
            "dest_dir_path": str(tmp_path / track.value / "S1"),
        }

    return _kwargs


def test_every_downstream_track_has_a_task():
    assert set(TRACK_TASKS) == set(Track) - {Track.SNP}
    assert all(cls.track is t for t, cls in TRACK_TASKS.items())


def test_phased_sv(track_kwargs, shell_calls):
    task = CallStructuralVariants(**track_kwargs(Track.SV), phased=True)
    task.run()
    assert " --phase " in shell_calls[0]["args"]
    assert [Path(o.path).name for o in task.output()] == [
        "S1.wf_sv.vcf.gz",
        "S1.wf_sv.vcf.gz.tbi",
    ]
    assert task.complete()


class TestCallCopyNumberVariants:
    """Test both CNV backends."""

    def test_spectre_reads_small_variants(self, track_kwargs, shell_calls):
        task = CallCopyNumberVariants(
            **track_kwargs(Track.CNV), snv_vcf_path="/out/snp/S1/S1.wf_snp.vcf.gz"
        )
        task.run()
        assert shell_calls[0]["args"].startswith("set -e && mosdepth ")
        assert " CNVCaller " in shell_calls[1]["args"]
        assert " --snv /out/snp/S1/S1.wf_snp.vcf.gz " in shell_calls[1]["args"]
        assert task.complete()

    def test_qdnaseq(self, track_kwargs, shell_calls):
        task = CallCopyNumberVariants(
            **track_kwargs(Track.CNV),
            cnv_backend="qdnaseq",
            genome_build="hg19",
            bin_size=500_000,
        )
        task.run()
        args = shell_calls[0]["args"]
        assert args.startswith("set -e && run_qdnaseq.r ")
        assert " --binsize 500 --reference hg19 " in args
        assert not [c for c in shell_calls if "mosdepth" in c["args"]]

    def test_unknown_backend(self, track_kwargs):
        task = CallCopyNumberVariants(**track_kwargs(Track.CNV), cnv_backend="cnvkit")
        with pytest.raises(ValueError):
            task.run()


def test_str_with_sex(track_kwargs, shell_calls):
    task = GenotypeRepeats(
        **track_kwargs(Track.STR), str_loci_bed_path="/ref/loci.bed", sex="XY"
    )
    task.run()
    args = shell_calls[0]["args"]
    assert " --loci /ref/loci.bed " in args
    assert " --sex XY " in args
    assert Path(task.output()[2].path).name == "S1.wf_str.straglr.tsv"
    assert task.complete()


class TestCallBaseModifications:
    """Test modkit pileups."""

    def test_unphased(self, track_kwargs, shell_calls):
        task = CallBaseModifications(**track_kwargs(Track.MOD))
        assert [Path(o.path).name for o in task.output()] == ["S1.bed.gz"]
        task.run()
        assert "--partition-tag" not in shell_calls[0]["args"]

    def test_partitioned_by_haplotype(self, track_kwargs, shell_calls):
        task = CallBaseModifications(**track_kwargs(Track.MOD), phased=True)
        assert [Path(o.path).name for o in task.output()] == [
            "S1_1.bed.gz",
            "S1_2.bed.gz",
            "S1_ungrouped.bed.gz",
        ]
        task.run()
        assert " --partition-tag HP --prefix S1 " in shell_calls[0]["args"]
        assert len([c for c in shell_calls if " bgzip " in f" {c['args']}"]) == 3
        assert task.complete()
