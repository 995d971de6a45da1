"""Tests for phasing, haplotagging, and per-contig aggregation."""

from pathlib import Path

import pytest

from hvarc.task.samtools import ExtractContigAlignment, MergeContigAlignments
from hvarc.task.whatshap import (
    CountPhasedSitesPerContig,
    HaplotagAlignment,
    HaplotagContig,
    PhaseVariants,
    SummarizeHaplotypeBlocks,
)


@pytest.fixture
def phase_kwargs(tmp_path, fa_path, samples):
    snp_dir = tmp_path / "snp" / "S1"
    return {
        "input_vcf_path": str(snp_dir / "S1.wf_snp.vcf.gz"),
        "alignment_path": samples[0].alignment_path,
        "fa_path": str(fa_path),
        "sample_name": "S1",
        "dest_dir_path": str(snp_dir),
    }


@pytest.fixture
def haplotag_kwargs(phase_kwargs):
    return {**phase_kwargs, "contig_names": ["chr1", "chr2", "chrM"]}


def _write_site_counts(phase_kwargs, counts):
    tsv = Path(
        phase_kwargs["dest_dir_path"], "S1.wf_snp.phased.contig_counts.tsv"
    )
    tsv.parent.mkdir(parents=True, exist_ok=True)
    tsv.write_text("".join(f"{c}\t{n}\n" for c, n in counts.items() if n))
    return tsv


def test_phasing_is_shared(phase_kwargs, haplotag_kwargs):
    """Every consumer requires the same phasing task."""
    phase = PhaseVariants(**phase_kwargs)
    assert SummarizeHaplotypeBlocks(**phase_kwargs).requires() is phase
    assert CountPhasedSitesPerContig(**phase_kwargs).requires() is phase
    haplotag = HaplotagAlignment(**haplotag_kwargs)
    assert haplotag.requires().requires() is phase
    assert MergeContigAlignments(**haplotag_kwargs).requires() is haplotag


def test_phase_variants(phase_kwargs, shell_calls):
    task = PhaseVariants(**phase_kwargs)
    task.run()
    assert shell_calls[0]["args"].startswith("set -e && whatshap phase")
    assert "--ignore-read-groups" in shell_calls[0]["args"]
    assert shell_calls[1]["args"].startswith("set -e && tabix --preset vcf")
    assert task.complete()


class TestHaplotagAlignment:
    """Test the per-contig haplotag fan-out."""

    def test_no_counts_yet(self, haplotag_kwargs):
        assert HaplotagAlignment(**haplotag_kwargs).haplotag_tasks() == []

    def test_eligible_contigs(self, phase_kwargs, haplotag_kwargs):
        _write_site_counts(phase_kwargs, {"chr1": 120, "chr2": 0, "chrM": 3})
        tasks = HaplotagAlignment(**haplotag_kwargs).haplotag_tasks()
        assert [t.contig for t in tasks] == ["chr1"]
        assert Path(tasks[0].output()[0].path).name == "S1.chr1.haplotagged.bam"
        assert Path(tasks[0].output()[1].path).name == "S1.chr1.haplotagged.bam.bai"

    def test_haplotag_contig(self, phase_kwargs, shell_calls):
        task = HaplotagContig(
            phased_vcf_path=str(
                Path(phase_kwargs["dest_dir_path"], "S1.wf_snp.phased.vcf.gz")
            ),
            alignment_path=phase_kwargs["alignment_path"],
            fa_path=phase_kwargs["fa_path"],
            sample_name="S1",
            contig="chr2",
            dest_dir_path=str(Path(phase_kwargs["dest_dir_path"], "haplotag")),
            alignment_format="cram",
        )
        task.run()
        assert " haplotag " in shell_calls[0]["args"]
        assert " --regions chr2 " in shell_calls[0]["args"]
        assert task.output()[1].path.endswith("S1.chr2.haplotagged.cram.crai")
        assert task.complete()


class TestMergeContigAlignments:
    """Test the aggregation of per-contig fragments."""

    def test_every_contig_once_in_order(
        self, phase_kwargs, haplotag_kwargs, shell_calls
    ):
        _write_site_counts(phase_kwargs, {"chr1": 120, "chr2": 15, "chrM": 3})
        task = MergeContigAlignments(**haplotag_kwargs)
        steps = task.run()
        extract_tasks = next(steps)
        assert all(isinstance(t, ExtractContigAlignment) for t in extract_tasks)
        assert [t.contig for t in extract_tasks] == ["chrM"]
        with pytest.raises(StopIteration):
            next(steps)
        cat = [c["args"] for c in shell_calls if " cat " in c["args"]]
        assert len(cat) == 1
        fragments = cat[0].split(" -o ")[1].split()[1:]
        assert [Path(f).name for f in fragments] == [
            "S1.chr1.haplotagged.bam",
            "S1.chr2.haplotagged.bam",
            "S1.chrM.passthrough.bam",
        ]
        assert task.output()[0].path.endswith("snp/S1/S1.haplotagged.bam")

    def test_nothing_haplotagged(self, phase_kwargs, haplotag_kwargs, shell_calls):
        _write_site_counts(phase_kwargs, {"chrM": 3})
        steps = MergeContigAlignments(**haplotag_kwargs).run()
        assert [t.contig for t in next(steps)] == ["chr1", "chr2", "chrM"]

    def test_extract_contig(self, phase_kwargs, shell_calls):
        task = ExtractContigAlignment(
            input_sam_path=phase_kwargs["alignment_path"],
            fa_path=phase_kwargs["fa_path"],
            sample_name="S1",
            contig="chrM",
            dest_dir_path=str(Path(phase_kwargs["dest_dir_path"], "passthrough")),
        )
        task.run()
        view = shell_calls[0]["args"]
        assert view.endswith(f"{phase_kwargs['alignment_path']} chrM")
        assert " view -@ 1 " in view
        assert " index " in shell_calls[1]["args"]
        assert task.complete()


def test_count_phased_sites(phase_kwargs, shell_calls):
    """Only phased genotypes are counted and the TSV appears on success."""
    task = CountPhasedSitesPerContig(**phase_kwargs)
    task.run()
    output_tsv = task.output().path
    (call,) = shell_calls
    assert call["args"].startswith("set -eo pipefail && bcftools view --phased")
    assert f"> {output_tsv}.tmp && mv {output_tsv}.tmp {output_tsv}" in call["args"]
    assert call["output_files_or_dirs"] == Path(output_tsv)
