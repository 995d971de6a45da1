"""Tests for the per-sample state machine."""

import pytest

from hvarc.errors import InvalidTransitionError
from hvarc.plan.contigs import Contig
from hvarc.plan.models import CallSet, PhaseState, PipelineResult, Sample
from hvarc.plan.state import PipelineState, SampleRun
from hvarc.plan.tracks import Track


@pytest.fixture
def sample_run():
    return SampleRun(
        Sample(alias="S1", alignment_path="/data/S1.cram", fa_path="/ref.fa")
    )


def _to_calling(run):
    run.resolve_contigs((Contig("chr1", 100), Contig("chrM", 10)))
    run.resolve_tracks(frozenset({Track.SNP}))
    run.advance(PipelineState.CALLING)


class TestSampleRun:
    """Test SampleRun transitions."""

    def test_full_phased_path(self, sample_run):
        _to_calling(sample_run)
        for s in [
            PipelineState.PHASING,
            PipelineState.AGGREGATING,
            PipelineState.REPORTING,
        ]:
            sample_run.advance(s)
        result = PipelineResult(sample="S1")
        sample_run.publish(result)
        assert sample_run.state is PipelineState.DONE
        assert sample_run.result is result
        assert sample_run.history == [
            PipelineState.INIT,
            PipelineState.CONTIGS_RESOLVED,
            PipelineState.TRACKS_RESOLVED,
            PipelineState.CALLING,
            PipelineState.PHASING,
            PipelineState.AGGREGATING,
            PipelineState.REPORTING,
            PipelineState.DONE,
        ]
        assert sample_run.contig_names == ["chr1", "chrM"]

    def test_phasing_can_be_skipped(self, sample_run):
        _to_calling(sample_run)
        sample_run.advance(PipelineState.AGGREGATING)
        assert PipelineState.PHASING not in sample_run.history

    def test_invalid_transition(self, sample_run):
        with pytest.raises(InvalidTransitionError, match="Init -> Calling"):
            sample_run.advance(PipelineState.CALLING)

    def test_publish_only_from_reporting(self, sample_run):
        _to_calling(sample_run)
        with pytest.raises(InvalidTransitionError):
            sample_run.publish(PipelineResult(sample="S1"))
        assert sample_run.result is None

    def test_fail_records_stage(self, sample_run):
        _to_calling(sample_run)
        sample_run.fail(reason="clair3 exited with 1")
        assert sample_run.state is PipelineState.FAILED
        assert not sample_run.is_active
        assert str(sample_run.failure) == "S1 failed at Calling: clair3 exited with 1"

    def test_failed_is_terminal(self, sample_run):
        sample_run.fail(stage=PipelineState.INIT, reason="file not found")
        with pytest.raises(InvalidTransitionError):
            sample_run.advance(PipelineState.CONTIGS_RESOLVED)
        with pytest.raises(InvalidTransitionError):
            sample_run.fail(reason="again")


def test_final_call_set_prefers_phased():
    unphased = CallSet("S1", Track.SNP, PhaseState.UNPHASED, "a.vcf.gz", "a.vcf.gz.tbi")
    phased = CallSet("S1", Track.SNP, PhaseState.PHASED, "b.vcf.gz", "b.vcf.gz.tbi")
    assert PipelineResult("S1", call_sets=(unphased,)).final_call_set() is unphased
    assert PipelineResult("S1", call_sets=(unphased, phased)).final_call_set() is phased
    assert PipelineResult("S1").final_call_set() is None


def test_sample_alignment_index_path():
    assert Sample("S1", "/d/S1.bam", "/r.fa").alignment_index_path == "/d/S1.bam.bai"
    assert Sample("S1", "/d/S1.cram", "/r.fa").alignment_index_path == "/d/S1.cram.crai"
