"""Tests for the stage-by-stage pipeline driver."""

from pathlib import Path
from types import SimpleNamespace

import luigi
import pytest
from luigi.task import flatten

from hvarc.cli.driver import PipelineDriver, RunSettings
from hvarc.plan.contigs import ContigPolicy
from hvarc.plan.models import PhaseState
from hvarc.plan.state import PipelineState
from hvarc.plan.tracks import CnvBackend, Track, TrackFlags
from hvarc.task.controller import CallSmallVariants
from hvarc.task.tracks import CallStructuralVariants, GenotypeRepeats


class FakeBuild:
    """Stand-in for ``build_luigi_tasks`` that creates task outputs.

    Tasks of the samples in ``failing`` (optionally only of the given task
    class) are left incomplete.
    """

    def __init__(self, failing=(), failing_class=luigi.Task, scheduled=True):
        self.failing = set(failing)
        self.failing_class = failing_class
        self.scheduled = scheduled
        self.builds: list[list[luigi.Task]] = []

    def __call__(self, tasks, **kwargs):
        self.builds.append(list(tasks))
        for t in tasks:
            self._complete(t)
        return SimpleNamespace(
            scheduling_succeeded=self.scheduled,
            one_line_summary=("" if self.scheduled else "scheduling failed"),
        )

    def _complete(self, task):
        if (
            getattr(task, "sample_name", None) in self.failing
            and isinstance(task, self.failing_class)
        ):
            return
        for d in flatten(task.requires()):
            self._complete(d)
        for o in flatten(task.output()):
            Path(o.path).parent.mkdir(parents=True, exist_ok=True)
            Path(o.path).touch()


def _settings(tmp_path, **kwargs):
    return RunSettings(
        dest_dir_path=str(tmp_path / "out"),
        **{"caller_config": {"model_path": str(tmp_path / "model")}, **kwargs},
    )


def test_failed_sample_does_not_affect_others(tmp_path, samples):
    """A calling failure of S1 leaves S2 running to Done."""
    build = FakeBuild(failing={"S1"}, failing_class=CallSmallVariants)
    driver = PipelineDriver(samples, _settings(tmp_path), build=build)
    runs = {r.alias: r for r in driver.run()}
    assert runs["S1"].state is PipelineState.FAILED
    assert runs["S1"].failure.stage is PipelineState.CALLING
    assert "CallSmallVariants" in runs["S1"].failure.reason
    assert runs["S1"].result is None
    assert runs["S2"].state is PipelineState.DONE
    final = runs["S2"].result.final_call_set()
    assert final.phase_state is PhaseState.UNPHASED
    assert Path(final.vcf_path).is_file()
    assert runs["S2"].result.gvcf_path is None
    assert Path(runs["S2"].result.report_path).name == "S2.wf_snp.html"


def test_missing_alignment_fails_at_init(tmp_path, samples):
    Path(samples[0].alignment_index_path).unlink()
    driver = PipelineDriver(samples, _settings(tmp_path), build=FakeBuild())
    runs = {r.alias: r for r in driver.run()}
    assert runs["S1"].failure.stage is PipelineState.INIT
    assert runs["S1"].history == [PipelineState.INIT, PipelineState.FAILED]
    assert runs["S2"].state is PipelineState.DONE


def test_empty_contig_set_fails(tmp_path, samples):
    Path(f"{samples[0].fa_path}.fai").write_text("chrUn_1\t100\t0\t60\t61\n")
    driver = PipelineDriver(samples, _settings(tmp_path), build=FakeBuild())
    for r in driver.run():
        assert r.failure.stage is PipelineState.CONTIGS_RESOLVED
        assert "standard policy" in r.failure.reason


def test_all_contigs_policy(tmp_path, samples):
    driver = PipelineDriver(
        samples[:1],
        _settings(tmp_path, contig_policy=ContigPolicy.ALL),
        build=FakeBuild(),
    )
    (run,) = driver.run()
    assert len(run.contig_names) == 5


def test_gvcf_published_when_requested(tmp_path, samples):
    driver = PipelineDriver(
        samples[:1], _settings(tmp_path, output_gvcf=True), build=FakeBuild()
    )
    (run,) = driver.run()
    assert run.result.gvcf_path.endswith("S1.wf_snp.gvcf.gz")
    assert Path(run.result.gvcf_path).is_file()


def test_phased_run(tmp_path, samples):
    build = FakeBuild()
    driver = PipelineDriver(
        samples[:1],
        _settings(
            tmp_path,
            requested_tracks=frozenset({Track.SV}),
            flags=TrackFlags(phased=True),
        ),
        build=build,
    )
    (run,) = driver.run()
    assert run.history == [
        PipelineState.INIT,
        PipelineState.CONTIGS_RESOLVED,
        PipelineState.TRACKS_RESOLVED,
        PipelineState.CALLING,
        PipelineState.PHASING,
        PipelineState.AGGREGATING,
        PipelineState.REPORTING,
        PipelineState.DONE,
    ]
    assert run.enabled_tracks == {Track.SV, Track.SNP}
    final = run.result.final_call_set()
    assert final.phase_state is PhaseState.PHASED
    assert final.vcf_path.endswith("S1.wf_snp.phased.vcf.gz")
    assert run.result.haplotagged_alignment_path.endswith("S1.haplotagged.bam")
    sv_tasks = [t for t in build.builds[-1] if isinstance(t, CallStructuralVariants)]
    assert len(sv_tasks) == 1
    assert sv_tasks[0].alignment_path == run.result.haplotagged_alignment_path
    assert sv_tasks[0].phased
    assert driver.track_outcomes["S1"] == {Track.SV: True}
    assert driver.failed_tracks() == {}


def test_independent_tracks_run_with_calling(tmp_path, samples):
    build = FakeBuild()
    driver = PipelineDriver(
        samples[:1],
        _settings(
            tmp_path,
            requested_tracks=frozenset({Track.SNP, Track.SV, Track.CNV}),
            flags=TrackFlags(cnv_backend=CnvBackend.QDNASEQ),
        ),
        build=build,
    )
    (run,) = driver.run()
    assert PipelineState.PHASING not in run.history
    calling_build = build.builds[1]
    assert {type(t).__name__ for t in calling_build} == {
        "CallSmallVariants",
        "CallStructuralVariants",
        "CallCopyNumberVariants",
    }
    assert driver.track_outcomes["S1"] == {Track.SV: True, Track.CNV: True}


def test_str_reads_haplotagged_alignment(tmp_path, samples):
    build = FakeBuild()
    driver = PipelineDriver(
        samples[:1],
        _settings(
            tmp_path,
            requested_tracks=frozenset({Track.STR}),
            str_loci_bed_path=str(tmp_path / "loci.bed"),
        ),
        build=build,
    )
    (run,) = driver.run()
    assert PipelineState.PHASING in run.history
    (str_task,) = [t for t in build.builds[-1] if isinstance(t, GenotypeRepeats)]
    assert str_task.alignment_path.endswith("S1.haplotagged.bam")
    assert str_task.dest_dir_path.endswith("out/str/S1")


def test_failed_track_is_reported(tmp_path, samples):
    build = FakeBuild(failing={"S1"}, failing_class=CallStructuralVariants)
    driver = PipelineDriver(
        samples[:1],
        _settings(tmp_path, requested_tracks=frozenset({Track.SNP, Track.SV})),
        build=build,
    )
    (run,) = driver.run()
    assert run.state is PipelineState.DONE
    assert driver.failed_tracks() == {"S1": [Track.SV]}


@pytest.mark.parametrize("caller", ["clair3", "deepvariant"])
def test_caller_selection(tmp_path, samples, caller):
    build = FakeBuild()
    driver = PipelineDriver(
        samples[:1],
        _settings(
            tmp_path,
            small_variant_caller=caller,
            **({"caller_config": {}} if caller == "deepvariant" else {}),
        ),
        build=build,
    )
    driver.run()
    (snp_task,) = [t for t in build.builds[1] if isinstance(t, CallSmallVariants)]
    assert snp_task.caller == caller
    assert list(snp_task.contig_names) == ["chr1", "chr2", "chrM"]


def test_unscheduled_build_is_logged(tmp_path, samples, caplog):
    driver = PipelineDriver(
        samples[:1], _settings(tmp_path), build=FakeBuild(scheduled=False)
    )
    (run,) = driver.run()
    assert run.state is PipelineState.DONE
    assert "Calling: scheduling failed" in caplog.text
