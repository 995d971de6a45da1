"""Stage-by-stage driver of the per-sample pipelines.

Each stage is one Luigi build over every sample still active. After a build,
the stage tasks of each sample are checked one by one, and a sample whose tasks
did not complete moves to ``Failed`` without affecting the other samples.
"""

import logging
import os
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from pprint import pformat
from typing import Any

import luigi
from luigi.execution_summary import LuigiRunResult

from ..plan.contigs import ContigPolicy, resolve_contig_set
from ..plan.models import CallSet, PhaseState, PipelineResult, Sample
from ..plan.state import PipelineState, SampleRun
from ..plan.tracks import (
    CnvBackend,
    Track,
    TrackFlags,
    depends_on_small_variants,
    requires_phasing,
    resolve,
)
from ..task.controller import CallSmallVariants
from ..task.report import MakeSnpReport, WriteRunManifest
from ..task.resource import FetchReferenceFasta, FetchResourceVcf
from ..task.samtools import MergeContigAlignments
from ..task.tracks import TRACK_TASKS, TrackTask
from ..task.whatshap import (
    HaplotagAlignment,
    PhaseVariants,
    SummarizeHaplotypeBlocks,
)
from .util import build_luigi_tasks, print_log


@dataclass(frozen=True)
class RunSettings:
    """Run-wide settings shared by every sample.

    Attributes:
        dest_dir_path: Output root; tracks write to ``<root>/<track>/<alias>``
        requested_tracks: Tracks requested by the user
        flags: Flags consulted by the track activation rules
        contig_policy: Contig inclusion policy
        small_variant_caller: Backend name (clair3 or deepvariant)
        caller_config: Backend-specific task parameters
        output_gvcf: Also write a gVCF
        bed_path: Region filter ("" for none)
        str_loci_bed_path: Repeat loci for STR genotyping
        reference_variants_vcf_path: Database VCF for the report ("" for none)
        genome_build: Reference build label
        alignment_format: Format of the haplotagged alignment (bam or cram)
        commands: Executable paths keyed by task parameter name
        n_cpu: CPU threads per worker
        n_worker: Luigi workers
        sh_config: Shell configuration parameters
        run_params: Parameters recorded in the run manifest
        log_level: Luigi console log level
        logging_conf_file: Luigi logging configuration file
    """

    dest_dir_path: str
    requested_tracks: frozenset[Track] = frozenset({Track.SNP})
    flags: TrackFlags = TrackFlags()
    contig_policy: ContigPolicy = ContigPolicy.STANDARD
    small_variant_caller: str = "clair3"
    caller_config: Mapping[str, Any] = field(default_factory=dict)
    output_gvcf: bool = False
    bed_path: str = ""
    str_loci_bed_path: str = ""
    reference_variants_vcf_path: str = ""
    genome_build: str = "hg38"
    alignment_format: str = "bam"
    commands: Mapping[str, str] = field(default_factory=dict)
    n_cpu: int = 1
    n_worker: int = 1
    sh_config: Mapping[str, Any] = field(default_factory=dict)
    run_params: Mapping[str, Any] = field(default_factory=dict)
    log_level: str = "WARNING"
    logging_conf_file: str | None = None


class PipelineDriver:
    """Drive every sample through the pipeline state machine.

    Args:
        samples: Samples to process
        settings: Run-wide settings
        build: Function running a list of Luigi tasks (``build_luigi_tasks``
            signature)
    """

    def __init__(
        self,
        samples: Iterable[Sample],
        settings: RunSettings,
        build: Callable[..., LuigiRunResult] = build_luigi_tasks,
    ) -> None:
        self.settings = settings
        self.build = build
        self.runs = [SampleRun(s) for s in samples]
        self.track_outcomes: dict[str, dict[Track, bool]] = {
            r.alias: {} for r in self.runs
        }
        self.resource_vcf_path = ""
        self.__logger = logging.getLogger(__name__)

    @property
    def active_runs(self) -> list[SampleRun]:
        return [r for r in self.runs if r.is_active]

    def run(self) -> list[SampleRun]:
        """Run all stages and return the final state of every sample."""
        self.check_inputs()
        self.resolve_contigs()
        self.resolve_tracks()
        self.call_variants()
        self.phase_variants()
        self.aggregate_alignments()
        self.report()
        self.run_dependent_tracks()
        return self.runs

    def _commands(self, *names: str) -> dict[str, str]:
        return {
            n: self.settings.commands[n] for n in names if n in self.settings.commands
        }

    def _track_dir(self, track: Track, alias: str) -> Path:
        return Path(self.settings.dest_dir_path).resolve().joinpath(track.value, alias)

    def _build_stage(
        self,
        stage: PipelineState,
        tasks_by_alias: Mapping[str, Sequence[luigi.Task]],
        extra_tasks: Sequence[luigi.Task] = (),
    ) -> None:
        """Build the tasks of a stage and fail the samples left incomplete.

        ``extra_tasks`` share the build but do not affect sample states.
        """
        tasks = [*(t for ts in tasks_by_alias.values() for t in ts), *extra_tasks]
        if tasks:
            self.__logger.debug(
                "%s tasks:%s%s", stage.value, os.linesep, pformat(tasks)
            )
            r = self._build(tasks)
            if not r.scheduling_succeeded:
                self.__logger.warning("%s: %s", stage.value, r.one_line_summary)
        runs = {r.alias: r for r in self.runs}
        for alias, ts in tasks_by_alias.items():
            incomplete = [t.task_id for t in ts if not t.complete()]
            if incomplete and runs[alias].is_active:
                runs[alias].fail(
                    stage=stage, reason=f"incomplete tasks: {', '.join(incomplete)}"
                )

    def _build(self, tasks: Sequence[luigi.Task]) -> LuigiRunResult:
        return self.build(
            tasks=list(tasks),
            workers=self.settings.n_worker,
            log_level=self.settings.log_level,
            check_scheduling_succeeded=False,
            **(
                {"logging_conf_file": self.settings.logging_conf_file}
                if self.settings.logging_conf_file
                else {}
            ),
        )

    def check_inputs(self) -> None:
        """Init: fail samples whose alignment or its index is missing."""
        for r in self.active_runs:
            missing = [
                p
                for p in [r.sample.alignment_path, r.sample.alignment_index_path]
                if not Path(p).is_file()
            ]
            if missing:
                r.fail(stage=PipelineState.INIT, reason=f"file not found: {missing}")

    def resolve_contigs(self) -> None:
        """ContigsResolved: index the references and derive each ContigSet."""
        sh_config = dict(self.settings.sh_config)
        fa_tasks = {
            fa: FetchReferenceFasta(
                fa_path=fa, **self._commands("samtools"), sh_config=sh_config
            )
            for fa in sorted({r.sample.fa_path for r in self.active_runs})
        }
        resource_tasks = (
            [
                FetchResourceVcf(
                    src_path=self.settings.reference_variants_vcf_path,
                    dest_dir_path=str(
                        Path(self.settings.dest_dir_path)
                        .resolve()
                        .joinpath("resource")
                    ),
                    **self._commands("bgzip", "tabix"),
                    n_cpu=self.settings.n_cpu,
                    sh_config=sh_config,
                )
            ]
            if self.settings.reference_variants_vcf_path
            else []
        )
        self._build_stage(
            PipelineState.CONTIGS_RESOLVED,
            {
                r.alias: [fa_tasks[r.sample.fa_path], *resource_tasks]
                for r in self.active_runs
            },
        )
        if resource_tasks and resource_tasks[0].complete():
            self.resource_vcf_path = resource_tasks[0].output()[0].path
        for r in self.active_runs:
            try:
                contig_set = resolve_contig_set(
                    r.sample.fa_path, policy=self.settings.contig_policy
                )
            except (OSError, ValueError) as e:
                r.fail(stage=PipelineState.CONTIGS_RESOLVED, reason=str(e))
                continue
            if contig_set:
                r.resolve_contigs(contig_set)
            else:
                r.fail(
                    stage=PipelineState.CONTIGS_RESOLVED,
                    reason=(
                        "no contigs selected by the"
                        f" {ContigPolicy(self.settings.contig_policy).value} policy"
                    ),
                )

    def resolve_tracks(self) -> None:
        """TracksResolved: expand the requested tracks once per sample."""
        enabled = resolve(self.settings.requested_tracks, self.settings.flags)
        for r in self.active_runs:
            r.resolve_tracks(enabled)

    def is_dependent_track(self, run: SampleRun, track: Track) -> bool:
        return (
            track is not Track.SNP
            and Track.SNP in run.enabled_tracks
            and depends_on_small_variants(track, self.settings.flags)
        )

    def snp_task(self, run: SampleRun) -> CallSmallVariants:
        return CallSmallVariants(
            alignment_path=run.sample.alignment_path,
            fa_path=run.sample.fa_path,
            sample_name=run.alias,
            dest_dir_path=str(self._track_dir(Track.SNP, run.alias)),
            bed_path=(run.sample.bed_path or self.settings.bed_path),
            contig_names=run.contig_names,
            output_gvcf=self.settings.output_gvcf,
            caller=self.settings.small_variant_caller,
            caller_config=dict(self.settings.caller_config),
            **self._commands("bcftools", "tabix"),
            n_cpu=self.settings.n_cpu,
            sh_config=dict(self.settings.sh_config),
        )

    def track_task(
        self,
        run: SampleRun,
        track: Track,
        alignment_path: str,
        snv_vcf_path: str = "",
        phased: bool = False,
    ) -> TrackTask:
        """Build the task of a downstream track for one sample."""
        if track is Track.SV:
            extra = {**self._commands("sniffles"), "phased": phased}
        elif track is Track.CNV:
            extra = {
                **self._commands("mosdepth", "spectre", "run_qdnaseq"),
                "cnv_backend": CnvBackend(self.settings.flags.cnv_backend).value,
                "genome_build": self.settings.genome_build,
            }
        elif track is Track.STR:
            extra = {
                **self._commands("straglr"),
                "str_loci_bed_path": self.settings.str_loci_bed_path,
                "sex": (run.sample.sex or ""),
            }
        else:
            extra = {**self._commands("modkit", "bgzip"), "phased": phased}
        return TRACK_TASKS[track](
            alignment_path=alignment_path,
            fa_path=run.sample.fa_path,
            sample_name=run.alias,
            dest_dir_path=str(self._track_dir(track, run.alias)),
            snv_vcf_path=snv_vcf_path,
            **self._commands("bcftools", "tabix"),
            n_cpu=self.settings.n_cpu,
            sh_config=dict(self.settings.sh_config),
            **extra,
        )

    def call_variants(self) -> None:
        """Calling: small variants plus the tracks that do not depend on them.

        Independent tracks share the build but not the sample state; their
        outcomes are recorded in ``track_outcomes``.
        """
        snp_tasks: dict[str, list[luigi.Task]] = {}
        track_tasks: dict[str, dict[Track, luigi.Task]] = {}
        for r in self.active_runs:
            r.advance(PipelineState.CALLING)
            if Track.SNP in r.enabled_tracks:
                snp_tasks[r.alias] = [self.snp_task(r)]
            track_tasks[r.alias] = {
                t: self.track_task(r, t, alignment_path=r.sample.alignment_path)
                for t in sorted(r.enabled_tracks, key=list(Track).index)
                if t is not Track.SNP and not self.is_dependent_track(r, t)
            }
        self._build_stage(
            PipelineState.CALLING,
            snp_tasks,
            extra_tasks=[t for d in track_tasks.values() for t in d.values()],
        )
        for alias, d in track_tasks.items():
            for track, task in d.items():
                self.track_outcomes[alias][track] = task.complete()

    def _phased_runs(self) -> list[SampleRun]:
        return [
            r
            for r in self.active_runs
            if requires_phasing(r.enabled_tracks, self.settings.flags)
        ]

    def _phase_kwargs(self, run: SampleRun) -> dict[str, Any]:
        call_set = self.snp_task(run).requires().call_set()
        return {
            "input_vcf_path": call_set.vcf_path,
            "alignment_path": run.sample.alignment_path,
            "fa_path": run.sample.fa_path,
            "sample_name": run.alias,
            "dest_dir_path": str(Path(call_set.vcf_path).parent),
            **self._commands("whatshap", "tabix"),
            "sh_config": dict(self.settings.sh_config),
        }

    def _haplotag_kwargs(self, run: SampleRun) -> dict[str, Any]:
        return {
            **self._phase_kwargs(run),
            "contig_names": run.contig_names,
            "alignment_format": self.settings.alignment_format,
            **self._commands("bcftools", "samtools"),
            "n_cpu": self.settings.n_cpu,
        }

    def phase_variants(self) -> None:
        """Phasing: phase once per sample and haplotag per contig."""
        tasks_by_alias: dict[str, list[luigi.Task]] = {}
        for r in self._phased_runs():
            r.advance(PipelineState.PHASING)
            tasks_by_alias[r.alias] = [
                HaplotagAlignment(**self._haplotag_kwargs(r)),
                SummarizeHaplotypeBlocks(**self._phase_kwargs(r)),
            ]
        self._build_stage(PipelineState.PHASING, tasks_by_alias)

    def aggregate_alignments(self) -> None:
        """Aggregating: merge per-contig fragments of the phased samples."""
        tasks_by_alias: dict[str, list[luigi.Task]] = {}
        for r in self.active_runs:
            phased = r.state is PipelineState.PHASING
            r.advance(PipelineState.AGGREGATING)
            if phased:
                tasks_by_alias[r.alias] = [
                    MergeContigAlignments(**self._haplotag_kwargs(r))
                ]
        self._build_stage(PipelineState.AGGREGATING, tasks_by_alias)

    def _result_paths(self, run: SampleRun) -> dict[str, Any]:
        """Collect the artifact paths of a sample for its PipelineResult."""
        if Track.SNP not in run.enabled_tracks:
            return {}
        caller_task = self.snp_task(run).requires()
        call_sets = [caller_task.call_set()]
        paths: dict[str, Any] = {"gvcf_path": caller_task.gvcf_path()}
        if PipelineState.PHASING in run.history:
            phased_vcf, phased_tbi = PhaseVariants(**self._phase_kwargs(run)).output()
            call_sets.append(
                CallSet(
                    sample=run.alias,
                    track=Track.SNP,
                    phase_state=PhaseState.PHASED,
                    vcf_path=phased_vcf.path,
                    index_path=phased_tbi.path,
                )
            )
            paths["haplotagged_alignment_path"] = (
                MergeContigAlignments(**self._haplotag_kwargs(run)).output()[0].path
            )
            paths["haploblocks_path"] = (
                SummarizeHaplotypeBlocks(**self._phase_kwargs(run)).output()[0].path
            )
        return {"call_sets": tuple(call_sets), **paths}

    def report(self) -> None:
        """Reporting: write the run manifest and report, then publish results."""
        tasks_by_alias: dict[str, list[luigi.Task]] = {}
        manifest_kwargs: dict[str, dict[str, Any]] = {}
        for r in self.active_runs:
            r.advance(PipelineState.REPORTING)
            manifest_kwargs[r.alias] = {
                "sample_name": r.alias,
                "dest_dir_path": str(
                    Path(self.settings.dest_dir_path)
                    .resolve()
                    .joinpath("report", r.alias)
                ),
                "command_paths": sorted(self.settings.commands.values()),
                "run_params": {
                    **self.settings.run_params,
                    "sample": r.alias,
                    "enabled_tracks": sorted(t.value for t in r.enabled_tracks),
                    "contigs": r.contig_names,
                },
                "sh_config": dict(self.settings.sh_config),
            }
            tasks = [WriteRunManifest(**manifest_kwargs[r.alias])]
            if Track.SNP in r.enabled_tracks:
                paths = self._result_paths(r)
                final = PipelineResult(sample=r.alias, **paths).final_call_set()
                tasks.append(
                    MakeSnpReport(
                        **manifest_kwargs[r.alias],
                        vcf_path=final.vcf_path,
                        fa_path=r.sample.fa_path,
                        reference_variants_vcf_path=self.resource_vcf_path,
                        **self._commands("bcftools"),
                        n_cpu=self.settings.n_cpu,
                        haploblocks_path=(paths.get("haploblocks_path") or ""),
                        phased=(final.phase_state is PhaseState.PHASED),
                    )
                )
            tasks_by_alias[r.alias] = tasks
        self._build_stage(PipelineState.REPORTING, tasks_by_alias)
        for r in self.active_runs:
            manifest, *report = tasks_by_alias[r.alias]
            versions_txt, params_json = manifest.output()
            r.publish(
                PipelineResult(
                    sample=r.alias,
                    versions_path=versions_txt.path,
                    params_path=params_json.path,
                    **(
                        {
                            "report_path": report[0].output()[0].path,
                            "stats_path": report[0].output()[1].path,
                        }
                        if report
                        else {}
                    ),
                    **self._result_paths(r),
                )
            )

    def run_dependent_tracks(self) -> None:
        """Done: run the tracks that read the published small-variant results."""
        tasks: dict[str, dict[Track, luigi.Task]] = {}
        for r in self.runs:
            if r.state is not PipelineState.DONE:
                continue
            final = r.result.final_call_set()
            phased = final is not None and final.phase_state is PhaseState.PHASED
            alignment_path = (
                r.result.haplotagged_alignment_path or r.sample.alignment_path
            )
            tasks[r.alias] = {
                t: self.track_task(
                    r,
                    t,
                    alignment_path=alignment_path,
                    snv_vcf_path=(final.vcf_path if final else ""),
                    phased=(phased and self.settings.flags.phased),
                )
                for t in sorted(r.enabled_tracks, key=list(Track).index)
                if self.is_dependent_track(r, t)
            }
        all_tasks = [t for d in tasks.values() for t in d.values()]
        if all_tasks:
            print_log(f"Run dependent tracks:\t{len(all_tasks)} task(s)")
            self._build(all_tasks)
        for alias, d in tasks.items():
            for track, task in d.items():
                self.track_outcomes[alias][track] = task.complete()

    def failed_tracks(self) -> dict[str, list[Track]]:
        return {
            alias: [t for t, ok in d.items() if not ok]
            for alias, d in self.track_outcomes.items()
            if not all(d.values())
        }
