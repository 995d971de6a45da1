"""Per-sample pipeline state machine."""

import logging
from dataclasses import dataclass
from enum import Enum

from ..errors import InvalidTransitionError
from .contigs import Contig
from .models import PipelineResult, Sample
from .tracks import Track


class PipelineState(str, Enum):
    INIT = "Init"
    CONTIGS_RESOLVED = "ContigsResolved"
    TRACKS_RESOLVED = "TracksResolved"
    CALLING = "Calling"
    PHASING = "Phasing"
    AGGREGATING = "Aggregating"
    REPORTING = "Reporting"
    DONE = "Done"
    FAILED = "Failed"


TERMINAL_STATES = frozenset({PipelineState.DONE, PipelineState.FAILED})

TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.INIT: frozenset({PipelineState.CONTIGS_RESOLVED}),
    PipelineState.CONTIGS_RESOLVED: frozenset({PipelineState.TRACKS_RESOLVED}),
    PipelineState.TRACKS_RESOLVED: frozenset({PipelineState.CALLING}),
    PipelineState.CALLING: frozenset({
        PipelineState.PHASING,
        PipelineState.AGGREGATING,
    }),
    PipelineState.PHASING: frozenset({PipelineState.AGGREGATING}),
    PipelineState.AGGREGATING: frozenset({PipelineState.REPORTING}),
    PipelineState.REPORTING: frozenset({PipelineState.DONE}),
}


@dataclass(frozen=True)
class StageFailure:
    """Diagnostics carried by a failed sample run."""

    sample: str
    stage: PipelineState
    reason: str

    def __str__(self) -> str:
        return f"{self.sample} failed at {self.stage.value}: {self.reason}"


class SampleRun:
    """State of one sample moving through the pipeline.

    The ContigSet and the enabled tracks are set once, on the transitions that
    resolve them, and the PipelineResult only on the transition to ``Done``.
    """

    def __init__(self, sample: Sample) -> None:
        self.sample = sample
        self.state = PipelineState.INIT
        self.history: list[PipelineState] = [PipelineState.INIT]
        self.failure: StageFailure | None = None
        self.contig_set: tuple[Contig, ...] | None = None
        self.enabled_tracks: frozenset[Track] | None = None
        self.result: PipelineResult | None = None

    def __repr__(self) -> str:
        return f"SampleRun({self.sample.alias!r}, state={self.state.value})"

    @property
    def alias(self) -> str:
        return self.sample.alias

    @property
    def is_active(self) -> bool:
        return self.state not in TERMINAL_STATES

    @property
    def contig_names(self) -> list[str]:
        return [c.name for c in (self.contig_set or ())]

    def advance(self, state: PipelineState) -> None:
        """Move to the next state along a legal edge.

        Raises:
            InvalidTransitionError: If the edge does not exist
        """
        if state not in TRANSITIONS.get(self.state, frozenset()):
            msg = (
                f"{self.alias}: invalid transition"
                f" {self.state.value} -> {PipelineState(state).value}"
            )
            raise InvalidTransitionError(msg)
        logging.getLogger(__name__).info(
            "%s:\t%s -> %s", self.alias, self.state.value, state.value
        )
        self.state = state
        self.history.append(state)

    def resolve_contigs(self, contig_set: tuple[Contig, ...]) -> None:
        self.advance(PipelineState.CONTIGS_RESOLVED)
        self.contig_set = tuple(contig_set)

    def resolve_tracks(self, enabled_tracks: frozenset[Track]) -> None:
        self.advance(PipelineState.TRACKS_RESOLVED)
        self.enabled_tracks = frozenset(enabled_tracks)

    def publish(self, result: PipelineResult) -> None:
        """Attach the PipelineResult and finish the run."""
        if self.state is not PipelineState.REPORTING:
            msg = f"{self.alias}: results can only be published from Reporting"
            raise InvalidTransitionError(msg)
        self.advance(PipelineState.DONE)
        self.result = result

    def fail(self, stage: PipelineState | None = None, reason: str = "") -> None:
        """Move to ``Failed``, recording the stage that failed.

        Args:
            stage: Failing stage (defaults to the current state)
            reason: Human-readable cause

        Raises:
            InvalidTransitionError: If the run is already terminal
        """
        if not self.is_active:
            msg = f"{self.alias}: cannot fail a run in {self.state.value}"
            raise InvalidTransitionError(msg)
        self.failure = StageFailure(
            sample=self.alias, stage=(stage or self.state), reason=reason
        )
        logging.getLogger(__name__).error(str(self.failure))
        self.state = PipelineState.FAILED
        self.history.append(PipelineState.FAILED)
