"""Track activation rules.

The tracks a user requests are expanded into the tracks that actually run by a
fixed rule table applied until no rule adds anything new.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum


class Track(str, Enum):
    """Independently toggleable analysis tracks."""

    SNP = "snp"
    SV = "sv"
    CNV = "cnv"
    STR = "str"
    MOD = "mod"


class CnvBackend(str, Enum):
    """Copy-number calling backends."""

    SPECTRE = "spectre"
    QDNASEQ = "qdnaseq"

    @property
    def phased_aware(self) -> bool:
        """Whether the backend consumes small-variant calls."""
        return self is CnvBackend.SPECTRE


@dataclass(frozen=True)
class TrackFlags:
    """Run-level flags consulted by the activation rules.

    Attributes:
        phased: Phasing was requested
        cnv_backend: Copy-number backend in use
        str_enabled: Repeat genotyping was requested by flag
    """

    phased: bool = False
    cnv_backend: CnvBackend = CnvBackend.SPECTRE
    str_enabled: bool = False


@dataclass(frozen=True)
class ActivationRule:
    """An enabled ``trigger`` track enables ``implies`` when ``condition`` holds."""

    trigger: Track
    implies: Track
    condition: Callable[[TrackFlags], bool]
    reason: str


ACTIVATION_RULES: tuple[ActivationRule, ...] = (
    ActivationRule(
        trigger=Track.STR,
        implies=Track.SNP,
        condition=lambda f: True,
        reason="repeat genotyping reads a haplotagged alignment",
    ),
    ActivationRule(
        trigger=Track.CNV,
        implies=Track.SNP,
        condition=lambda f: f.cnv_backend.phased_aware,
        reason="the phased-aware CNV backend reads small-variant calls",
    ),
    ActivationRule(
        trigger=Track.SV,
        implies=Track.SNP,
        condition=lambda f: f.phased,
        reason="phased SV calling reads a haplotagged alignment",
    ),
)


def resolve(
    requested: Iterable[Track | str], flags: TrackFlags = TrackFlags()
) -> frozenset[Track]:
    """Expand requested tracks into the set of tracks that must run.

    Every requested track enables itself, then ``ACTIVATION_RULES`` are applied
    to fixpoint. The function is total and has no side effects.

    Args:
        requested: Requested tracks (enum members or their values)
        flags: Run-level flags

    Returns:
        Enabled tracks
    """
    enabled = {Track(t) for t in requested}
    if flags.str_enabled:
        enabled.add(Track.STR)
    while True:
        added = {
            r.implies
            for r in ACTIVATION_RULES
            if r.trigger in enabled and r.condition(flags)
        } - enabled
        if not added:
            return frozenset(enabled)
        enabled |= added


def phasing_consumers(
    enabled: Iterable[Track], flags: TrackFlags = TrackFlags()
) -> frozenset[Track]:
    """Return the enabled tracks that read phased or haplotagged data.

    STR always reads the haplotagged alignment; the other tracks do only when
    phasing was requested.
    """
    consumers = set()
    for t in enabled:
        if t is Track.STR:
            consumers.add(t)
        elif not flags.phased:
            continue
        elif t in {Track.SNP, Track.SV, Track.MOD} or (
            t is Track.CNV and flags.cnv_backend.phased_aware
        ):
            consumers.add(t)
    return frozenset(consumers)


def requires_phasing(
    enabled: Iterable[Track], flags: TrackFlags = TrackFlags()
) -> bool:
    enabled = frozenset(enabled)
    return Track.SNP in enabled and bool(phasing_consumers(enabled, flags))


def depends_on_small_variants(track: Track, flags: TrackFlags = TrackFlags()) -> bool:
    """Whether a track consumes outputs published by the small-variant driver."""
    if track is Track.STR:
        return True
    elif track is Track.CNV:
        return flags.cnv_backend.phased_aware
    elif track in {Track.SV, Track.MOD}:
        return flags.phased
    else:
        return False
