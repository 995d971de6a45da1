"""Write-once records passed between pipeline stages."""

import re
from dataclasses import dataclass
from enum import Enum

from .tracks import Track


def alignment_index_path(alignment_path: str) -> str:
    """Return the ``.bai``/``.crai`` path of a BAM/CRAM file."""
    return re.sub(r"\.(cr|b)am$", ".\\1am.\\1ai", str(alignment_path))


@dataclass(frozen=True)
class Sample:
    """A sample as given in the run configuration.

    Attributes:
        alias: Sample identifier used in output names
        alignment_path: Coordinate-sorted BAM/CRAM
        fa_path: Reference FASTA
        bed_path: Optional target regions
        sex: Optional karyotypic sex used by repeat genotyping
    """

    alias: str
    alignment_path: str
    fa_path: str
    bed_path: str | None = None
    sex: str | None = None

    @property
    def alignment_index_path(self) -> str:
        return alignment_index_path(self.alignment_path)


class PhaseState(str, Enum):
    UNPHASED = "unphased"
    PHASED = "phased"


@dataclass(frozen=True)
class CallSet:
    sample: str
    track: Track
    phase_state: PhaseState
    vcf_path: str
    index_path: str


@dataclass(frozen=True)
class ContigAlignment:
    """A per-contig alignment fragment.

    ``haplotagged`` fragments come from the phasing stage; the others are
    extracted unchanged from the input alignment.
    """

    sample: str
    contig: str
    alignment_path: str
    index_path: str
    haplotagged: bool = True


@dataclass(frozen=True)
class PipelineResult:
    """Artifacts published by the small-variant driver for one sample."""

    sample: str
    call_sets: tuple[CallSet, ...] = ()
    gvcf_path: str | None = None
    haploblocks_path: str | None = None
    haplotagged_alignment_path: str | None = None
    versions_path: str | None = None
    params_path: str | None = None
    report_path: str | None = None
    stats_path: str | None = None

    def final_call_set(self, track: Track = Track.SNP) -> CallSet | None:
        """Return the final call set of a track, preferring the phased one."""
        candidates = [c for c in self.call_sets if c.track is track]
        for c in candidates:
            if c.phase_state is PhaseState.PHASED:
                return c
        return candidates[0] if candidates else None
