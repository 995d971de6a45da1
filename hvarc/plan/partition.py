"""Fan-in bookkeeping for per-contig alignment fragments.

After haplotagging, every contig of a sample's ContigSet must be represented by
exactly one fragment: either a haplotagged one or a pass-through one extracted
from the input alignment. The functions here compute that partition and check
it before fragments are concatenated.
"""

from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from ..errors import PartitionViolationError
from .models import ContigAlignment


@dataclass(frozen=True)
class ContigPartition:
    """Split of a ContigSet into haplotagged and pass-through contigs.

    Attributes:
        contig_names: The full ContigSet, in order
        haplotagged: Contigs haplotagged by the phasing stage
        pass_through: Complement of ``haplotagged`` in ``contig_names``
    """

    contig_names: tuple[str, ...]
    haplotagged: frozenset[str]
    pass_through: frozenset[str]

    def ordered_pass_through(self) -> list[str]:
        return [c for c in self.contig_names if c in self.pass_through]

    def ordered_haplotagged(self) -> list[str]:
        return [c for c in self.contig_names if c in self.haplotagged]


def _find_duplicates(names: Iterable[str]) -> list[str]:
    return sorted(k for k, v in Counter(names).items() if v > 1)


def partition_contigs(
    contig_names: Sequence[str], haplotagged: Iterable[str]
) -> ContigPartition:
    """Compute the haplotagged/pass-through partition of a ContigSet.

    Args:
        contig_names: Full ContigSet of the sample
        haplotagged: Contigs that were haplotagged

    Returns:
        ContigPartition

    Raises:
        PartitionViolationError: If a contig is duplicated, a haplotagged
            contig is not in the ContigSet, or the partition is not exact
    """
    haplotagged = list(haplotagged)
    for label, names in [("ContigSet", contig_names), ("haplotagged", haplotagged)]:
        dups = _find_duplicates(names)
        if dups:
            msg = f"Duplicate contigs in {label}: {dups}"
            raise PartitionViolationError(msg)
    unknown = sorted(set(haplotagged) - set(contig_names))
    if unknown:
        msg = f"Haplotagged contigs not in the ContigSet: {unknown}"
        raise PartitionViolationError(msg)
    tagged = frozenset(haplotagged)
    passed = frozenset(c for c in contig_names if c not in tagged)
    if tagged & passed or len(tagged) + len(passed) != len(contig_names):
        msg = (
            f"Contig partition is not exact: {len(tagged)} haplotagged +"
            f" {len(passed)} pass-through != {len(contig_names)}"
        )
        raise PartitionViolationError(msg)
    return ContigPartition(
        contig_names=tuple(contig_names), haplotagged=tagged, pass_through=passed
    )


def group_fragments_by_sample(
    fragments: Iterable[ContigAlignment],
) -> dict[str, list[ContigAlignment]]:
    """Group fragments by sample, independent of arrival order."""
    groups: dict[str, list[ContigAlignment]] = {}
    for f in fragments:
        groups.setdefault(f.sample, []).append(f)
    return groups


def order_fragments(
    contig_names: Sequence[str], fragments: Iterable[ContigAlignment]
) -> list[ContigAlignment]:
    """Return one fragment per contig in ContigSet order.

    Args:
        contig_names: Full ContigSet of the sample
        fragments: Fragments of a single sample in any order

    Returns:
        Fragments in ContigSet order

    Raises:
        PartitionViolationError: If fragments span samples, or a contig is
            missing, duplicated, or not in the ContigSet
    """
    fragments = list(fragments)
    samples = {f.sample for f in fragments}
    if len(samples) > 1:
        msg = f"Fragments of multiple samples cannot be merged: {sorted(samples)}"
        raise PartitionViolationError(msg)
    dups = _find_duplicates(f.contig for f in fragments)
    if dups:
        msg = f"Contigs emitted more than once: {dups}"
        raise PartitionViolationError(msg)
    by_contig = {f.contig: f for f in fragments}
    unknown = sorted(set(by_contig) - set(contig_names))
    missing = [c for c in contig_names if c not in by_contig]
    if unknown or missing:
        msg = (
            "Fragments do not cover the ContigSet:"
            f" missing={missing}, unknown={unknown}"
        )
        raise PartitionViolationError(msg)
    return [by_contig[c] for c in contig_names]
