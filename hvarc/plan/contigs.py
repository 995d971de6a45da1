"""Reference contig selection.

The ContigSet is read from a FASTA index (``.fai``) and filtered by an
inclusion policy. Its order is the index order, which every downstream merge
follows.
"""

import logging
import os
import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

STANDARD_CONTIG_PATTERN = re.compile(r"^(chr)?([1-9]|1[0-9]|2[0-2]|X|Y|M|MT)$")
MITOCHONDRIAL_CONTIGS = frozenset({"chrM", "chrMT", "M", "MT"})


class ContigPolicy(str, Enum):
    """Contig inclusion policies."""

    STANDARD = "standard"
    ALL = "all"


@dataclass(frozen=True)
class Contig:
    name: str
    length: int


def read_fai(fai_path: str | os.PathLike[str]) -> list[Contig]:
    """Read contig names and lengths from a FASTA index.

    Args:
        fai_path: Path to a ``.fai`` file

    Returns:
        Contigs in index order

    Raises:
        ValueError: If a line is malformed or a contig is listed twice
    """
    contigs = []
    with Path(fai_path).open(encoding="utf-8") as f:
        for i, line in enumerate(f, start=1):
            if not line.strip():
                continue
            fields = line.rstrip("\n").split("\t")
            if len(fields) < 2 or not fields[1].isdigit():
                msg = f"Invalid FASTA index line {i}: {line!r}"
                raise ValueError(msg)
            contigs.append(Contig(name=fields[0], length=int(fields[1])))
    names = [c.name for c in contigs]
    if len(set(names)) != len(names):
        msg = f"Duplicate contig names in FASTA index: {fai_path}"
        raise ValueError(msg)
    return contigs


def is_standard_contig(name: str) -> bool:
    return bool(STANDARD_CONTIG_PATTERN.fullmatch(name))


def is_mitochondrial(name: str) -> bool:
    return name in MITOCHONDRIAL_CONTIGS


def select_contigs(
    contigs: Iterable[Contig], policy: ContigPolicy | str = ContigPolicy.STANDARD
) -> tuple[Contig, ...]:
    """Filter contigs by inclusion policy, preserving order."""
    if ContigPolicy(policy) is ContigPolicy.ALL:
        return tuple(contigs)
    else:
        return tuple(c for c in contigs if is_standard_contig(c.name))


def resolve_contig_set(
    fa_path: str | os.PathLike[str], policy: ContigPolicy | str = ContigPolicy.STANDARD
) -> tuple[Contig, ...]:
    """Derive the ContigSet for a reference FASTA.

    Args:
        fa_path: Path to a reference FASTA with a ``.fai`` beside it
        policy: Contig inclusion policy

    Returns:
        Contigs to process in reference-index order
    """
    logger = logging.getLogger(__name__)
    contig_set = select_contigs(read_fai(f"{fa_path}.fai"), policy=policy)
    logger.debug(
        "ContigSet (%s):\t%s", ContigPolicy(policy).value, [c.name for c in contig_set]
    )
    return contig_set


def read_site_counts(path: str | os.PathLike[str]) -> dict[str, int]:
    """Read a two-column TSV of phased genotype counts per contig.

    Contigs without phased genotypes do not appear in the file.
    """
    counts = {}
    with Path(path).open(encoding="utf-8") as f:
        for line in f:
            fields = line.split()
            if len(fields) == 2:
                counts[fields[0]] = int(fields[1])
    return counts


def is_haplotag_eligible(name: str, n_phased_sites: int) -> bool:
    """Return whether a contig is haplotagged.

    Mitochondrial contigs and contigs with no phased variant sites are carried
    through unmodified instead.
    """
    return n_phased_sites > 0 and not is_mitochondrial(name)


def select_haplotag_contigs(
    contig_names: Sequence[str],
    site_counts: Mapping[str, int],
    predicate: Callable[[str, int], bool] = is_haplotag_eligible,
) -> list[str]:
    """Return the contigs to haplotag, in ContigSet order."""
    return [c for c in contig_names if predicate(c, site_counts.get(c, 0))]
