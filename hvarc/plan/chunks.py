"""Work-chunk planning for the chunked small-variant caller."""

import os
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from pathlib import Path

from .contigs import Contig

DEFAULT_CHUNK_SIZE = 5_000_000


@dataclass(frozen=True, order=True)
class Region:
    """A 0-based, half-open interval as written in BED files."""

    contig: str
    start: int
    end: int


@dataclass(frozen=True)
class Chunk:
    """A sub-region work unit.

    ``index`` is the position of the chunk in merge order.
    """

    index: int
    contig: str
    start: int
    end: int

    @property
    def name(self) -> str:
        return f"{self.index:05d}.{self.contig}_{self.start}_{self.end}"


def read_bed(bed_path: str | os.PathLike[str]) -> list[Region]:
    """Read intervals from a BED file, skipping headers and comments.

    Raises:
        ValueError: If an interval is malformed
    """
    regions = []
    with Path(bed_path).open(encoding="utf-8") as f:
        for line in f:
            if not line.strip() or line.startswith(("#", "track", "browser")):
                continue
            fields = line.split()
            if len(fields) < 3:
                msg = f"Invalid BED line: {line!r}"
                raise ValueError(msg)
            r = Region(contig=fields[0], start=int(fields[1]), end=int(fields[2]))
            if r.start < 0 or r.end <= r.start:
                msg = f"Invalid BED interval: {line!r}"
                raise ValueError(msg)
            regions.append(r)
    return regions


def _merge_intervals(regions: Iterable[Region]) -> list[tuple[int, int]]:
    merged: list[tuple[int, int]] = []
    for r in sorted(regions):
        if merged and r.start <= merged[-1][1]:
            merged[-1] = (merged[-1][0], max(merged[-1][1], r.end))
        else:
            merged.append((r.start, r.end))
    return merged


def restrict_regions(
    contigs: Sequence[Contig], regions: Sequence[Region] | None = None
) -> list[Region]:
    """Restrict the region filter to the ContigSet.

    Overlapping intervals are merged and clipped to the contig length. Without
    a filter, every contig is covered end to end.

    Returns:
        Regions in ContigSet order, then by start position
    """
    if regions is None:
        return [Region(contig=c.name, start=0, end=c.length) for c in contigs]
    else:
        return [
            Region(contig=c.name, start=s, end=min(e, c.length))
            for c in contigs
            for s, e in _merge_intervals(r for r in regions if r.contig == c.name)
            if s < c.length
        ]


def plan_chunks(
    contigs: Sequence[Contig],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    regions: Sequence[Region] | None = None,
) -> tuple[Chunk, ...]:
    """Split the ContigSet (optionally restricted to regions) into chunks.

    Chunks are numbered in region order: contigs in ContigSet order, then by
    start position. Intervals outside a contig's length are clipped.

    Args:
        contigs: ContigSet
        chunk_size: Maximum chunk length in bp
        regions: Optional region filter

    Returns:
        Chunks in merge order

    Raises:
        ValueError: If chunk_size is not positive
    """
    if chunk_size <= 0:
        msg = f"chunk_size must be positive: {chunk_size}"
        raise ValueError(msg)
    chunks: list[Chunk] = []
    for r in restrict_regions(contigs, regions=regions):
        for s in range(r.start, r.end, chunk_size):
            chunks.append(
                Chunk(
                    index=len(chunks),
                    contig=r.contig,
                    start=s,
                    end=min(s + chunk_size, r.end),
                )
            )
    return tuple(chunks)


def write_bed(
    regions: Iterable[Region | Chunk], bed_path: str | os.PathLike[str]
) -> None:
    with Path(bed_path).open(mode="w", encoding="utf-8") as f:
        for r in regions:
            f.write(f"{r.contig}\t{r.start}\t{r.end}\n")
