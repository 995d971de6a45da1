"""Tests for work-chunk planning."""

import pytest

from hvarc.plan.chunks import (
    Chunk,
    Region,
    plan_chunks,
    read_bed,
    restrict_regions,
    write_bed,
)
from hvarc.plan.contigs import Contig

CONTIGS = (Contig("chr1", 12_000_000), Contig("chr2", 4_000_000))


class TestPlanChunks:
    """Test plan_chunks()."""

    def test_whole_contigs(self):
        chunks = plan_chunks(CONTIGS, chunk_size=5_000_000)
        assert [(c.contig, c.start, c.end) for c in chunks] == [
            ("chr1", 0, 5_000_000),
            ("chr1", 5_000_000, 10_000_000),
            ("chr1", 10_000_000, 12_000_000),
            ("chr2", 0, 4_000_000),
        ]
        assert [c.index for c in chunks] == [0, 1, 2, 3]

    def test_chunk_names_sort_in_merge_order(self):
        chunks = plan_chunks(CONTIGS, chunk_size=1_000_000)
        names = [c.name for c in chunks]
        assert sorted(names) == names
        assert names[0] == "00000.chr1_0_1000000"

    def test_regions_follow_contig_set_order(self):
        regions = [
            Region("chr2", 100, 200),
            Region("chr1", 500, 900),
            Region("chr1", 0, 600),
            Region("chr3", 0, 100),
        ]
        chunks = plan_chunks(CONTIGS, chunk_size=1_000, regions=regions)
        assert chunks == (
            Chunk(index=0, contig="chr1", start=0, end=900),
            Chunk(index=1, contig="chr2", start=100, end=200),
        )

    def test_regions_clipped_to_contig_length(self):
        regions = [
            Region("chr2", 3_999_900, 5_000_000),
            Region("chr2", 4_500_000, 4_600_000),
        ]
        assert restrict_regions(CONTIGS, regions) == [
            Region("chr2", 3_999_900, 4_000_000)
        ]

    def test_empty_filter_yields_no_chunks(self):
        assert plan_chunks(CONTIGS, regions=[]) == ()

    @pytest.mark.parametrize("chunk_size", [0, -1])
    def test_invalid_chunk_size(self, chunk_size):
        with pytest.raises(ValueError, match="chunk_size"):
            plan_chunks(CONTIGS, chunk_size=chunk_size)


class TestBed:
    """Test BED reading and writing."""

    def test_read_bed_skips_headers(self, tmp_path):
        bed = tmp_path / "targets.bed"
        bed.write_text(
            "track name=targets\n#comment\nchr1\t10\t20\tgeneA\n\nchr2\t0\t5\n"
        )
        assert read_bed(bed) == [Region("chr1", 10, 20), Region("chr2", 0, 5)]

    @pytest.mark.parametrize("line", ["chr1\t10\n", "chr1\t20\t10\n", "chr1\t-1\t5\n"])
    def test_read_bed_rejects_invalid_intervals(self, tmp_path, line):
        bed = tmp_path / "bad.bed"
        bed.write_text(line)
        with pytest.raises(ValueError):
            read_bed(bed)

    def test_write_bed(self, tmp_path):
        bed = tmp_path / "chunk.bed"
        write_bed([Chunk(3, "chr1", 0, 100), Region("chr2", 5, 10)], bed)
        assert bed.read_text() == "chr1\t0\t100\nchr2\t5\t10\n"
