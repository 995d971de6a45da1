"""Tests for track activation rules."""

import itertools

import pytest

from hvarc.plan.tracks import (
    CnvBackend,
    Track,
    TrackFlags,
    depends_on_small_variants,
    phasing_consumers,
    requires_phasing,
    resolve,
)

ALL_FLAGS = [
    TrackFlags(phased=p, cnv_backend=b, str_enabled=s)
    for p, b, s in itertools.product([False, True], list(CnvBackend), [False, True])
]
ALL_REQUESTS = [
    frozenset(c)
    for n in range(len(Track) + 1)
    for c in itertools.combinations(list(Track), n)
]


class TestResolve:
    """Test resolve()."""

    def test_str_enables_snp(self):
        """Repeat genotyping implicitly enables small-variant calling."""
        assert resolve({Track.STR}) == {Track.STR, Track.SNP}

    def test_phased_sv_enables_snp(self):
        """Phased SV calling implicitly enables small-variant calling."""
        assert resolve({Track.SV}, TrackFlags(phased=True)) == {Track.SV, Track.SNP}

    def test_unphased_sv_stays_alone(self):
        assert resolve({Track.SV}) == {Track.SV}

    def test_cnv_backend(self):
        assert resolve({Track.CNV}) == {Track.CNV, Track.SNP}
        assert resolve(
            {Track.CNV}, TrackFlags(cnv_backend=CnvBackend.QDNASEQ)
        ) == {Track.CNV}

    def test_mod_never_pulls_snp(self):
        assert resolve({Track.MOD}, TrackFlags(phased=True)) == {Track.MOD}

    def test_str_flag(self):
        assert resolve(set(), TrackFlags(str_enabled=True)) == {Track.STR, Track.SNP}

    def test_accepts_values(self):
        assert resolve(["sv", "snp"]) == {Track.SV, Track.SNP}

    def test_unknown_track(self):
        with pytest.raises(ValueError):
            resolve(["cnv", "indel"])

    def test_empty_request(self):
        assert resolve(set()) == frozenset()

    @pytest.mark.parametrize("flags", ALL_FLAGS)
    def test_idempotent(self, flags):
        for requested in ALL_REQUESTS:
            enabled = resolve(requested, flags)
            assert resolve(enabled, flags) == enabled

    @pytest.mark.parametrize("flags", ALL_FLAGS)
    def test_monotone(self, flags):
        for a, b in itertools.product(ALL_REQUESTS, repeat=2):
            if a <= b:
                assert resolve(a, flags) <= resolve(b, flags)

    @pytest.mark.parametrize("flags", ALL_FLAGS)
    def test_superset_of_request(self, flags):
        for requested in ALL_REQUESTS:
            assert requested <= resolve(requested, flags)


class TestPhasing:
    """Test phasing consumer selection."""

    def test_str_always_consumes_phasing(self):
        enabled = resolve({Track.STR})
        assert phasing_consumers(enabled) == {Track.STR}
        assert requires_phasing(enabled)

    def test_unphased_run_needs_no_phasing(self):
        enabled = resolve({Track.SNP, Track.SV, Track.MOD})
        assert phasing_consumers(enabled) == frozenset()
        assert not requires_phasing(enabled)

    def test_phased_run(self):
        flags = TrackFlags(phased=True, cnv_backend=CnvBackend.QDNASEQ)
        enabled = resolve({Track.SV, Track.CNV, Track.MOD}, flags)
        assert phasing_consumers(enabled, flags) == {Track.SNP, Track.SV, Track.MOD}
        assert requires_phasing(enabled, flags)

    def test_phasing_needs_snp(self):
        flags = TrackFlags(phased=True)
        assert not requires_phasing({Track.MOD}, flags)


@pytest.mark.parametrize(
    ("track", "flags", "expected"),
    [
        (Track.SNP, TrackFlags(phased=True), False),
        (Track.STR, TrackFlags(), True),
        (Track.CNV, TrackFlags(), True),
        (Track.CNV, TrackFlags(cnv_backend=CnvBackend.QDNASEQ), False),
        (Track.SV, TrackFlags(), False),
        (Track.SV, TrackFlags(phased=True), True),
        (Track.MOD, TrackFlags(phased=True), True),
    ],
)
def test_depends_on_small_variants(track, flags, expected):
    assert depends_on_small_variants(track, flags) is expected
