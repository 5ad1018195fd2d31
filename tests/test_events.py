import pytest

from subclonemerge.events import (
    DEFAULT_BOUNDARY_RESOLUTION,
    EventMatcher,
    compare_by_size,
    event_difference,
    event_set_contains,
)
from subclonemerge.models import EventKind, SomaticEvent


def snv(chrom: str, pos: int, label: str | None = None) -> SomaticEvent:
    return SomaticEvent(kind=EventKind.SNV, chrom=chrom, start=pos, label=label)


def cnv(chrom: str, start: int, end: int) -> SomaticEvent:
    return SomaticEvent(kind=EventKind.CNV, chrom=chrom, start=start, end=end, cn_frac=3.0)


def test_default_resolution():
    assert EventMatcher().resolution == DEFAULT_BOUNDARY_RESOLUTION == 20_000_000


def test_matcher_tolerates_offsets_up_to_resolution():
    m = EventMatcher(resolution=100)
    a = snv("1", 1_000)
    assert m(a, snv("1", 1_100))
    assert m(a, snv("1", 900))
    assert not m(a, snv("1", 1_101))


def test_matcher_checks_both_ends():
    m = EventMatcher(resolution=50)
    a = cnv("7", 1_000, 5_000)
    assert m(a, cnv("7", 1_050, 4_950))
    assert not m(a, cnv("7", 1_000, 5_051))


def test_matcher_requires_same_kind_and_chrom():
    m = EventMatcher(resolution=10_000)
    assert not m(snv("1", 100), snv("2", 100))
    assert not m(snv("1", 100), cnv("1", 100, 100))


def test_zero_resolution_is_exact_position_match():
    m = EventMatcher(resolution=0)
    assert m(snv("1", 5), snv("1", 5, label="other label"))
    assert not m(snv("1", 5), snv("1", 6))


@pytest.mark.parametrize("bad", [-1, 1.5, "10", True])
def test_matcher_rejects_bad_resolution(bad):
    with pytest.raises(ValueError):
        EventMatcher(resolution=bad)


def test_difference_keeps_master_order():
    m = EventMatcher(resolution=0)
    a, b, c = snv("1", 1), snv("1", 2), snv("1", 3)
    assert event_difference([c, a, b], [a], m) == [c, b]
    assert event_difference([a, b], [], m) == [a, b]
    assert event_difference([], [a], m) == []


def test_difference_is_tolerant():
    m = EventMatcher(resolution=10)
    assert event_difference([snv("1", 100)], [snv("1", 105)], m) == []


def test_difference_containment_duality():
    m = EventMatcher(resolution=0)
    a, b, c = snv("1", 1), snv("2", 1), snv("3", 1)
    container = [a, b]
    for containee in ([], [a], [a, b], [c], [a, c]):
        assert event_set_contains(container, containee, m) == (event_difference(containee, container, m) == [])


def test_containment_monotonic():
    m = EventMatcher(resolution=0)
    a, b, c = snv("1", 1), snv("2", 1), snv("3", 1)
    assert event_set_contains([a, b], [a], m)
    assert event_set_contains([a, b, c], [a], m)
    assert not event_set_contains([a], [a, b], m)
    assert event_set_contains([a], [], m)
    assert event_set_contains([], [], m)


def test_compare_by_size_is_strict():
    a, b = snv("1", 1), snv("1", 2)
    assert compare_by_size([a], [a, b])
    assert not compare_by_size([a], [b])
    assert not compare_by_size([a, b], [a])


def test_point_event_end_defaults_to_start():
    e = snv("X", 42)
    assert e.end == 42
    with pytest.raises(ValueError):
        SomaticEvent(kind="snv", chrom="X", start=42, end=50)
    with pytest.raises(ValueError):
        SomaticEvent(kind="cnv", chrom="X", start=50, end=40)
    with pytest.raises(ValueError):
        SomaticEvent(kind="indel", chrom="X", start=1)
