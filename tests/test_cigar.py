import pytest

from alignribbon.alignments import build_segment
from alignribbon.cigar import (
    HIDE_INDELS,
    cigar_to_string,
    decode_cigar,
    ops_from_cigartuples,
    parse_cigar,
)
from alignribbon.errors import MalformedCigar
from alignribbon.models import PathPoint


def test_parse_cigar_tokens():
    assert parse_cigar("10M5I10M") == [(10, "M"), (5, "I"), (10, "M")]
    assert parse_cigar("3S7=1X2N4P1H") == [(3, "S"), (7, "="), (1, "X"), (2, "N"), (4, "P"), (1, "H")]


@pytest.mark.parametrize("bad", ["", "10", "M10", "10Q", "10M5", "10M*"])
def test_parse_cigar_rejects_garbage(bad):
    with pytest.raises(MalformedCigar):
        parse_cigar(bad)


def test_pysam_cigartuples_conversion():
    ops = ops_from_cigartuples([(4, 5), (0, 10), (2, 3), (0, 7)])
    assert ops == [(5, "S"), (10, "M"), (3, "D"), (7, "M")]
    assert cigar_to_string(ops) == "5S10M3D7M"


def test_insertion_vertices_depend_on_threshold():
    ops = parse_cigar("10M5I10M")

    shown = build_segment("chr1", 100, "+", ops, 60, min_indel_size=1)
    assert shown.path == (
        PathPoint(100, 0),
        PathPoint(110, 10),
        PathPoint(110, 15),
        PathPoint(120, 25),
    )

    hidden = build_segment("chr1", 100, "+", ops, 60, min_indel_size=6)
    assert len(hidden.path) == 2
    assert hidden.path[0] == shown.path[0]
    assert hidden.path[-1] == shown.path[-1]

    off = build_segment("chr1", 100, "+", ops, 60, min_indel_size=HIDE_INDELS)
    assert off.path == hidden.path
    assert shown.max_indel_size == hidden.max_indel_size == 5


def test_reverse_strand_walks_query_backwards():
    walk = decode_cigar(parse_cigar("5S10M3D10M"), 100, "-", 1)
    assert walk.read_length == 25
    assert walk.query_start == 20
    assert walk.query_end == 0
    assert walk.ref_aligned_length == 23
    assert walk.path == (PathPoint(110, 10), PathPoint(113, 10))


def test_forward_strand_clips():
    walk = decode_cigar(parse_cigar("5H10M5S"), 0, "+", 1)
    assert walk.front_padding == 5
    assert walk.end_padding == 5
    assert walk.query_start == 5
    assert walk.query_end == 15
    assert walk.read_length == 20


def test_skip_always_bracketed_and_padding_never():
    walk = decode_cigar(parse_cigar("10M100N10M"), 0, "+", HIDE_INDELS)
    assert walk.path == (PathPoint(10, 10), PathPoint(110, 10))

    padded = decode_cigar(parse_cigar("10M2P10M"), 0, "+", 1)
    assert padded.path == ()


def test_unknown_op_is_treated_like_a_match():
    walk = decode_cigar([(10, "M"), (5, "?")], 0, "+", 1)
    assert walk.path == ()
    assert walk.ref_aligned_length == 15
    assert walk.read_aligned_length == 15


def test_path_is_monotone_on_reference():
    seg = build_segment("chr1", 1000, "+", parse_cigar("20M60D30M60I40M200N10M"), 60, 50)
    refs = [p.R for p in seg.path]
    assert refs == sorted(refs)
    assert seg.path[0] == PathPoint(seg.ref_start, seg.query_start)
    assert seg.path[-1] == PathPoint(seg.ref_end, seg.query_end)
    assert len(seg.path) % 2 == 0


@pytest.mark.parametrize("length", [1, 25, 150])
def test_match_only_cigar_has_two_vertices(length):
    seg = build_segment("chr1", 500, "+", [(length, "M")], 60, 50)
    assert seg.path == (PathPoint(500, 0), PathPoint(500 + length, length))
    assert seg.aligned_length == length


def test_hidden_indels_still_measured():
    walk = decode_cigar(parse_cigar("10M300I10M400D10M"), 0, "+", HIDE_INDELS)
    assert walk.path == ()
    assert walk.max_indel_size == 400
