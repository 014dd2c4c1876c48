from dataclasses import replace

import pytest

from alignribbon.alignments import assemble_read
from alignribbon.errors import UnrecognizedPairFlag
from alignribbon.models import PathPoint, RawAlignmentRecord, RawType
from alignribbon.pairing import (
    deduplicate_reads,
    detect_paired_end,
    mate_slot,
    most_common_read_length,
    reconcile_pairs,
    redecode_pair,
    synthesize_pair,
)

FIRST = 0x1 | 0x40
SECOND = 0x1 | 0x80 | 0x10


def make_read(name, chrom, pos, cigar, flag=0, sa=None, min_indel_size=50):
    raw = RawAlignmentRecord(
        read_name=name,
        flag=flag,
        chrom=chrom,
        pos=pos,
        mapping_quality=60,
        cigar=cigar,
        sa=sa,
    )
    rec, _ = assemble_read(raw, min_indel_size)
    return rec


def test_detect_paired_end_scans_only_leading_records():
    reads = [make_read(f"r{i}", "chr1", 100, "10M") for i in range(150)]
    reads.append(make_read("p", "chr1", 100, "10M", flag=FIRST))
    assert not detect_paired_end(reads, 100)
    assert detect_paired_end(reads[-1:] + reads, 100)


def test_most_common_read_length_ties_go_to_first_seen():
    reads = [
        make_read("a", "chr1", 1, "100M"),
        make_read("b", "chr1", 1, "150M"),
        make_read("c", "chr1", 1, "150M"),
        make_read("d", "chr1", 1, "100M"),
    ]
    assert most_common_read_length(reads) == 100
    assert most_common_read_length([]) == 0


def test_flip_second_mate_mirrors_query_axis():
    first = make_read("p", "chr1", 1000, "100M", flag=FIRST)
    second = make_read("p", "chr1", 1300, "100M", flag=SECOND)

    rec = synthesize_pair(first, second, default_read_length=100, pair_spacing=20, flip_second_in_pair=True)
    assert rec.raw_type == RawType.PAIRED_END
    assert rec.read_lengths == (100, 20, 100)
    assert all(s.read_length == 220 for s in rec.segments)
    assert rec.segments[0].path == (PathPoint(1000, 0), PathPoint(1100, 100))
    mate = rec.segments[1]
    assert mate.path == (PathPoint(1300, 120), PathPoint(1400, 220))
    assert (mate.query_start, mate.query_end) == (120, 220)


def test_shift_second_mate_without_flip():
    first = make_read("p", "chr1", 1000, "100M", flag=FIRST)
    second = make_read("p", "chr1", 1300, "100M", flag=SECOND)

    rec = synthesize_pair(first, second, default_read_length=100, pair_spacing=20, flip_second_in_pair=False)
    mate = rec.segments[1]
    assert mate.path == (PathPoint(1300, 220), PathPoint(1400, 120))
    assert (mate.query_start, mate.query_end) == (220, 120)


def test_pair_link_endpoints():
    first = make_read("p", "chr1", 1000, "100M", flag=FIRST)
    second = make_read("p", "chr1", 1300, "100M", flag=SECOND)

    link = synthesize_pair(first, second, default_read_length=100, pair_spacing=20, flip_second_in_pair=True).pair_link
    assert link.from_pos == {False: 1100, True: 1400}
    assert link.to_pos == {False: 1300, True: 1000}
    assert link.chrom == {False: "chr1", True: "chr1"}
    assert link.diff == 200


def test_missing_mate_uses_default_length():
    first = make_read("solo", "chr1", 1000, "100M", flag=FIRST)
    rec = synthesize_pair(first, None, default_read_length=150, pair_spacing=20, flip_second_in_pair=True)
    assert rec.read_lengths == (100, 20, 150)
    assert rec.read_length == 270
    assert rec.pair_link.diff is None

    second = make_read("solo2", "chr1", 1000, "100M", flag=SECOND)
    rec = synthesize_pair(None, second, default_read_length=150, pair_spacing=20, flip_second_in_pair=True)
    assert rec.read_lengths == (150, 20, 100)
    assert rec.read_name == "solo2"


def test_synthesize_pair_needs_a_mate():
    with pytest.raises(ValueError):
        synthesize_pair(None, None, default_read_length=100, pair_spacing=20, flip_second_in_pair=True)


def test_reconcile_pairs_counts():
    reads = [
        make_read("a", "chr1", 1000, "100M", flag=FIRST),
        make_read("b", "chr1", 1100, "100M", flag=FIRST),
        make_read("a", "chr1", 1300, "100M", flag=SECOND),
        make_read("weird", "chr1", 1300, "100M", flag=0x1),
    ]
    out, counts = reconcile_pairs(reads)
    assert [r.read_name for r in out] == ["a", "b"]
    assert counts == {"pairs_total": 2, "pairs_missing_mate": 1, "records_unrecognized_pair_flag": 1}


def test_mate_slot_requires_pair_bits():
    assert mate_slot(make_read("a", "chr1", 1, "10M", flag=FIRST)) == "first"
    assert mate_slot(make_read("a", "chr1", 1, "10M", flag=SECOND)) == "second"
    with pytest.raises(UnrecognizedPairFlag):
        mate_slot(make_read("a", "chr1", 1, "10M", flag=0x1))


def test_primary_mate_preferred_over_supplementary():
    reads = [
        make_read("a", "chr2", 50, "30M70S", flag=FIRST | 0x800),
        make_read("a", "chr1", 1000, "70M30S", flag=FIRST),
        make_read("a", "chr1", 1300, "100M", flag=SECOND),
    ]
    out, _ = reconcile_pairs(reads)
    assert out[0].segments[0].chrom == "chr1"


def test_redecode_pair_rebuilds_both_mates():
    first = make_read("p", "chr1", 1000, "50M60D50M", flag=FIRST)
    second = make_read("p", "chr1", 1300, "100M", flag=SECOND)
    rec = synthesize_pair(first, second, default_read_length=100, pair_spacing=20, flip_second_in_pair=True)
    assert len(rec.segments[0].path) == 4

    redone = redecode_pair(rec, -1, default_read_length=100)
    assert len(redone.segments[0].path) == 2
    assert redone.segments[1].path == rec.segments[1].path
    assert len(rec.segments[0].path) == 4


def test_deduplicate_merges_other_chromosomes_only():
    reads = [
        make_read("r", "chr1", 1000, "100M50S"),
        make_read("r", "chr2", 5000, "100S50M"),
        make_read("r", "chr1", 2000, "100M50S"),
        make_read("q", "chr3", 10, "150M"),
    ]
    out, counts = deduplicate_reads(reads, 50)
    assert counts == {"duplicates_merged": 1, "duplicates_ignored": 1}
    assert [r.read_name for r in out] == ["r", "q"]
    merged = out[0]
    assert [s.chrom for s in merged.segments] == ["chr2", "chr1"]
    assert merged.primary.chrom == "chr1"
    assert merged.raw.sa == "chr2,5000,+,100S50M,60,0"


def test_flipped_second_mate_of_different_length():
    first = make_read("p", "chr1", 1000, "100M", flag=FIRST)
    second = make_read("p", "chr1", 1500, "10M30I40M", flag=0x1 | 0x80, min_indel_size=1)

    rec = synthesize_pair(first, second, default_read_length=100, pair_spacing=20, flip_second_in_pair=True)
    mate = rec.segments[1]
    assert rec.read_lengths == (100, 20, 80)
    assert (mate.query_start, mate.query_end) == (200, 120)
    assert mate.path == (
        PathPoint(1500, 200),
        PathPoint(1510, 190),
        PathPoint(1510, 160),
        PathPoint(1550, 120),
    )


def test_redecode_lonely_second_mate_keeps_query_axis():
    second = make_read("lonely", "chr1", 2000, "100M", flag=0x1 | 0x80)
    rec = synthesize_pair(None, second, default_read_length=150, pair_spacing=20, flip_second_in_pair=True)
    assert rec.segments[0].path[0] == PathPoint(2000, 270)

    redone = redecode_pair(rec, 50)
    assert redone.read_lengths == (150, 20, 100)
    assert redone.segments[0].path == rec.segments[0].path


def test_redecode_pair_without_stored_lengths_needs_default():
    second = make_read("lonely", "chr1", 2000, "100M", flag=0x1 | 0x80)
    rec = synthesize_pair(None, second, default_read_length=150, pair_spacing=20, flip_second_in_pair=True)
    bare = replace(rec, read_lengths=None)
    with pytest.raises(ValueError, match="missing mate"):
        redecode_pair(bare, 50)
    assert redecode_pair(bare, 50, default_read_length=150).segments[0].path == rec.segments[0].path
