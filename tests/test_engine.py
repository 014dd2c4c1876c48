import json

import pytest

from alignribbon.engine import (
    EngineSettings,
    ReadArena,
    build_coordinate_space,
    build_read_records,
    read_to_jsonable,
    redecode_read,
    run_engine,
    summarize,
)
from alignribbon.models import RawAlignmentRecord, RawType, Region
from alignribbon.sam import parse_coords_text


def raw(name, chrom, pos, cigar, *, flag=0, sa=None, hp=None, source_index=0):
    return RawAlignmentRecord(
        read_name=name,
        flag=flag,
        chrom=chrom,
        pos=pos,
        mapping_quality=60,
        cigar=cigar,
        sa=sa,
        hp=hp,
        source_index=source_index,
    )


def split_batch():
    return [
        raw("read10", "chr1", 1000, "100M50S", sa="chr2,5001,+,100S50M,60,0", hp="2", source_index=1),
        raw("read2", "chr1", 1200, "150M", hp="1"),
        raw("unmapped", "chr1", 0, "*"),
        raw("broken", "chr1", 10, "10M5"),
        raw("read3", "chr1", 40_000, "50M80D100M"),
    ]


def test_build_read_records_skips_and_counts():
    arena, counts = build_read_records(split_batch())
    assert [r.read_name for r in arena] == ["read10", "read2", "read3"]
    assert not arena.paired_end
    assert counts["records_total"] == 5
    assert counts["records_skipped_empty_cigar"] == 1
    assert counts["records_malformed_cigar"] == 1
    assert counts["reads_total"] == 3
    assert arena[0].raw_type == RawType.SPLIT_ASSEMBLED


def test_build_read_records_paired_batch():
    batch = [
        raw("p1", "chr1", 1000, "100M", flag=0x1 | 0x40),
        raw("p1", "chr1", 1300, "100M", flag=0x1 | 0x80 | 0x10),
        raw("p2", "chr1", 1050, "150M", flag=0x1 | 0x40),
    ]
    arena, counts = build_read_records(batch)
    assert arena.paired_end
    assert arena.default_read_length == 100
    assert [r.raw_type for r in arena] == [RawType.PAIRED_END, RawType.PAIRED_END]
    assert counts["pairs_missing_mate"] == 1
    assert arena[1].read_lengths == (150, 20, 100)


def test_sort_index_orders():
    arena, _ = build_read_records(split_batch())
    assert arena.sort_index("original") == [0, 1, 2]
    assert arena.sort_index("readname") == [1, 2, 0]
    assert arena.sort_index("num_alignments") == [1, 2, 0]
    assert arena.sort_index("haplotype") == [1, 0, 2]
    assert arena.sort_index("source") == [1, 2, 0]
    with pytest.raises(ValueError):
        arena.sort_index("primary")
    with pytest.raises(ValueError):
        arena.sort_index("colour")


def test_sort_by_position_uses_mapper():
    result = run_engine(split_batch(), EngineSettings(merge_margin=100))
    assert result.arena.sort_index("primary", mapper=result.space.mapper) == [0, 1, 2]
    assert result.arena.sort_index("longest", mapper=result.space.mapper) == [0, 1, 2]


def test_run_engine_builds_axis():
    result = run_engine(
        split_batch(),
        EngineSettings(merge_margin=100),
        ref_sizes={"chr1": 100_000, "chr2": 100_000},
        focal_region=Region("chr1", 1000, 1100),
    )
    ivs = result.space.intervals
    assert [(iv.chrom, iv.start, iv.end) for iv in ivs] == [
        ("chr1", 1000, 1350),
        ("chr1", 40_000, 40_230),
        ("chr2", 5001, 5051),
    ]
    assert [iv.cumulative_offset for iv in ivs] == [0, 350, 580]
    mapper = result.space.mapper
    assert mapper.map_exact("chr2", 5001) == 580
    for read in result.arena:
        for seg in read.segments:
            assert mapper.map_exact(seg.chrom, seg.ref_start) is not None
    assert [w.chrom for w in result.space.whole_refs] == ["chr1", "chr2"]
    assert result.counts["intervals_retained"] == 3


def test_min_alignments_filter_drops_intervals():
    arena, _ = build_read_records(split_batch())
    space = build_coordinate_space(arena, EngineSettings(merge_margin=100, min_alignments_per_interval=2))
    assert [iv.retained for iv in space.intervals] == [True, False, False]
    assert space.mapper.domain_length == 350


def test_redecode_read_dispatch():
    arena, _ = build_read_records(split_batch())
    indel = arena[2]
    assert len(indel.primary.path) == 4
    assert len(redecode_read(indel, -1).primary.path) == 2

    coords_reads, _, _ = parse_coords_text("1\t100\t1\t100\t100\t100\t99.0\t1000\t100\tchr1\tq")
    assert redecode_read(coords_reads[0], -1) is coords_reads[0]


def test_redecode_read_is_stable_for_pair_missing_first_mate():
    batch = [
        raw("a", "chr1", 1000, "150M", flag=0x1 | 0x40),
        raw("a", "chr1", 1300, "150M", flag=0x1 | 0x80 | 0x10),
        raw("b", "chr1", 1100, "150M", flag=0x1 | 0x40),
        raw("b", "chr1", 1400, "150M", flag=0x1 | 0x80 | 0x10),
        raw("lonely", "chr1", 2000, "100M", flag=0x1 | 0x80),
    ]
    arena, _ = build_read_records(batch)
    lonely = next(r for r in arena if r.read_name == "lonely")
    assert lonely.read_lengths == (150, 20, 100)

    redone = redecode_read(lonely, 50)
    assert redone.read_lengths == lonely.read_lengths
    assert redone.segments[0].path == lonely.segments[0].path


def test_summarize_and_json_export():
    result = run_engine(split_batch(), EngineSettings(merge_margin=100))
    summary = summarize(result)
    assert summary["reads"] == 3
    assert summary["max_alignments_per_read"] == 2
    assert summary["max_read_length"] == 150
    assert summary["max_indel_size"] == 80
    assert summary["virtual_axis_length"] == result.space.mapper.domain_length
    assert sum(summary["read_length_hist"]["counts"]) == 3
    json.dumps(summary)
    json.dumps([read_to_jsonable(r) for r in result.arena])


def test_empty_batch():
    result = run_engine([])
    assert len(result.arena) == 0
    assert result.space.intervals == []
    summary = summarize(result)
    assert summary["min_mapping_quality"] is None
    assert ReadArena([]).sort_index("readname") == []
