import struct
import zlib

import nbtlib
import pytest
from structlog.testing import CapturingLogger

from itemfinder_core import nbt
from itemfinder_core.nbt import (
    CompressionScheme,
    CorruptChunkError,
    CorruptNBTError,
    CorruptRegionError,
    FormatError,
    McrFileReader,
    ReadError,
    decode_chunk,
    load_region,
    parse_region_coords,
    slot_index,
)

from conftest import build_region, chunk_payload, entity_chunk, mob_entity, nbt_bytes


def test_slot_index_wraps_into_region_grid():
    for x in range(-70, 70, 7):
        for z in range(-70, 70, 5):
            expected = (x % 32 + 32) % 32 + ((z % 32 + 32) % 32) * 32
            assert slot_index(x, z) == expected
            assert 0 <= slot_index(x, z) < 1024
    assert slot_index(31, 31) == 1023
    assert slot_index(-1, 0) == 31
    assert slot_index(32, 33) == 32


@pytest.mark.parametrize("name, coords", [
    ("r.0.0.mca", (0, 0)),
    ("r.-1.2.mca", (-1, 2)),
    ("/some/world/entities/r.15.-300.mca", (15, -300)),
    ("r.3.4.mcr", (3, 4)),
])
def test_parse_region_coords(name, coords):
    assert parse_region_coords(name) == coords


@pytest.mark.parametrize("name", ["region.mca", "r.a.0.mca", "r.0.mca", "r.0.0", "x.0.0.mca"])
def test_parse_region_coords_rejects_other_names(name):
    with pytest.raises(CorruptRegionError) as excinfo:
        parse_region_coords(name)
    assert name in str(excinfo.value)
    assert isinstance(excinfo.value, FormatError)


def test_all_zero_table_has_no_chunks(write_region):
    with load_region(write_region(build_region())) as region:
        assert list(region.get_chunks()) == []
        assert all(region.chunk_extent(x, z) is None for x, z in region.all_chunk_coordinates())
        assert region.load_chunk(0, 0) is None
        assert list(region.iter_chunks()) == []


def test_all_chunk_coordinates_is_x_major_in_global_coords(write_region):
    with load_region(write_region(build_region(), name="r.-1.2.mca")) as region:
        coords = list(region.all_chunk_coordinates())
    assert len(coords) == 1024
    assert coords[0] == (-32, 64)
    assert coords[1] == (-32, 65)
    assert coords[32] == (-31, 64)
    assert coords[-1] == (-1, 95)


def test_chunk_extent_is_absent_only_when_offset_and_length_are_zero(write_region):
    locations = [0] * 1024
    locations[slot_index(1, 0)] = (3 << 8) | 2   # offset 3 sectors, 2 sectors long
    locations[slot_index(2, 0)] = 5 << 8         # offset without length
    locations[slot_index(3, 0)] = 1              # length without offset
    data = struct.pack(">1024I", *locations) + bytes(4096)
    with load_region(write_region(data)) as region:
        assert region.chunk_extent(0, 0) is None
        assert region.chunk_extent(1, 0) == (3 * 4096, 2 * 4096)
        assert region.chunk_extent(2, 0) == (5 * 4096, 0)
        assert region.chunk_extent(3, 0) == (0, 4096)
        assert region.chunk_exists(33, 32)
        assert list(region.get_chunks()) == [(1, 0), (2, 0), (3, 0)]


def test_offset_inside_header_is_a_format_error(write_region):
    locations = [0] * 1024
    locations[0] = 1
    data = struct.pack(">1024I", *locations) + bytes(4096)
    with load_region(write_region(data)) as region:
        with pytest.raises(CorruptChunkError):
            region.load_chunk(0, 0)


def test_timestamps_are_read_per_slot(write_region):
    timestamps = list(range(1024))
    with load_region(write_region(build_region(timestamps=timestamps))) as region:
        assert region.get_chunk_timestamp(5, 2) == 5 + 2 * 32
        assert region.get_chunk_timestamp(-1, -1) == 1023


@pytest.mark.parametrize("scheme", [CompressionScheme.GZIP, CompressionScheme.ZLIB])
def test_chunks_round_trip(write_region, diamond_chunk, scheme):
    other = entity_chunk(mob_entity())
    path = write_region(build_region({
        (0, 0): chunk_payload(diamond_chunk, scheme=scheme),
        (4, 7): chunk_payload(other, scheme=scheme),
    }), name="r.1.-1.mca")

    with load_region(path) as region:
        assert list(region.get_chunks()) == [(32, -32), (36, -25)]
        documents = list(region.iter_chunks())

    assert [d.coords for d in documents] == [(32, -32), (36, -25)]
    assert documents[0].tree == diamond_chunk
    assert documents[1].tree == other
    assert documents[0].tree["Entities"][0]["Item"]["id"] == "minecraft:diamond"
    assert type(documents[0].tree) is nbtlib.Compound


@pytest.mark.parametrize("tag", [0, 3, 127])
def test_unsupported_compression_tag(diamond_chunk, tag):
    raw = chunk_payload(diamond_chunk)
    raw = raw[:4] + bytes([tag]) + raw[5:]
    with pytest.raises(CorruptChunkError) as excinfo:
        decode_chunk(raw, 4, -2)
    assert excinfo.value.chunk == (4, -2)
    assert "unsupported compression tag" in str(excinfo.value)


def test_short_header_is_a_read_error():
    with pytest.raises(ReadError) as excinfo:
        decode_chunk(b"\x00\x00\x01", 1, 1)
    assert excinfo.value.chunk == (1, 1)


def test_bad_compressed_data_is_a_chunk_error():
    raw = chunk_payload(None, scheme=2, data=b"this is not zlib data")
    with pytest.raises(CorruptChunkError):
        decode_chunk(raw + bytes(100), 0, 0)


def test_stream_cut_inside_declared_length_is_a_chunk_error(diamond_chunk):
    data = zlib.compress(nbt_bytes(diamond_chunk))
    raw = chunk_payload(None, scheme=2, data=data[:len(data) // 2])
    with pytest.raises(CorruptChunkError) as excinfo:
        decode_chunk(raw + bytes(200), 7, 8)
    assert "incomplete" in str(excinfo.value)
    assert excinfo.value.chunk == (7, 8)


def test_bad_nbt_is_an_nbt_error():
    raw = chunk_payload(None, scheme=2, data=zlib.compress(b""))
    with pytest.raises(CorruptNBTError) as excinfo:
        decode_chunk(raw, 2, 3)
    assert excinfo.value.chunk == (2, 3)
    assert excinfo.value.__cause__ is not None


def test_short_read_is_tolerated_when_the_chunk_is_complete(write_region, diamond_chunk):
    # the table claims a full sector but the file ends right after the payload
    path = write_region(build_region({(0, 0): chunk_payload(diamond_chunk)}, pad=False))
    with load_region(path) as region:
        raw, truncated = region.read_chunk(0, 0)
        assert truncated
        document = region.load_chunk(0, 0)
    assert document.tree == diamond_chunk


def test_short_read_that_cuts_the_chunk_is_a_read_error(write_region, diamond_chunk):
    payload = chunk_payload(diamond_chunk)
    path = write_region(build_region({(0, 0): payload[:len(payload) // 2]}, pad=False))
    with load_region(path) as region:
        with pytest.raises(ReadError) as excinfo:
            region.load_chunk(0, 0)
    assert excinfo.value.chunk == (0, 0)
    assert excinfo.value.region == path


def test_iter_chunks_skips_and_reports_bad_chunks(write_region, diamond_chunk):
    bad = chunk_payload(diamond_chunk)
    bad = bad[:4] + b"\x03" + bad[5:]
    path = write_region(build_region({
        (0, 0): bad,
        (0, 1): chunk_payload(diamond_chunk),
    }))
    log = CapturingLogger()
    errors = []
    with load_region(path, log=log) as region:
        documents = list(region.iter_chunks(errors))
        # a second pass starts over
        assert [d.coords for d in region.iter_chunks()] == [(0, 1)]

    assert [d.coords for d in documents] == [(0, 1)]
    assert len(errors) == 1
    assert isinstance(errors[0], CorruptChunkError)
    assert errors[0].chunk == (0, 0)
    warnings = [c for c in log.calls if c.method_name == "warning"]
    assert warnings[0].args == ("chunk_failed",)
    assert warnings[0].kwargs["chunk"] == (0, 0)


def test_truncated_header_tables(write_region):
    with pytest.raises(CorruptRegionError):
        McrFileReader(write_region(bytes(100)))
    with pytest.raises(CorruptRegionError) as excinfo:
        McrFileReader(write_region(bytes(4096 + 10)))
    assert "timestamp" in str(excinfo.value)


def test_missing_region_file_is_a_read_error(tmp_path):
    path = str(tmp_path / "r.0.0.mca")
    with pytest.raises(ReadError) as excinfo:
        load_region(path)
    assert excinfo.value.region == path


def test_bad_filename_is_rejected_before_opening(write_region):
    path = write_region(build_region(), name="entities.dat")
    with pytest.raises(CorruptRegionError) as excinfo:
        load_region(path)
    assert "entities.dat" in str(excinfo.value)


def test_reader_close_is_idempotent(write_region):
    region = load_region(write_region(build_region()))
    region.close()
    region.close()
    assert nbt.RegionFile is McrFileReader
