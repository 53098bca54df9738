import gzip
import io
import struct
import zlib

import pytest
from nbtlib import Byte, Compound, Double, List, String

SECTOR = 4096


def nbt_bytes(root):
    """Serialize a compound as an unnamed root tag."""
    buf = io.BytesIO()
    buf.write(b"\x0a\x00\x00")
    root.write(buf)
    return buf.getvalue()


def chunk_payload(root, scheme=2, data=None):
    """Length + compression byte + compressed NBT, as stored in a region."""
    if data is None:
        raw = nbt_bytes(root)
        data = gzip.compress(raw) if scheme == 1 else zlib.compress(raw)
    return struct.pack(">IB", len(data) + 1, scheme) + data


def build_region(chunks=None, timestamps=None, pad=True):
    """Build region file bytes from {(local x, local z): payload}."""
    chunks = chunks or {}
    locations = [0] * 1024
    body = bytearray()
    sector = 2
    for (x, z), payload in chunks.items():
        sectors = max(1, (len(payload) + SECTOR - 1) // SECTOR)
        locations[x + z * 32] = (sector << 8) | sectors
        body += payload
        if pad:
            body += b"\x00" * (sectors * SECTOR - len(payload))
        sector += sectors
    timestamps = timestamps or [0] * 1024
    return struct.pack(">1024I", *locations) + struct.pack(">1024I", *timestamps) + bytes(body)


def item_entity(item_id, pos=(12.5, 64.0, -3.9), name=None):
    item = Compound({"id": String(item_id), "Count": Byte(1)})
    if name is not None:
        item["tag"] = Compound({"display": Compound({"Name": String(name)})})
    return Compound({
        "id": String("minecraft:item"),
        "Item": item,
        "Pos": List[Double]([Double(p) for p in pos]),
    })


def mob_entity(entity_id="minecraft:zombie", pos=(1.0, 2.0, 3.0)):
    return Compound({
        "id": String(entity_id),
        "Pos": List[Double]([Double(p) for p in pos]),
    })


def entity_chunk(*entities):
    return Compound({"Entities": List[Compound](list(entities))})


@pytest.fixture
def diamond_chunk():
    return entity_chunk(item_entity("minecraft:diamond", name='{"text":"Shiny"}'))


@pytest.fixture
def write_region(tmp_path):
    """Write region bytes under tmp_path and return the path as a string."""

    def write(data, name="r.0.0.mca", directory=None):
        directory = directory or tmp_path
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        path.write_bytes(data)
        return str(path)

    return write
