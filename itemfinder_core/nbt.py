#    This file is part of itemfinder, derived from the Minecraft Overviewer.
#
#    itemfinder is free software: you can redistribute it and/or
#    modify it under the terms of the GNU General Public License as published
#    by the Free Software Foundation, either version 3 of the License, or (at
#    your option) any later version.
#
#    itemfinder is distributed in the hope that it will be useful,
#    but WITHOUT ANY WARRANTY; without even the implied warranty of
#    MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the GNU General
#    Public License for more details.
#
#    You should have received a copy of the GNU General Public License along
#    with itemfinder.  If not, see <http://www.gnu.org/licenses/>.

"""Region file and chunk decoding.

A region file holds up to 1024 chunks in a 32x32 grid. The first 4096 bytes
are the location table, the next 4096 bytes the timestamp table, and the rest
of the file is chunk payloads laid out in 4096 byte sectors. Each payload is a
big-endian length, a compression byte, and a compressed NBT document.
"""

from __future__ import annotations

import io
import os
import re
import struct
import zlib
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Iterator, Optional

import nbtlib

from .logging import get_logger

SECTOR_SIZE = 4096
REGION_WIDTH = 32
CHUNKS_PER_REGION = REGION_WIDTH * REGION_WIDTH
HEADER_SIZE = 2 * SECTOR_SIZE

_table_format = struct.Struct(">%dI" % CHUNKS_PER_REGION)
_chunk_header_format = struct.Struct(">IB")
_region_name = re.compile(r"^r\.(?P<x>-?\d+)\.(?P<z>-?\d+)\.[^.]+$")

logger = get_logger(__name__)


class CorruptionError(Exception):
    """Base class for everything that can go wrong reading a world.

    Carries the region and/or chunk coordinates that produced the error so a
    message can always be traced back to a place in the save.
    """

    def __init__(self, message: str, *, region: Any = None,
                 chunk: Optional[tuple[int, int]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.region = region
        self.chunk = chunk

    def __str__(self) -> str:
        where = []
        if self.chunk is not None:
            where.append("chunk %d,%d" % self.chunk)
        if self.region is not None:
            where.append("region %s" % (self.region,))
        if not where:
            return self.message
        return "%s (%s)" % (self.message, ", ".join(where))


class FormatError(CorruptionError):
    """The bytes on disk do not follow the region/chunk format."""
    pass


class CorruptRegionError(FormatError):
    """An exception raised when the McrFileReader class encounters an
    error during region file parsing.
    """
    pass


class CorruptChunkError(FormatError):
    pass


class CorruptNBTError(FormatError):
    """An exception raised when the NBT parser encounters something
    unexpected in a chunk's decompressed payload."""
    pass


class ReadError(CorruptionError):
    """An I/O failure, or a chunk cut short by the end of the file."""
    pass


class StructureError(CorruptionError):
    """The NBT tree parsed but lacks a field we need, or holds the wrong
    type there. `value` is the offending tree fragment."""

    def __init__(self, message: str, *, value: Any = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.value = value


class CompressionScheme(IntEnum):
    GZIP = 1
    ZLIB = 2

    @property
    def wbits(self) -> int:
        # zlib accepts a gzip container when 16 is added to the window size
        if self is CompressionScheme.GZIP:
            return 16 + zlib.MAX_WBITS
        return zlib.MAX_WBITS


@dataclass
class ChunkDocument:
    x: int
    z: int
    tree: Any

    @property
    def coords(self) -> tuple[int, int]:
        return (self.x, self.z)


def slot_index(x: int, z: int) -> int:
    """Index into the location table for chunk x,z. Coordinates can be
    global or region-local; they are wrapped into [0, 31]."""
    return (x % REGION_WIDTH) + (z % REGION_WIDTH) * REGION_WIDTH


def parse_region_coords(path: str) -> tuple[int, int]:
    """Return (regionX, regionZ) from a filename like r.-1.2.mca"""
    name = os.path.basename(path)
    m = _region_name.match(name)
    if m is None:
        raise CorruptRegionError(
            "unable to extract coords from region filename '%s'" % (name,),
            region=path)
    return int(m.group("x")), int(m.group("z"))


def decode_chunk(raw: bytes, x: int, z: int, truncated: bool = False) -> ChunkDocument:
    """Decode one chunk payload as sliced from its region file.

    `truncated` says the container ran out of bytes before the slot's table
    length. A truncated chunk still decodes when its whole compressed stream
    made it into the bytes read; otherwise it is reported as a ReadError
    instead of a FormatError.
    """
    coords = (x, z)
    if len(raw) < _chunk_header_format.size:
        raise ReadError("chunk header is truncated (%d bytes)" % len(raw), chunk=coords)

    length, tag = _chunk_header_format.unpack_from(raw)
    try:
        compression = CompressionScheme(tag)
    except ValueError:
        raise CorruptChunkError(
            "unsupported compression tag: %d (should be 1 or 2)" % tag, chunk=coords) from None

    # the declared length counts the compression byte
    available = len(raw) - 4
    if 1 <= length <= available:
        payload = raw[_chunk_header_format.size:4 + length]
    else:
        payload = raw[_chunk_header_format.size:]
        if length > available:
            truncated = True

    decompressor = zlib.decompressobj(compression.wbits)
    try:
        data = decompressor.decompress(payload)
    except zlib.error as e:
        if truncated:
            raise ReadError("chunk ended early, %s data is incomplete" % compression.name.lower(),
                            chunk=coords) from e
        raise CorruptChunkError("error decompressing %s chunk: %s" % (compression.name.lower(), e),
                                chunk=coords) from e

    if not decompressor.eof:
        if truncated:
            raise ReadError("chunk ended early, %s stream is incomplete" % compression.name.lower(),
                            chunk=coords)
        raise CorruptChunkError("%s stream is incomplete" % compression.name.lower(), chunk=coords)

    try:
        tree = nbtlib.Compound(nbtlib.File.parse(io.BytesIO(data)))
    except Exception as e:
        if truncated:
            raise ReadError("chunk ended early, could not parse nbt: %s" % (e,), chunk=coords) from e
        raise CorruptNBTError("could not parse nbt: %s" % (e,), chunk=coords) from e

    return ChunkDocument(x, z, tree)


class McrFileReader:
    """A class for reading chunk region files. It provides functions for
    opening individual chunks as ChunkDocuments, getting chunk timestamps,
    and for listing chunks contained in the file.

    The location and timestamp tables are read when the object is created;
    the file stays open for chunk reads until close() is called.
    """

    def __init__(self, path: str, log: Any = None) -> None:
        self.path = path
        self.log = log if log is not None else logger
        self.coords = parse_region_coords(path)
        self._file = None

        try:
            self._file = open(path, "rb")
            location_data = self._file.read(SECTOR_SIZE)
            timestamp_data = self._file.read(SECTOR_SIZE)
        except OSError as e:
            self.close()
            raise ReadError("failed to read region file: %s" % (e,), region=path) from e

        if len(location_data) != SECTOR_SIZE:
            self.close()
            raise CorruptRegionError("invalid location table", region=path)
        if len(timestamp_data) != SECTOR_SIZE:
            self.close()
            raise CorruptRegionError("invalid timestamp table", region=path)

        self._locations = _table_format.unpack(location_data)
        self._timestamps = _table_format.unpack(timestamp_data)
        self.log.debug("region_opened", path=path, region=self.coords)

    def __enter__(self) -> McrFileReader:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return "<McrFileReader %r>" % (self.path,)

    def close(self) -> None:
        if self._file:
            self._file.close()
        self._file = None

    def all_chunk_coordinates(self) -> Iterator[tuple[int, int]]:
        """Every chunk coordinate this region covers, present or not, in
        global coordinates. x is the outer loop, z the inner one."""
        min_x = self.coords[0] * REGION_WIDTH
        min_z = self.coords[1] * REGION_WIDTH
        for x in range(min_x, min_x + REGION_WIDTH):
            for z in range(min_z, min_z + REGION_WIDTH):
                yield (x, z)

    def get_chunks(self) -> Iterator[tuple[int, int]]:
        """List the chunks contained in this region, in global coordinates.
        To load these chunks, provide these coordinates to `load_chunk`.
        Each call starts a fresh pass over the table.
        """
        for x, z in self.all_chunk_coordinates():
            if self.chunk_exists(x, z):
                yield (x, z)

    def chunk_extent(self, x: int, z: int) -> Optional[tuple[int, int]]:
        """Return (byte offset, byte length) of the chunk's slot, or None if
        the chunk isn't stored in this region."""
        location = self._locations[slot_index(x, z)]
        offset = location >> 8
        sectors = location & 0xff
        if offset == 0 and sectors == 0:
            return None
        return offset * SECTOR_SIZE, sectors * SECTOR_SIZE

    def chunk_exists(self, x: int, z: int) -> bool:
        """Determine if a chunk exists."""
        return self.chunk_extent(x, z) is not None

    def get_chunk_timestamp(self, x: int, z: int) -> int:
        """Return the given chunk's modification time.
        If the given chunk doesn't exist, this number may be nonsense.
        """
        return self._timestamps[slot_index(x, z)]

    def read_chunk(self, x: int, z: int) -> Optional[tuple[bytes, bool]]:
        """Return (raw bytes, truncated) for the chunk's slot, or None if the
        chunk doesn't exist."""
        extent = self.chunk_extent(x, z)
        if extent is None:
            return None
        offset, length = extent
        if offset < HEADER_SIZE:
            raise CorruptChunkError("chunk offset %d overlaps the region header" % offset,
                                    region=self.path, chunk=(x, z))
        if self._file is None:
            raise ReadError("region file is closed", region=self.path, chunk=(x, z))

        try:
            self._file.seek(offset)
            raw = self._file.read(length)
        except OSError as e:
            raise ReadError("failed to read chunk: %s" % (e,), region=self.path, chunk=(x, z)) from e
        return raw, len(raw) < length

    def load_chunk(self, x: int, z: int) -> Optional[ChunkDocument]:
        """Return the decoded chunk at x,z, or None if the given chunk doesn't
        exist in this region file. If you provide an x or z not between 0 and
        31, it will be modulo'd into this range (x % 32, etc). This is so you
        can provide chunk coordinates in global coordinates, and still have
        the chunks load out of regions properly."""
        slot = self.read_chunk(x, z)
        if slot is None:
            return None
        raw, truncated = slot
        try:
            return decode_chunk(raw, x, z, truncated=truncated)
        except CorruptionError as e:
            e.region = self.path
            raise

    def iter_chunks(self, errors: Optional[list] = None) -> Iterator[ChunkDocument]:
        """Yield every present chunk, decoded, in `get_chunks` order.

        A chunk that can't be read or decoded is logged, appended to `errors`
        when given, and left out.
        """
        for x, z in self.get_chunks():
            try:
                document = self.load_chunk(x, z)
            except (ReadError, FormatError) as e:
                self.log.warning("chunk_failed", region=self.path, chunk=(x, z), error=str(e))
                if errors is not None:
                    errors.append(e)
                continue
            if document is not None:
                yield document


RegionFile = McrFileReader


def load_region(path: str, log: Any = None) -> McrFileReader:
    return McrFileReader(path, log=log)
