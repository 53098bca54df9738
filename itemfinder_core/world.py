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

"""
This module locates the entity region files of a world's dimensions and
drives a search over them.
"""

from __future__ import annotations

import os
import os.path
import re
from typing import Any

from . import nbt
from .entities import entities_of
from .logging import get_logger
from .results import MatchResult, collect, match_items

logger = get_logger(__name__)

# dimension name -> directory under the world directory
DIMENSIONS = {
    "overworld": "",
    "nether": "DIM-1",
    "end": "DIM1",
}

_region_file = re.compile(r"^r\.(-?\d+)\.(-?\d+)\.mca$")


def qualify_item_id(item_id: str, namespace: str = "minecraft") -> str:
    """Prefix a bare item id with its namespace: "diamond" -> "minecraft:diamond"."""
    if ":" in item_id:
        return item_id
    return "%s:%s" % (namespace, item_id)


class World:
    """A Minecraft world directory. Each dimension keeps its entities in an
    `entities` directory of region files, separate from the block data."""

    def __init__(self, worlddir: str, log: Any = None) -> None:
        self.worlddir = worlddir
        self.log = log if log is not None else logger

    def entity_dir(self, dimension: str) -> str:
        dimension = dimension.lower()
        if dimension not in DIMENSIONS:
            raise ValueError("Invalid dimension: %s" % dimension)
        return os.path.join(self.worlddir, DIMENSIONS[dimension], "entities")

    def entity_region_paths(self, dimension: str) -> list[str]:
        """Paths of the dimension's non-empty entity region files, ordered by
        region x then region z."""
        regiondir = self.entity_dir(dimension)
        try:
            names = os.listdir(regiondir)
        except OSError as e:
            raise nbt.ReadError("cannot list entity regions: %s" % (e,), region=regiondir) from e

        found = []
        for name in names:
            path = os.path.join(regiondir, name)
            m = _region_file.match(name)
            if m is None:
                self.log.info("region_skipped", path=path, reason="not a region file")
                continue
            # region files are created empty and filled in later
            if os.path.getsize(path) == 0:
                self.log.debug("region_skipped", path=path, reason="empty")
                continue
            found.append(((int(m.group(1)), int(m.group(2))), path))

        found.sort()
        return [path for _, path in found]


def search_item_by_id(world: World, dimension: str, item_id: str,
                      log: Any = None, strict: bool = False) -> MatchResult:
    """Scan every entity chunk of `dimension` for dropped items whose id is
    exactly `item_id`.

    Region files that can't be opened abort the search. Chunks and entities
    that can't be read are logged and collected on the result's `failures`;
    with `strict`, the first of them is raised once the scan is done.
    """
    log = log if log is not None else logger
    items = []
    failures: list = []

    for path in world.entity_region_paths(dimension):
        with nbt.load_region(path, log=log) as region:
            for document in region.iter_chunks(failures):
                try:
                    scan = entities_of(document, log=log)
                except nbt.StructureError as e:
                    e.region = path
                    log.warning("chunk_malformed", region=path, chunk=document.coords, error=e.message)
                    failures.append(e)
                    continue
                failures.extend(scan.failures)
                items.extend(match_items(scan, item_id, failures, log=log))

    if strict and failures:
        raise failures[0]
    return collect(items, failures)
