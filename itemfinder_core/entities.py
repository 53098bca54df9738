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

"""Pull item entities out of an entity chunk.

An entity chunk's root compound has an "Entities" list. Dropped items are
entities with an "Item" compound whose "id" string names the item; every
other entity is skipped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator, Optional

from .logging import get_logger
from .nbt import ChunkDocument, StructureError

logger = get_logger(__name__)


@dataclass
class EntityRecord:
    item_id: str
    entity: dict
    chunk: Optional[tuple[int, int]] = None


@dataclass
class EntityScan:
    """Item entities of one chunk, plus the entities that couldn't be read.

    Iterating yields the records in the chunk's own order, and can be
    repeated."""

    records: list[EntityRecord] = field(default_factory=list)
    failures: list[StructureError] = field(default_factory=list)

    def __iter__(self) -> Iterator[EntityRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)


def entity_list(document: ChunkDocument) -> list:
    tree = document.tree
    entities = tree.get("Entities") if isinstance(tree, dict) else None
    if entities is None:
        raise StructureError("expected an Entities list, found none",
                             value=tree, chunk=document.coords)
    if not isinstance(entities, list):
        raise StructureError("Entities is not a list",
                             value=entities, chunk=document.coords)
    return entities


def entities_of(document: ChunkDocument, log: Any = None) -> EntityScan:
    """Classify every entity in `document`.

    A missing or mistyped Entities field raises StructureError for the whole
    chunk. A single bad entity is recorded in `failures` and its siblings
    are still read.
    """
    log = log if log is not None else logger
    scan = EntityScan()

    for entity in entity_list(document):
        if not isinstance(entity, dict):
            error = StructureError("entity is not a compound", value=entity, chunk=document.coords)
            log.warning("entity_malformed", chunk=document.coords, error=error.message)
            scan.failures.append(error)
            continue

        item = entity.get("Item")
        if not isinstance(item, dict):
            log.debug("entity_not_item", chunk=document.coords, entity_id=entity.get("id"))
            continue

        item_id = item.get("id")
        if not isinstance(item_id, str):
            error = StructureError("no item id found in item", value=entity, chunk=document.coords)
            log.warning("entity_malformed", chunk=document.coords, error=error.message,
                        entity=str(entity))
            scan.failures.append(error)
            continue

        scan.records.append(EntityRecord(item_id, entity, document.coords))

    return scan
