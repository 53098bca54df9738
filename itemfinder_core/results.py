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

"""Turn matching item entities into the result handed to the caller.

The result is serialized as one of three shapes::

    {"Error": "message"}
    {"FoundItems": [{"item_id": ..., "name": ..., "location": [x, y, z],
                     "location_status": null}]}
    "NoResult"
"""

from __future__ import annotations

import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Optional

from .entities import EntityRecord
from .logging import get_logger
from .nbt import StructureError

logger = get_logger(__name__)

ITEM_NAME_REGEX = re.compile(r'\{"text":"([^"]+)"}')


@dataclass
class FoundItem:
    item_id: str
    name: Optional[str]
    location: tuple[int, int, int]
    # reserved, always None for now
    location_status: Optional[str] = None

    def to_interface(self) -> dict:
        return {
            "item_id": self.item_id,
            "name": self.name,
            "location": list(self.location),
            "location_status": self.location_status,
        }


@dataclass
class MatchResult:
    """Base for the three result shapes. `failures` lists the chunks and
    entities that were skipped along the way; it is never serialized."""

    failures: list = field(default_factory=list, kw_only=True)

    def to_interface(self) -> Any:
        raise NotImplementedError

    def to_interface_string(self) -> str:
        return json.dumps(self.to_interface())


@dataclass
class NoResult(MatchResult):
    def to_interface(self) -> Any:
        return "NoResult"


@dataclass
class FoundItems(MatchResult):
    items: list[FoundItem] = field(default_factory=list)

    def to_interface(self) -> Any:
        return {"FoundItems": [item.to_interface() for item in self.items]}


@dataclass
class ErrorResult(MatchResult):
    message: str = ""

    @classmethod
    def from_exception(cls, exc: BaseException) -> ErrorResult:
        """Render an exception and the exceptions that caused it as one
        line: "outer: inner: innermost"."""
        parts = []
        seen = set()
        current: Optional[BaseException] = exc
        while current is not None and id(current) not in seen:
            seen.add(id(current))
            text = str(current) or type(current).__name__
            if text not in parts:
                parts.append(text)
            current = current.__cause__ or current.__context__
        return cls(message=": ".join(parts))

    def to_interface(self) -> Any:
        return {"Error": self.message}


def item_location(entity: dict, chunk: Optional[tuple[int, int]] = None) -> tuple[int, int, int]:
    """Block position of an entity: its Pos doubles truncated toward zero."""
    pos = entity.get("Pos")
    if pos is None:
        raise StructureError("entity has no Pos field", value=entity, chunk=chunk)
    if not isinstance(pos, list):
        raise StructureError("entity's Pos field is not a list", value=entity, chunk=chunk)
    if len(pos) < 3:
        raise StructureError("entity's Pos has %d elements, expected 3" % len(pos),
                             value=entity, chunk=chunk)
    for elem in pos[:3]:
        if not isinstance(elem, float):
            raise StructureError("Pos element %r is not a float" % (elem,), value=entity, chunk=chunk)
        if not math.isfinite(elem):
            raise StructureError("Pos element %r is not finite" % (elem,), value=entity, chunk=chunk)
    return int(pos[0]), int(pos[1]), int(pos[2])


def item_name(entity: dict) -> Optional[str]:
    """Custom display name of the entity's item, if it has one.

    Looks under Item.tag.display.Name and unwraps {"text":"..."}. Anything
    missing or shaped differently just means no name.
    """
    node: Any = entity
    for key in ("Item", "tag", "display"):
        node = node.get(key) if isinstance(node, dict) else None
        if not isinstance(node, dict):
            return None

    name = node.get("Name")
    if not isinstance(name, str):
        return None

    m = ITEM_NAME_REGEX.search(name)
    if m is None:
        return None
    return m.group(1)


def match_items(entities: Iterable[EntityRecord], target_id: str,
                failures: Optional[list] = None, log: Any = None) -> Iterator[FoundItem]:
    """Yield a FoundItem for every record whose item id is exactly
    `target_id`, in iteration order.

    A matching item whose position can't be read is logged, appended to
    `failures` when given, and left out.
    """
    log = log if log is not None else logger
    for record in entities:
        if record.item_id != target_id:
            log.debug("item_mismatch", chunk=record.chunk, wanted=target_id, found=record.item_id)
            continue
        try:
            location = item_location(record.entity, record.chunk)
        except StructureError as e:
            log.warning("item_malformed", chunk=record.chunk, item_id=record.item_id, error=e.message)
            if failures is not None:
                failures.append(e)
            continue
        yield FoundItem(record.item_id, item_name(record.entity), location)


def collect(items: list[FoundItem], failures: Optional[list] = None) -> MatchResult:
    failures = failures if failures is not None else []
    if not items:
        return NoResult(failures=failures)
    return FoundItems(items, failures=failures)


def find(entities: Iterable[EntityRecord], target_id: str, log: Any = None) -> MatchResult:
    """Search `entities` for items with id `target_id`.

    The comparison is exact; qualify the id with its namespace first.
    """
    failures: list = []
    items = list(match_items(entities, target_id, failures, log=log))
    return collect(items, failures)
