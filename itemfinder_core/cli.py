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

"""Command-line interface: find dropped items in a world by id."""

from __future__ import annotations

from typing import Optional

import typer

from .config import load_config
from .logging import configure_logging
from .results import ErrorResult
from .world import World, qualify_item_id, search_item_by_id

app = typer.Typer(add_completion=False, help="Find dropped items in a Minecraft world")


@app.command()
def search(
    world_dir: str = typer.Argument(..., help="Path to the world directory"),
    item_id_search: str = typer.Option(
        ..., "--item-id-search", "-i",
        help="Item id to look for; a bare id gets the default namespace",
    ),
    dimension: str = typer.Option(..., "--dimension", "-d", help="overworld, nether or end"),
    strict: bool = typer.Option(
        False, "--strict",
        help="Fail instead of skipping unreadable chunks and entities",
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Overrides ITEMFINDER_LOG_LEVEL"),
) -> None:
    try:
        config = load_config()
        configure_logging(log_level or config.log_level)
        item_id = qualify_item_id(item_id_search, config.namespace)
        result = search_item_by_id(World(world_dir), dimension, item_id,
                                   strict=strict or config.strict)
    except Exception as e:
        result = ErrorResult.from_exception(e)

    typer.echo(result.to_interface_string())


def main():
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
