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

"""Configuration loaded from the environment."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _get_env(key: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(key)
    if value is not None:
        value = value.strip()
        if value == "":
            return default
        return value
    return default


def _get_bool(key: str, default: bool) -> bool:
    value = _get_env(key)
    if value is None:
        return default
    value_lower = value.lower()
    if value_lower in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if value_lower in {"0", "false", "f", "no", "n", "off"}:
        return False
    raise ValueError(f"Environment variable {key} must be a boolean")


@dataclass(slots=True)
class AppConfig:
    log_level: str = "WARNING"
    namespace: str = "minecraft"
    # raise the first skipped chunk or entity instead of only logging it
    strict: bool = False


def load_config() -> AppConfig:
    return AppConfig(
        log_level=(_get_env("ITEMFINDER_LOG_LEVEL") or "WARNING").upper(),
        namespace=_get_env("ITEMFINDER_NAMESPACE") or "minecraft",
        strict=_get_bool("ITEMFINDER_STRICT", False),
    )
