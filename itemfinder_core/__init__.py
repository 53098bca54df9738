"""Find dropped items in a Minecraft world's entity region files."""

__all__ = [
    "nbt",
    "entities",
    "results",
    "world",
    "config",
    "cli",
]
