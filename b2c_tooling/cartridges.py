"""Cartridge discovery in a local project tree."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)

PROJECT_MARKER = ".project"
IGNORED_DIRS = frozenset({"node_modules", ".git"})


@dataclass(frozen=True)
class CartridgeMapping:
    """Local cartridge directory and its remote directory name."""

    name: str
    src: Path
    dest: str

    def destination_for(self, path: Path) -> str | None:
        """Remote path of ``path`` if it lives under this cartridge, else None."""
        try:
            relative = path.relative_to(self.src)
        except ValueError:
            return None
        return str(PurePosixPath(self.dest, *relative.parts))


def find_cartridges(
    directory: Path | str | None = None,
    include: Iterable[str] | None = None,
    exclude: Iterable[str] | None = None,
) -> list[CartridgeMapping]:
    """Find cartridges below ``directory`` (default: cwd).

    A cartridge is any directory holding an Eclipse ``.project`` marker. An
    empty ``include`` means every cartridge is included.
    """
    search_dir = Path(directory or Path.cwd()).resolve()
    include_names = set(include or ())
    exclude_names = set(exclude or ())

    cartridges: list[CartridgeMapping] = []
    for marker in sorted(search_dir.rglob(PROJECT_MARKER)):
        if not marker.is_file():
            continue
        if any(part in IGNORED_DIRS for part in marker.relative_to(search_dir).parts):
            continue

        cartridge_dir = marker.parent
        name = cartridge_dir.name
        if include_names and name not in include_names:
            continue
        if name in exclude_names:
            continue

        cartridges.append(CartridgeMapping(name=name, src=cartridge_dir, dest=name))

    logger.debug("Found cartridges", extra={"directory": str(search_dir), "count": len(cartridges)})
    return cartridges


def resolve_cartridge_path(path: Path, cartridges: Iterable[CartridgeMapping]) -> str | None:
    """Map an absolute local path to its remote destination.

    The first cartridge (in the given order) containing the path wins.
    """
    for cartridge in cartridges:
        destination = cartridge.destination_for(path)
        if destination is not None:
            return destination
    return None
