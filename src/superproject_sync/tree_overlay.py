"""
Mutable in-memory view of a tree, edited by path before being written back.
"""

from __future__ import annotations

from typing import Dict, Iterator, Optional, Tuple

from .models import GITLINK_MODE, TreeEntry


class TreeOverlay:
    """Flattened ``path -> TreeEntry`` view of a tree snapshot.

    Edits are staged and only applied by :meth:`finish`, so a failed edit
    session leaves the loaded entries untouched.
    """

    def __init__(self, entries: Optional[Dict[str, TreeEntry]] = None) -> None:
        self._entries: Dict[str, TreeEntry] = dict(entries or {})
        self._edits: Dict[str, Optional[TreeEntry]] = {}

    def get(self, path: str) -> Optional[TreeEntry]:
        return self._entries.get(path)

    def is_tree(self, path: str) -> bool:
        """True when ``path`` is a directory holding other entries."""
        prefix = path.rstrip("/") + "/"
        return any(p.startswith(prefix) for p in self._entries)

    def set_gitlink(self, path: str, commit: str) -> None:
        self._edits[path] = TreeEntry(GITLINK_MODE, commit)

    def delete(self, path: str) -> None:
        self._edits[path] = None

    @property
    def pending(self) -> int:
        return len(self._edits)

    def finish(self) -> None:
        """Apply all staged edits."""
        for path, entry in self._edits.items():
            if entry is None:
                self._entries.pop(path, None)
            else:
                self._entries[path] = entry
        self._edits.clear()

    def entries(self) -> Dict[str, TreeEntry]:
        return dict(self._entries)

    def gitlinks(self) -> Iterator[Tuple[str, str]]:
        for path, entry in sorted(self._entries.items()):
            if entry.is_gitlink:
                yield path, entry.sha

    def __len__(self) -> int:
        return len(self._entries)
