"""
Shared fixtures: an in-memory object store and helpers to lay out projects.
"""

from __future__ import annotations

import hashlib
from dataclasses import replace
from typing import Dict, List, Optional

import pytest

from superproject_sync.models import (
    GITLINK_MODE,
    R_HEADS,
    CommitInfo,
    GitRepositoryError,
    NoSuchProjectError,
    PersonIdent,
    TreeEntry,
)
from superproject_sync.object_store import ObjectStore

BLOB_MODE = 0o100644
ALICE = PersonIdent("Alice", "alice@example.com")
BOB = PersonIdent("Bob", "bob@example.com")


def _sha(*parts) -> str:
    return hashlib.sha1(repr(parts).encode("utf-8")).hexdigest()


class InMemoryObjectStore(ObjectStore):
    """ObjectStore fake keeping refs, commits, trees and blobs in dicts."""

    def __init__(self) -> None:
        self.refs: Dict[str, Dict[str, str]] = {}
        self.commits: Dict[str, CommitInfo] = {}
        self.trees: Dict[str, Dict[str, TreeEntry]] = {}
        self.blobs: Dict[str, bytes] = {}
        self._seq: List[str] = []
        self._counter = 0

    # --- test helpers ---
    def add_project(self, project: str) -> None:
        self.refs.setdefault(project, {})

    def commit(
        self,
        project: str,
        ref: str,
        message: str,
        files: Optional[Dict[str, bytes]] = None,
        gitlinks: Optional[Dict[str, str]] = None,
        remove: Optional[List[str]] = None,
        author: PersonIdent = ALICE,
    ) -> str:
        """Commit on top of ``ref`` (created if missing) and move the ref."""
        self.add_project(project)
        if not ref.startswith("refs/"):
            ref = R_HEADS + ref
        parent = self.refs[project].get(ref)
        entries = dict(self.trees[self.commits[parent].tree]) if parent else {}
        for path, data in (files or {}).items():
            blob = _sha("blob", data)
            self.blobs[blob] = data
            entries[path] = TreeEntry(BLOB_MODE, blob)
        for path, target in (gitlinks or {}).items():
            entries[path] = TreeEntry(GITLINK_MODE, target)
        for path in remove or []:
            entries.pop(path, None)
        tree = self.write_tree(project, entries)
        sha = self.insert_commit(project, tree, [parent] if parent else [], message, author, author)
        self.refs[project][ref] = sha
        return sha

    def tip(self, project: str, ref: str = "refs/heads/master") -> Optional[str]:
        return self.refs[project].get(ref)

    def delete_ref(self, project: str, ref: str) -> None:
        self.refs[project].pop(ref, None)

    def tree_of(self, project: str, commit: str) -> Dict[str, TreeEntry]:
        return self.read_tree(project, commit)

    # --- ObjectStore ---
    def _project(self, project: str) -> Dict[str, str]:
        if project not in self.refs:
            raise NoSuchProjectError(project)
        return self.refs[project]

    def has_project(self, project: str) -> bool:
        return project in self.refs

    def resolve_ref(self, project: str, ref: str) -> Optional[str]:
        return self._project(project).get(ref)

    def list_heads(self, project: str) -> List[str]:
        return [ref for ref in self._project(project) if ref.startswith(R_HEADS)]

    def read_tree(self, project: str, commit: str) -> Dict[str, TreeEntry]:
        self._project(project)
        return dict(self.trees[self.parse_commit(project, commit).tree])

    def write_tree(self, project: str, entries: Dict[str, TreeEntry]) -> str:
        self._project(project)
        tree = _sha("tree", sorted((p, e.mode, e.sha) for p, e in entries.items()))
        self.trees[tree] = dict(entries)
        return tree

    def parse_commit(self, project: str, commit: str) -> CommitInfo:
        self._project(project)
        try:
            return replace(self.commits[commit], parents=list(self.commits[commit].parents))
        except KeyError:
            raise GitRepositoryError(f"Unknown commit {commit}")

    def insert_commit(self, project, tree, parents, message, author, committer) -> str:
        self._project(project)
        self._counter += 1
        sha = _sha("commit", tree, tuple(parents), message, str(author), self._counter)
        self.commits[sha] = CommitInfo(
            hash=sha,
            message=message,
            author=author,
            committer=committer,
            tree=tree,
            parents=list(parents),
        )
        self._seq.append(sha)
        return sha

    def _ancestry(self, commit: str) -> set:
        seen = set()
        todo = [commit]
        while todo:
            c = todo.pop()
            if c in seen or c not in self.commits:
                continue
            seen.add(c)
            todo.extend(self.commits[c].parents)
        return seen

    def walk_history(self, project, new, old, max_count=None) -> List[CommitInfo]:
        self._project(project)
        wanted = self._ancestry(new) - self._ancestry(old)
        history = [self.commits[c] for c in self._seq if c in wanted]
        if max_count is not None:
            history = history[-max_count:]
        return history

    def read_blob(self, project: str, commit: str, path: str) -> Optional[bytes]:
        entry = self.read_tree(project, commit).get(path)
        if entry is None or entry.is_gitlink:
            return None
        return self.blobs[entry.sha]


def gitmodules(*entries) -> bytes:
    """Build ``.gitmodules`` content from (path, url, branch) tuples."""
    lines = []
    for path, url, branch in entries:
        lines.append(f'[submodule "{path}"]')
        lines.append(f"\tpath = {path}")
        lines.append(f"\turl = {url}")
        if branch is not None:
            lines.append(f"\tbranch = {branch}")
    return ("\n".join(lines) + "\n").encode("utf-8")


@pytest.fixture()
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture(autouse=True)
def _isolated_log(tmp_path, monkeypatch):
    monkeypatch.setenv("SUPERPROJECT_SYNC_LOG", str(tmp_path / "logs" / "superproject-sync.log"))
    monkeypatch.delenv("SUPERPROJECT_SYNC_CONFIG", raising=False)
