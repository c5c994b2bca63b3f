"""
Object store access for the repositories taking part in a pass.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from io import BytesIO
from pathlib import Path
from typing import Dict, List, Optional, Union

from git import Actor, Repo
from git.exc import BadName, GitCommandError, InvalidGitRepositoryError, NoSuchPathError
from git.objects import Commit, Tree
from git.objects.fun import traverse_tree_recursive, tree_to_stream
from gitdb.base import IStream
from gitdb.typ import str_tree_type
from gitdb.util import bin_to_hex, hex_to_bin

from .models import (
    R_HEADS,
    TREE_MODE,
    CommitInfo,
    GitRepositoryError,
    NoSuchProjectError,
    PersonIdent,
    TreeEntry,
)


logger = logging.getLogger(__name__)


class ObjectStore(ABC):
    """Content-addressable access to every project's repository."""

    @abstractmethod
    def has_project(self, project: str) -> bool:
        pass

    @abstractmethod
    def resolve_ref(self, project: str, ref: str) -> Optional[str]:
        """Return the commit a ref points at, or None if the ref doesn't exist.

        Raises:
            NoSuchProjectError: if the project has no repository
        """
        pass

    @abstractmethod
    def list_heads(self, project: str) -> List[str]:
        """Return full names of all ``refs/heads/*`` refs in a project."""
        pass

    @abstractmethod
    def read_tree(self, project: str, commit: str) -> Dict[str, TreeEntry]:
        """Return the commit's tree flattened to ``path -> TreeEntry`` (no tree entries)."""
        pass

    @abstractmethod
    def write_tree(self, project: str, entries: Dict[str, TreeEntry]) -> str:
        """Write flattened entries back as nested tree objects; return the root tree id."""
        pass

    @abstractmethod
    def parse_commit(self, project: str, commit: str) -> CommitInfo:
        pass

    @abstractmethod
    def insert_commit(
        self,
        project: str,
        tree: str,
        parents: List[str],
        message: str,
        author: PersonIdent,
        committer: PersonIdent,
    ) -> str:
        """Store a new commit object without touching any ref; return its id."""
        pass

    @abstractmethod
    def walk_history(
        self, project: str, new: str, old: str, max_count: Optional[int] = None
    ) -> List[CommitInfo]:
        """Commits reachable from ``new`` but not from ``old``, oldest first."""
        pass

    @abstractmethod
    def read_blob(self, project: str, commit: str, path: str) -> Optional[bytes]:
        """Return file content at ``path`` in ``commit``, or None if absent."""
        pass


def _ident(actor: Actor) -> PersonIdent:
    return PersonIdent(actor.name or "", actor.email or "")


def _nest(entries: Dict[str, TreeEntry]) -> dict:
    """Turn flattened paths into nested dicts of ``name -> TreeEntry | dict``."""
    root: dict = {}
    for path in sorted(entries):
        node = root
        parts = path.split("/")
        for part in parts[:-1]:
            child = node.setdefault(part, {})
            if not isinstance(child, dict):
                raise GitRepositoryError(f"Path '{path}' lies below non-tree entry '{part}'")
            node = child
        if isinstance(node.get(parts[-1]), dict):
            raise GitRepositoryError(f"Entry '{path}' collides with a directory")
        node[parts[-1]] = entries[path]
    return root


class GitObjectStore(ObjectStore):
    """GitPython object store over a directory of repositories.

    Project ``name`` lives at ``<root>/<name>.git`` (bare) or ``<root>/<name>``.
    Repositories are opened lazily and cached by project.
    """

    def __init__(self, root: Union[str, Path]) -> None:
        self.root = Path(root).resolve()
        self._repos: Dict[str, Repo] = {}
        self._lock = threading.Lock()

    def _project_path(self, project: str) -> Optional[Path]:
        for candidate in (self.root / f"{project}.git", self.root / project):
            if candidate.is_dir():
                return candidate
        return None

    def repo(self, project: str) -> Repo:
        """Return the cached repository of a project, opening it on first use."""
        with self._lock:
            repo = self._repos.get(project)
            if repo is not None:
                return repo
            path = self._project_path(project)
            if path is None:
                raise NoSuchProjectError(project)
            try:
                repo = Repo(path)
            except (InvalidGitRepositoryError, NoSuchPathError) as e:
                logger.debug(f"{path} is not a git repository: {e}")
                raise NoSuchProjectError(project) from e
            logger.debug(f"Opened repository for {project} at {path}")
            self._repos[project] = repo
            return repo

    def close(self) -> None:
        with self._lock:
            for repo in self._repos.values():
                repo.close()
            self._repos.clear()

    def __enter__(self) -> GitObjectStore:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def has_project(self, project: str) -> bool:
        try:
            self.repo(project)
            return True
        except NoSuchProjectError:
            return False

    def resolve_ref(self, project: str, ref: str) -> Optional[str]:
        repo = self.repo(project)
        try:
            value = repo.git.rev_parse("--verify", "--quiet", f"{ref}^{{commit}}").strip()
            return value or None
        except GitCommandError:
            return None

    def list_heads(self, project: str) -> List[str]:
        repo = self.repo(project)
        try:
            return [head.path for head in repo.heads if head.path.startswith(R_HEADS)]
        except Exception as e:
            logger.error(f"Error listing heads of {project}: {e}")
            raise GitRepositoryError(f"Failed to list heads of {project}: {e}") from e

    def read_tree(self, project: str, commit: str) -> Dict[str, TreeEntry]:
        repo = self.repo(project)
        try:
            tree = repo.commit(commit).tree
            entries = traverse_tree_recursive(repo.odb, tree.binsha, "")
        except (BadName, ValueError, GitCommandError) as e:
            logger.error(f"Error reading tree of {commit} in {project}: {e}")
            raise GitRepositoryError(f"Failed to read tree of {commit} in {project}: {e}") from e
        return {
            path: TreeEntry(mode, bin_to_hex(binsha).decode("ascii"))
            for binsha, mode, path in entries
        }

    def write_tree(self, project: str, entries: Dict[str, TreeEntry]) -> str:
        repo = self.repo(project)
        try:
            binsha = self._store_tree(repo, _nest(entries))
        except (ValueError, OSError) as e:
            logger.error(f"Error writing tree in {project}: {e}")
            raise GitRepositoryError(f"Failed to write tree in {project}: {e}") from e
        return bin_to_hex(binsha).decode("ascii")

    def _store_tree(self, repo: Repo, node: dict) -> bytes:
        items = []
        for name, child in node.items():
            if isinstance(child, dict):
                items.append((self._store_tree(repo, child), TREE_MODE, name))
            else:
                items.append((hex_to_bin(child.sha), child.mode, name))
        # git orders tree entries as if directory names had a trailing slash
        items.sort(key=lambda item: item[2] + "/" if item[1] == TREE_MODE else item[2])
        stream = BytesIO()
        tree_to_stream(items, stream.write)
        data = stream.getvalue()
        istream = repo.odb.store(IStream(str_tree_type, len(data), BytesIO(data)))
        return istream.binsha

    def parse_commit(self, project: str, commit: str) -> CommitInfo:
        repo = self.repo(project)
        try:
            c = repo.commit(commit)
            return CommitInfo(
                hash=c.hexsha,
                message=str(c.message),
                author=_ident(c.author),
                committer=_ident(c.committer),
                tree=c.tree.hexsha,
                parents=[parent.hexsha for parent in c.parents],
            )
        except (BadName, ValueError, GitCommandError) as e:
            logger.error(f"Error parsing commit {commit} in {project}: {e}")
            raise GitRepositoryError(f"Failed to parse commit {commit} in {project}: {e}") from e

    def insert_commit(
        self,
        project: str,
        tree: str,
        parents: List[str],
        message: str,
        author: PersonIdent,
        committer: PersonIdent,
    ) -> str:
        repo = self.repo(project)
        try:
            commit = Commit.create_from_tree(
                repo,
                Tree(repo, hex_to_bin(tree)),
                message,
                parent_commits=[repo.commit(p) for p in parents],
                head=False,
                author=Actor(author.name, author.email),
                committer=Actor(committer.name, committer.email),
            )
        except (BadName, ValueError, GitCommandError) as e:
            logger.error(f"Error inserting commit in {project}: {e}")
            raise GitRepositoryError(f"Failed to insert commit in {project}: {e}") from e
        logger.debug(f"Inserted commit {commit.hexsha[:8]} in {project}")
        return commit.hexsha

    def walk_history(
        self, project: str, new: str, old: str, max_count: Optional[int] = None
    ) -> List[CommitInfo]:
        repo = self.repo(project)
        kwargs = {"reverse": True}
        if max_count is not None:
            kwargs["max_count"] = max_count
        try:
            commits = list(repo.iter_commits(f"{old}..{new}", **kwargs))
        except GitCommandError as e:
            logger.error(f"Error walking {old[:8]}..{new[:8]} in {project}: {e}")
            raise GitRepositoryError(f"Failed to walk history in {project}: {e}") from e
        return [
            CommitInfo(
                hash=c.hexsha,
                message=str(c.message),
                author=_ident(c.author),
                committer=_ident(c.committer),
                tree=c.tree.hexsha,
                parents=[parent.hexsha for parent in c.parents],
            )
            for c in commits
        ]

    def read_blob(self, project: str, commit: str, path: str) -> Optional[bytes]:
        repo = self.repo(project)
        try:
            blob = repo.commit(commit).tree / path
        except KeyError:
            return None
        except (BadName, ValueError) as e:
            raise GitRepositoryError(f"Failed to read {path} at {commit} in {project}: {e}") from e
        if blob.type != "blob":
            return None
        return blob.data_stream.read()
