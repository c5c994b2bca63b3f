"""
Data models for superproject gitlink synchronization.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .refspec import RefPattern

R_HEADS = "refs/heads/"
GITLINK_MODE = 0o160000
TREE_MODE = 0o040000


@dataclass(frozen=True, order=True)
class BranchId:
    """A branch across the whole multi-repository system."""

    project: str
    ref: str

    @classmethod
    def parse(cls, value: str) -> BranchId:
        """Parse ``project:ref``; a bare branch name is prefixed with ``refs/heads/``."""
        project, sep, ref = value.partition(":")
        if not sep or not project or not ref:
            raise ValueError(f"Expected PROJECT:REF, got '{value}'")
        if not ref.startswith("refs/"):
            ref = R_HEADS + ref
        return cls(project, ref)

    @property
    def short_name(self) -> str:
        if self.ref.startswith(R_HEADS):
            return self.ref[len(R_HEADS):]
        return self.ref

    def __str__(self) -> str:
        return f"{self.project}:{self.ref}"


@dataclass(frozen=True)
class SubmoduleSubscription:
    """Directed edge: ``submodule`` feeds ``superproject`` at ``path``."""

    submodule: BranchId
    superproject: BranchId
    path: str

    def __str__(self) -> str:
        return f"{self.submodule} -> {self.superproject} ({self.path})"


@dataclass(frozen=True)
class SubscribeRule:
    """Permission declared by a submodule project for a superproject to track it.

    ``project`` is the superproject that may subscribe. ``source`` matches
    submodule refs; ``destination`` selects superproject refs. Without a
    destination every head of ``project`` is a candidate.
    """

    project: str
    source: str
    destination: Optional[str] = None

    @classmethod
    def from_refspec(cls, project: str, refspec: str) -> SubscribeRule:
        src, sep, dst = refspec.strip().partition(":")
        if not src:
            raise ValueError(f"Empty source in refspec '{refspec}'")
        return cls(project, src, dst if sep and dst else None)

    @property
    def pattern(self) -> RefPattern:
        return RefPattern(self.source, self.destination)

    def matches(self, ref: str) -> bool:
        return self.pattern.match_source(ref)

    def __str__(self) -> str:
        spec = self.source if self.destination is None else f"{self.source}:{self.destination}"
        return f"{self.project} [{spec}]"


@dataclass(frozen=True)
class PersonIdent:
    """Author or committer identity."""

    name: str
    email: str

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"


@dataclass(frozen=True)
class TreeEntry:
    """A single flattened tree entry."""

    mode: int
    sha: str

    @property
    def is_gitlink(self) -> bool:
        return self.mode == GITLINK_MODE


@dataclass
class CommitInfo:
    """Information about a Git commit."""

    hash: str
    message: str
    author: PersonIdent
    committer: PersonIdent
    tree: str
    parents: List[str] = field(default_factory=list)

    @property
    def summary(self) -> str:
        return self.message.split("\n", 1)[0]


@dataclass(frozen=True)
class RefUpdateCommand:
    """Move ``ref`` in ``project`` from ``old_sha`` to ``new_sha``."""

    project: str
    ref: str
    old_sha: Optional[str]
    new_sha: str

    @property
    def branch(self) -> BranchId:
        return BranchId(self.project, self.ref)


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of one dependency resolution pass."""

    order: Tuple[BranchId, ...] = ()
    targets: Dict[BranchId, List[SubmoduleSubscription]] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> ResolutionResult:
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.order and not self.targets

    def subscriptions_for(self, superproject: BranchId) -> List[SubmoduleSubscription]:
        return list(self.targets.get(superproject, []))

    def projects_in_order(self) -> List[str]:
        """Collapse the branch order into a project order.

        Raises:
            CircularSubscriptionError: if a project shows up again after a
                different project has been seen in between.
        """
        projects: Dict[str, None] = {}
        prev = None
        for branch in self.order:
            if branch.project != prev:
                if branch.project in projects:
                    raise CircularSubscriptionError(
                        "Project level circular subscriptions detected: "
                        + format_cycle(list(projects), branch.project),
                        chain=cycle_chain(list(projects), branch.project),
                    )
                projects[branch.project] = None
            prev = branch.project
        return list(projects)

    def branches_by_project(self) -> Dict[str, List[BranchId]]:
        """Superproject branches grouped by project, in resolved order."""
        grouped: Dict[str, List[BranchId]] = {}
        for branch in self.order:
            if branch in self.targets:
                grouped.setdefault(branch.project, []).append(branch)
        return grouped


def cycle_chain(path: Sequence, target) -> list:
    """Return ``target`` followed by ``path`` walked backwards until ``target``."""
    chain = [target]
    for item in reversed(path):
        chain.append(item)
        if item == target:
            break
    return chain


def format_cycle(path: Sequence, target) -> str:
    return "->".join(str(item) for item in cycle_chain(path, target))


class SyncError(Exception):
    """Base exception for superproject synchronization."""

    pass


class GitRepositoryError(SyncError):
    """Exception raised for Git repository related errors."""

    pass


class NoSuchProjectError(SyncError):
    """Raised when a project has no backing repository."""

    def __init__(self, project: str) -> None:
        super().__init__(f"Project {project} does not exist")
        self.project = project


class SubmoduleError(SyncError):
    """Exception raised for submodule related errors."""

    pass


class CircularSubscriptionError(SubmoduleError):
    """A dependency cycle between subscribed branches or projects."""

    def __init__(self, message: str, chain: Optional[Sequence] = None) -> None:
        super().__init__(message)
        self.chain = list(chain or [])
