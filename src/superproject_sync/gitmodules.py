"""
Subscriptions declared by a superproject branch in its ``.gitmodules`` file.
"""

from __future__ import annotations

import logging
from typing import List, Optional
from urllib.parse import urlparse

from .config import ConfigError, GitConfig
from .models import R_HEADS, BranchId, SubmoduleError, SubmoduleSubscription
from .object_store import ObjectStore


logger = logging.getLogger(__name__)

GITMODULES = ".gitmodules"
DOT_GIT = ".git"


def project_from_url(url: str, superproject: str, canonical_web_url: Optional[str]) -> Optional[str]:
    """Map a submodule URL onto a project name hosted by this server.

    Relative URLs (``../name``) are resolved against the superproject's name.
    Absolute URLs must point at the host and path prefix of
    ``canonical_web_url``. Returns None for anything hosted elsewhere.
    """
    if url.startswith("../"):
        # Leading slash so that walking up from a top-level project still works
        project = "/" + superproject
        host_part = url
        while host_part.startswith("../"):
            last_slash = project.rfind("/")
            if last_slash < 0:
                return None
            project = project[:last_slash]
            host_part = host_part[3:]
        project = f"{project}/{host_part}"
    else:
        if not canonical_web_url:
            return None
        target = urlparse(url)
        this = urlparse(canonical_web_url)
        if not target.hostname or not this.hostname:
            return None
        if target.hostname.lower() != this.hostname.lower():
            return None
        if not target.path.startswith(this.path):
            return None
        project = target.path[len(this.path):]

    project = project.lstrip("/")
    if project.endswith(DOT_GIT):
        project = project[: -len(DOT_GIT)]
    return project or None


class GitModules:
    """Parsed ``.gitmodules`` of one superproject branch."""

    def __init__(self, branch: BranchId, subscriptions: List[SubmoduleSubscription]) -> None:
        self.branch = branch
        self.subscriptions = subscriptions

    @classmethod
    def parse(
        cls, branch: BranchId, text: str, canonical_web_url: Optional[str] = None
    ) -> GitModules:
        try:
            cfg = GitConfig.from_text(text, source=f"{branch}:{GITMODULES}")
        except ConfigError as e:
            raise SubmoduleError(f"Invalid {GITMODULES} in {branch}: {e}") from e

        subscriptions = []
        for name in cfg.subsections("submodule"):
            url = cfg.get("submodule", name, "url")
            path = cfg.get("submodule", name, "path")
            ref = cfg.get("submodule", name, "branch")
            if not url or not path or not ref:
                # Only entries with a tracked branch take part in subscriptions
                continue
            if ref == ".":
                ref = branch.ref
            elif not ref.startswith("refs/"):
                ref = R_HEADS + ref
            project = project_from_url(url, branch.project, canonical_web_url)
            if project is None:
                logger.debug(f"Ignoring submodule {name} in {branch}: {url} is not hosted here")
                continue
            subscriptions.append(
                SubmoduleSubscription(
                    submodule=BranchId(project, ref),
                    superproject=branch,
                    path=path.strip("/"),
                )
            )
        return cls(branch, subscriptions)

    @classmethod
    def load(
        cls, store: ObjectStore, branch: BranchId, canonical_web_url: Optional[str] = None
    ) -> GitModules:
        """Read ``.gitmodules`` from the tip of ``branch``; empty if either is missing."""
        tip = store.resolve_ref(branch.project, branch.ref)
        if tip is None:
            return cls(branch, [])
        data = store.read_blob(branch.project, tip, GITMODULES)
        if data is None:
            return cls(branch, [])
        return cls.parse(branch, data.decode("utf-8", errors="replace"), canonical_web_url)

    def subscribed_to(self, submodule: BranchId) -> List[SubmoduleSubscription]:
        return [s for s in self.subscriptions if s.submodule == submodule]
