"""
Composition of gitlink update commits for superproject branches.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

from .config import SubmoduleSettings, VerboseMode
from .models import (
    BranchId,
    CommitInfo,
    GitRepositoryError,
    NoSuchProjectError,
    PersonIdent,
    SubmoduleError,
    SubmoduleSubscription,
)
from .object_store import ObjectStore
from .tree_overlay import TreeOverlay


logger = logging.getLogger(__name__)

MESSAGE_HEADER = "Update git submodules\n\n"


@dataclass
class ComposedCommit:
    """A gitlink commit built for one superproject branch (not yet on any ref)."""

    branch: BranchId
    old_tip: str
    base: CommitInfo
    commit: CommitInfo
    updated: Dict[str, str] = field(default_factory=dict)  # path -> submodule commit
    deleted: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """False when the new tree is identical to the tree it extends."""
        return self.commit.tree != self.base.tree


class GitlinkComposer:
    """Builds a commit on a superproject branch whose gitlinks track submodule tips.

    The composer never moves refs; the caller turns the result into a ref update.
    """

    def __init__(
        self,
        store: ObjectStore,
        settings: Optional[SubmoduleSettings] = None,
        server_ident: Optional[PersonIdent] = None,
        history_limit: Optional[int] = None,
    ) -> None:
        self.store = store
        self.settings = settings or SubmoduleSettings()
        self.server_ident = server_ident or self.settings.server_ident
        self.history_limit = history_limit

    def compose(
        self,
        branch: BranchId,
        subscriptions: Iterable[SubmoduleSubscription],
        branch_tips: Optional[Mapping[BranchId, str]] = None,
        base_commit: Optional[str] = None,
    ) -> ComposedCommit:
        """
        Create a gitlink update commit on the tip of ``branch``, or rewrite
        ``base_commit`` with the gitlink changes folded in.

        Args:
            branch: Superproject branch to update
            subscriptions: Subscriptions targeting ``branch``
            branch_tips: Pass-scoped overrides for submodule branch tips
            base_commit: Commit to amend instead of extending the branch tip

        Returns:
            ComposedCommit describing the inserted commit

        Raises:
            SubmoduleError: if the branch is gone, a path holds a non-gitlink
                entry, or the object store fails
        """
        branch_tips = branch_tips or {}
        try:
            tip = self.store.resolve_ref(branch.project, branch.ref)
        except NoSuchProjectError as e:
            raise SubmoduleError(f"Cannot access superproject {branch.project}") from e
        if tip is None:
            raise SubmoduleError(
                f"The branch {branch} was probably deleted from the subscriber repository"
            )

        try:
            current = self.store.parse_commit(branch.project, base_commit or tip)
            overlay = TreeOverlay(self.store.read_tree(branch.project, current.hash))
        except GitRepositoryError as e:
            raise SubmoduleError(f"Cannot read {branch}: {e}") from e

        msgbuf: List[str] = [MESSAGE_HEADER]
        author: Optional[PersonIdent] = None
        same_author_for_all = True
        updated: Dict[str, str] = {}
        deleted: List[str] = []

        for sub in subscriptions:
            update_to = self._submodule_tip(sub.submodule, branch_tips)
            existing = overlay.get(sub.path)
            if (existing is not None and not existing.is_gitlink) or overlay.is_tree(sub.path):
                raise SubmoduleError(
                    f"Requested to update gitlink {sub.path} in {branch.project} "
                    f"but entry doesn't have gitlink file mode."
                )

            if update_to is None:
                logger.info(f"Submodule branch {sub.submodule} is gone; removing {sub.path}")
                overlay.delete(sub.path)
                deleted.append(sub.path)
                continue

            try:
                new_commit = self.store.parse_commit(sub.submodule.project, update_to)
            except GitRepositoryError as e:
                raise SubmoduleError(f"Cannot read submodule commit {update_to}: {e}") from e

            if author is None:
                author = new_commit.author
            elif author != new_commit.author:
                same_author_for_all = False

            # A newly added submodule gets no history in the message
            old_id = existing.sha if existing is not None else update_to
            overlay.set_gitlink(sub.path, new_commit.hash)
            updated[sub.path] = new_commit.hash

            if self.settings.verbose_superproject_update is not VerboseMode.OFF:
                msgbuf.append(self._describe(sub, new_commit, old_id))

        overlay.finish()

        if not same_author_for_all or author is None:
            author = self.server_ident

        try:
            tree = self.store.write_tree(branch.project, overlay.entries())
            if base_commit is not None:
                parents = list(current.parents)
                message = current.message + "\n\n" + "".join(msgbuf)
                author = current.author
            else:
                parents = [current.hash]
                message = "".join(msgbuf)
            new_id = self.store.insert_commit(
                branch.project, tree, parents, message, author, self.server_ident
            )
        except GitRepositoryError as e:
            raise SubmoduleError(f"Cannot write gitlink commit for {branch}: {e}") from e

        logger.debug(
            f"Composed {new_id[:8]} on {branch}: {len(updated)} updated, {len(deleted)} removed"
        )
        return ComposedCommit(
            branch=branch,
            old_tip=tip,
            base=current,
            commit=CommitInfo(
                hash=new_id,
                message=message,
                author=author,
                committer=self.server_ident,
                tree=tree,
                parents=parents,
            ),
            updated=updated,
            deleted=deleted,
        )

    def _submodule_tip(self, submodule: BranchId, branch_tips: Mapping[BranchId, str]) -> Optional[str]:
        if submodule in branch_tips:
            return branch_tips[submodule]
        try:
            return self.store.resolve_ref(submodule.project, submodule.ref)
        except NoSuchProjectError as e:
            raise SubmoduleError(f"Cannot access submodule {submodule.project}") from e

    def _describe(self, sub: SubmoduleSubscription, new_commit: CommitInfo, old_id: str) -> str:
        parts = [f"Project: {sub.submodule.project} {sub.submodule.short_name} {new_commit.hash}\n\n"]
        try:
            history = self.store.walk_history(
                sub.submodule.project, new_commit.hash, old_id, max_count=self.history_limit
            )
        except GitRepositoryError as e:
            raise SubmoduleError(
                "Could not perform a revwalk to create superproject commit message"
            ) from e
        for c in history:
            if self.settings.verbose_superproject_update is VerboseMode.SUBJECT_ONLY:
                parts.append(f"* {c.summary}\n")
            else:
                parts.append(c.message.rstrip("\n") + "\n\n")
        if history and self.settings.verbose_superproject_update is VerboseMode.SUBJECT_ONLY:
            parts.append("\n")
        return "".join(parts)
