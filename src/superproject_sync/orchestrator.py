"""
Orchestration of a superproject update pass across repositories.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

from .batch_applier import BatchApplier, BatchResult, GitBatchRefUpdater
from .config import ProjectConfigRules, SubmoduleSettings
from .gitlink_composer import ComposedCommit, GitlinkComposer
from .graph_resolver import GraphResolver
from .locking import ProjectLockManager
from .models import BranchId, PersonIdent, RefUpdateCommand, ResolutionResult, SubmoduleError
from .object_store import GitObjectStore, ObjectStore
from .subscription_index import RulesProvider, SubscriptionIndex


logger = logging.getLogger(__name__)


@dataclass
class UpdatePlan:
    """Everything one pass computed, and what the applier reported."""

    pass_id: str
    resolution: ResolutionResult
    composed: List[ComposedCommit] = field(default_factory=list)
    commands: Dict[str, List[RefUpdateCommand]] = field(default_factory=dict)
    result: Optional[BatchResult] = None

    @property
    def command_count(self) -> int:
        return sum(len(cmds) for cmds in self.commands.values())


class UpdateOrchestrator:
    """Resolves subscriptions, composes gitlink commits and submits ref updates."""

    def __init__(
        self,
        store: ObjectStore,
        index: SubscriptionIndex,
        applier: BatchApplier,
        settings: Optional[SubmoduleSettings] = None,
        server_ident: Optional[PersonIdent] = None,
        lock_manager: Optional[ProjectLockManager] = None,
        lock_timeout: Optional[float] = None,
        skip_unchanged: bool = True,
    ) -> None:
        self.settings = settings or index.settings
        self.store = store
        self.index = index
        self.applier = applier
        self.resolver = GraphResolver(index, self.settings)
        self.composer = GitlinkComposer(store, self.settings, server_ident)
        self.lock_manager = lock_manager or ProjectLockManager()
        self.lock_timeout = lock_timeout
        self.skip_unchanged = skip_unchanged

    @classmethod
    def for_repositories(
        cls,
        root: Union[str, Path],
        settings: Optional[SubmoduleSettings] = None,
        rules: Optional[RulesProvider] = None,
        max_workers: int = 1,
        **kwargs,
    ) -> UpdateOrchestrator:
        """Wire an orchestrator over a directory of git repositories.

        Without explicit ``rules``, each submodule project's ``refs/meta/config``
        supplies its subscribe rules.
        """
        settings = settings or SubmoduleSettings()
        store = GitObjectStore(root)
        if rules is None:
            rules = ProjectConfigRules(store)
        index = SubscriptionIndex(store, rules, settings)
        applier = GitBatchRefUpdater(store, max_workers=max_workers)
        return cls(store, index, applier, settings, **kwargs)

    def resolve(self, initial_branches: Iterable[BranchId]) -> ResolutionResult:
        return self.resolver.resolve(list(initial_branches))

    def plan(self, initial_branches: Iterable[BranchId]) -> UpdatePlan:
        """Compose every gitlink commit a pass would submit, without moving refs."""
        pass_id = _new_pass_id()
        resolution = self.resolve(initial_branches)
        plan = UpdatePlan(pass_id, resolution)
        if not resolution.targets:
            logger.info(f"[{pass_id}] No superprojects to update")
            return plan
        self._compose_all(plan)
        return plan

    def apply(self, initial_branches: Iterable[BranchId]) -> UpdatePlan:
        """
        Run a full pass: resolve, compose per superproject branch, submit.

        Returns:
            UpdatePlan including the applier's result

        Raises:
            CircularSubscriptionError: if subscriptions form a cycle
            SubmoduleError: if composing or applying fails; nothing is
                submitted when composing fails
        """
        pass_id = _new_pass_id()
        initial = list(initial_branches)
        logger.info(f"[{pass_id}] Updating superprojects of {', '.join(str(b) for b in initial)}")
        resolution = self.resolve(initial)
        plan = UpdatePlan(pass_id, resolution)
        if not resolution.targets:
            logger.info(f"[{pass_id}] No superprojects to update")
            return plan

        superprojects = list(resolution.branches_by_project())
        with self.lock_manager.acquire(superprojects, timeout=self.lock_timeout):
            self._compose_all(plan)
            if not plan.commands:
                logger.info(f"[{pass_id}] All superprojects already up to date")
                return plan
            try:
                plan.result = self.applier.apply(plan.commands)
            except SubmoduleError:
                raise
            except Exception as e:
                logger.error(f"[{pass_id}] Cannot update gitlinks: {e}")
                raise SubmoduleError(f"Cannot update gitlinks: {e}") from e

        if not plan.result.ok:
            failed = ", ".join(f"{r.command.branch} ({r.error})" for r in plan.result.failures)
            logger.error(f"[{pass_id}] Cannot update gitlinks: {failed}")
            raise SubmoduleError(f"Cannot update gitlinks: {failed}")

        logger.info(
            f"[{pass_id}] Updated {plan.command_count} superproject branches "
            f"in {len(plan.commands)} projects"
        )
        return plan

    def _compose_all(self, plan: UpdatePlan) -> None:
        resolution = plan.resolution
        by_project = resolution.branches_by_project()
        # Commits composed earlier in this pass feed later superprojects
        branch_tips: Dict[BranchId, str] = {}

        for project in resolution.projects_in_order():
            for branch in by_project.get(project, []):
                composed = self.composer.compose(
                    branch, resolution.subscriptions_for(branch), branch_tips
                )
                if self.skip_unchanged and not composed.changed:
                    logger.info(f"[{plan.pass_id}] {branch} already points at the latest submodules")
                    continue
                branch_tips[branch] = composed.commit.hash
                plan.composed.append(composed)
                plan.commands.setdefault(project, []).append(
                    RefUpdateCommand(project, branch.ref, composed.old_tip, composed.commit.hash)
                )
                logger.debug(
                    f"[{plan.pass_id}] {branch}: {composed.old_tip[:8]} -> {composed.commit.hash[:8]}"
                )


def _new_pass_id() -> str:
    return uuid.uuid4().hex[:12]
