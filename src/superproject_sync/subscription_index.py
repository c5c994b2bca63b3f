"""
Lookup of superproject subscriptions for a submodule branch.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional

from .config import SubmoduleSettings
from .gitmodules import GitModules
from .models import BranchId, NoSuchProjectError, SubmoduleSubscription, SubscribeRule
from .object_store import ObjectStore


logger = logging.getLogger(__name__)

RulesProvider = Callable[[str], List[SubscribeRule]]


class SubscriptionIndex:
    """Answers "who subscribes to this branch?".

    Subscribe rules come from ``rules`` (keyed by submodule project); the
    superproject side of each candidate is confirmed by that branch's
    ``.gitmodules``, which is parsed once per branch and cached.
    """

    def __init__(
        self,
        store: ObjectStore,
        rules: RulesProvider,
        settings: Optional[SubmoduleSettings] = None,
    ) -> None:
        self.store = store
        self.rules = rules
        self.settings = settings or SubmoduleSettings()
        self._gitmodules: Dict[BranchId, GitModules] = {}

    def destination_branches(self, src: BranchId, rule: SubscribeRule) -> List[BranchId]:
        """Expand one subscribe rule into candidate superproject branches for ``src``."""
        logger.debug(f"Inspecting subscribe rule {rule}")
        if not rule.matches(src.ref):
            return []

        pattern = rule.pattern
        if rule.destination is None:
            # Track every head of the superproject
            try:
                heads = self.store.list_heads(rule.project)
            except NoSuchProjectError:
                logger.warning(
                    f"Project {rule.project} allowed to subscribe to {src.project} does not exist"
                )
                return []
            branches = [BranchId(rule.project, ref) for ref in heads]
        else:
            branches = [BranchId(rule.project, pattern.expand_from_source(src.ref))]

        logger.debug(f"Possible branches for project {rule.project}: {branches}")
        return branches

    def _gitmodules_for(self, branch: BranchId) -> GitModules:
        modules = self._gitmodules.get(branch)
        if modules is None:
            modules = GitModules.load(self.store, branch, self.settings.canonical_web_url)
            self._gitmodules[branch] = modules
        return modules

    def _rules_for(self, project: str) -> List[SubscribeRule]:
        try:
            return list(self.rules(project))
        except NoSuchProjectError:
            logger.warning(f"Submodule project {project} does not exist; no subscriptions")
            return []

    def subscriptions_for_submodule_branch(self, src: BranchId) -> List[SubmoduleSubscription]:
        """Return every subscription whose submodule side is ``src``.

        Superproject branches that no longer exist are skipped.
        """
        logger.debug(f"Calculating possible superprojects for {src}")
        result: List[SubmoduleSubscription] = []
        for rule in self._rules_for(src.project):
            for target in self.destination_branches(src, rule):
                try:
                    tip = self.store.resolve_ref(target.project, target.ref)
                except NoSuchProjectError:
                    logger.warning(f"The project {target.project} doesn't exist")
                    continue
                if tip is None:
                    logger.warning(f"The branch {target} doesn't exist")
                    continue
                for sub in self._gitmodules_for(target).subscribed_to(src):
                    if sub not in result:
                        result.append(sub)
        logger.debug(f"Calculated superprojects for {src} are {[str(s) for s in result]}")
        return result
