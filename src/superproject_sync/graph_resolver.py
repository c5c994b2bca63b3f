"""
Dependency resolution between submodule branches and their superprojects.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional

from .config import SubmoduleSettings
from .models import (
    BranchId,
    CircularSubscriptionError,
    ResolutionResult,
    SubmoduleError,
    SubmoduleSubscription,
    SyncError,
    cycle_chain,
    format_cycle,
)
from .subscription_index import SubscriptionIndex


logger = logging.getLogger(__name__)


@dataclass
class _Frame:
    branch: BranchId
    subscriptions: Iterator[SubmoduleSubscription]
    pending: Optional[SubmoduleSubscription] = None


class GraphResolver:
    """Orders branches so that every submodule precedes its superprojects."""

    def __init__(self, index: SubscriptionIndex, settings: Optional[SubmoduleSettings] = None) -> None:
        self.index = index
        self.settings = settings or index.settings

    def resolve(self, initial_branches: Iterable[BranchId]) -> ResolutionResult:
        """
        Walk "submodule -> superproject" edges from the updated branches.

        Args:
            initial_branches: Branches that just changed

        Returns:
            ResolutionResult with the resolved order (submodules first) and the
            target graph (superproject branch -> subscriptions feeding it).
            Empty when superproject subscriptions are disabled.

        Raises:
            CircularSubscriptionError: if subscriptions form a cycle
            SubmoduleError: if subscriptions cannot be looked up
        """
        if not self.settings.enable_superproject_subscriptions:
            logger.debug("Updating superprojects disabled")
            return ResolutionResult.empty()

        logger.debug("Calculating superprojects - submodules map")
        done: Dict[BranchId, None] = {}
        targets: Dict[BranchId, List[SubmoduleSubscription]] = {}
        for branch in initial_branches:
            if branch in done:
                continue
            self._search(branch, done, targets)

        # Superprojects were finished before their submodules
        order = tuple(reversed(list(done)))
        logger.info(
            f"Resolved {len(order)} branches, {len(targets)} of them superprojects to update"
        )
        return ResolutionResult(order=order, targets=targets)

    def _search(
        self,
        start: BranchId,
        done: Dict[BranchId, None],
        targets: Dict[BranchId, List[SubmoduleSubscription]],
    ) -> None:
        path: Dict[BranchId, None] = {}
        stack: List[_Frame] = []

        def enter(branch: BranchId) -> None:
            logger.debug(f"Now processing {branch}")
            if branch in path:
                raise CircularSubscriptionError(
                    "Branch level circular subscriptions detected: "
                    + format_cycle(list(path), branch),
                    chain=cycle_chain(list(path), branch),
                )
            if branch in done:
                return
            path[branch] = None
            stack.append(_Frame(branch, iter(self._subscriptions(branch))))

        enter(start)
        while stack:
            frame = stack[-1]
            if frame.pending is not None:
                # The superproject behind this edge is resolved by now
                subs = targets.setdefault(frame.pending.superproject, [])
                if frame.pending not in subs:
                    subs.append(frame.pending)
                frame.pending = None

            sub = next(frame.subscriptions, None)
            if sub is None:
                stack.pop()
                del path[frame.branch]
                done[frame.branch] = None
                continue

            frame.pending = sub
            enter(sub.superproject)

    def _subscriptions(self, branch: BranchId) -> List[SubmoduleSubscription]:
        try:
            return self.index.subscriptions_for_submodule_branch(branch)
        except SubmoduleError:
            raise
        except (SyncError, OSError) as e:
            logger.error(f"Cannot find superprojects for {branch}: {e}")
            raise SubmoduleError(f"Cannot find superprojects for {branch}: {e}") from e
