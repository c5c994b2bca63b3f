"""
Application of ref-update commands, grouped by project.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from git.exc import GitCommandError

from .models import NoSuchProjectError, RefUpdateCommand
from .object_store import GitObjectStore


logger = logging.getLogger(__name__)

ZERO_ID = "0" * 40
REFLOG_MESSAGE = "superproject-sync: update gitlinks"


@dataclass
class CommandResult:
    command: RefUpdateCommand
    ok: bool
    error: Optional[str] = None


@dataclass
class BatchResult:
    results: List[CommandResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failures(self) -> List[CommandResult]:
        return [r for r in self.results if not r.ok]


class BatchApplier(ABC):
    """Applies ref updates; commands of one project are applied together."""

    @abstractmethod
    def apply(self, commands_by_project: Dict[str, List[RefUpdateCommand]]) -> BatchResult:
        pass


class GitBatchRefUpdater(BatchApplier):
    """Moves refs with ``git update-ref`` compare-and-swap, one project at a time.

    When a command fails, refs already moved in the same project are put back
    and the remaining commands of that project are not attempted. Projects are
    independent of each other and may run on ``max_workers`` threads.
    """

    def __init__(self, store: GitObjectStore, max_workers: int = 1) -> None:
        self.store = store
        self.max_workers = max(1, max_workers)

    def apply(self, commands_by_project: Dict[str, List[RefUpdateCommand]]) -> BatchResult:
        items = [(p, cmds) for p, cmds in commands_by_project.items() if cmds]
        if self.max_workers > 1 and len(items) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                per_project = list(pool.map(lambda item: self._apply_project(*item), items))
        else:
            per_project = [self._apply_project(p, cmds) for p, cmds in items]

        result = BatchResult([r for results in per_project for r in results])
        logger.info(
            f"Applied {len(result.results) - len(result.failures)}/{len(result.results)} "
            f"ref updates across {len(items)} projects"
        )
        return result

    def _apply_project(self, project: str, commands: List[RefUpdateCommand]) -> List[CommandResult]:
        try:
            repo = self.store.repo(project)
        except NoSuchProjectError as e:
            logger.error(f"Cannot update refs in {project}: {e}")
            return [CommandResult(cmd, False, str(e)) for cmd in commands]

        applied: List[RefUpdateCommand] = []
        for i, cmd in enumerate(commands):
            try:
                repo.git.update_ref("-m", REFLOG_MESSAGE, cmd.ref, cmd.new_sha, cmd.old_sha or ZERO_ID)
                applied.append(cmd)
                logger.debug(f"Updated {project}:{cmd.ref} {(cmd.old_sha or ZERO_ID)[:8]} -> {cmd.new_sha[:8]}")
            except GitCommandError as e:
                logger.error(f"Failed to update {project}:{cmd.ref}: {e}")
                self._roll_back(repo, project, applied)
                results = [CommandResult(c, False, "rolled back") for c in applied]
                results.append(CommandResult(cmd, False, str(e)))
                results.extend(CommandResult(c, False, "not attempted") for c in commands[i + 1:])
                return results
        return [CommandResult(cmd, True) for cmd in applied]

    def _roll_back(self, repo, project: str, applied: List[RefUpdateCommand]) -> None:
        for cmd in reversed(applied):
            try:
                if cmd.old_sha:
                    repo.git.update_ref("-m", REFLOG_MESSAGE, cmd.ref, cmd.old_sha, cmd.new_sha)
                else:
                    repo.git.update_ref("-d", cmd.ref, cmd.new_sha)
                logger.info(f"Rolled back {project}:{cmd.ref}")
            except GitCommandError as e:
                logger.error(f"Failed to roll back {project}:{cmd.ref}: {e}")
