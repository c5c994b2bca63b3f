"""
Superproject Sync - keep superproject gitlinks consistent with submodule branch tips.

This package resolves submodule subscriptions across many repositories, orders
the affected branches so submodules come before their superprojects, and
composes gitlink update commits that are applied per project as a batch.
"""

__version__ = "0.1.0"

from .models import (
    BranchId,
    SubmoduleSubscription,
    SubscribeRule,
    ResolutionResult,
    RefUpdateCommand,
    SubmoduleError,
    CircularSubscriptionError,
)
from .config import SubmoduleSettings, VerboseMode
from .object_store import ObjectStore, GitObjectStore
from .subscription_index import SubscriptionIndex
from .graph_resolver import GraphResolver
from .gitlink_composer import GitlinkComposer
from .batch_applier import BatchApplier, GitBatchRefUpdater
from .orchestrator import UpdateOrchestrator

__all__ = [
    "BranchId",
    "SubmoduleSubscription",
    "SubscribeRule",
    "ResolutionResult",
    "RefUpdateCommand",
    "SubmoduleError",
    "CircularSubscriptionError",
    "SubmoduleSettings",
    "VerboseMode",
    "ObjectStore",
    "GitObjectStore",
    "SubscriptionIndex",
    "GraphResolver",
    "GitlinkComposer",
    "BatchApplier",
    "GitBatchRefUpdater",
    "UpdateOrchestrator",
]
