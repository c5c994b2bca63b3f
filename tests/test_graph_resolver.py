"""
Tests for dependency graph resolution.
"""

import random
from typing import Dict, List

import pytest

from superproject_sync.config import SubmoduleSettings
from superproject_sync.graph_resolver import GraphResolver
from superproject_sync.models import (
    BranchId,
    CircularSubscriptionError,
    GitRepositoryError,
    SubmoduleError,
    SubmoduleSubscription,
)


def B(project: str, branch: str = "master") -> BranchId:
    return BranchId(project, f"refs/heads/{branch}")


class FakeIndex:
    """Subscription index answering from an edge list."""

    def __init__(self, edges=(), settings=None) -> None:
        self.settings = settings or SubmoduleSettings()
        self.edges: Dict[BranchId, List[SubmoduleSubscription]] = {}
        self.calls: List[BranchId] = []
        for sub, sup in edges:
            self.add(sub, sup)

    def add(self, sub: BranchId, sup: BranchId, path: str = None) -> SubmoduleSubscription:
        s = SubmoduleSubscription(sub, sup, path or sub.project.lower())
        self.edges.setdefault(sub, []).append(s)
        return s

    def subscriptions_for_submodule_branch(self, branch: BranchId) -> List[SubmoduleSubscription]:
        self.calls.append(branch)
        return list(self.edges.get(branch, []))


def _assert_topological(order, index):
    position = {b: i for i, b in enumerate(order)}
    assert len(position) == len(order), "duplicate branch in order"
    for sub, subs in index.edges.items():
        if sub not in position:
            continue
        for s in subs:
            assert position[sub] < position[s.superproject], f"{sub} must precede {s.superproject}"


def test_single_subscription_example():
    index = FakeIndex()
    sub = index.add(B("ProjectX"), B("ProjectY"), "libs/x")
    result = GraphResolver(index).resolve({B("ProjectX")})
    assert result.order == (B("ProjectX"), B("ProjectY"))
    assert result.targets == {B("ProjectY"): [sub]}
    assert result.projects_in_order() == ["ProjectX", "ProjectY"]


def test_branch_without_subscribers():
    result = GraphResolver(FakeIndex()).resolve([B("Lonely")])
    assert result.order == (B("Lonely"),)
    assert result.targets == {}
    assert not result.is_empty


def test_transitive_chain():
    index = FakeIndex([(B("A"), B("B")), (B("B"), B("C")), (B("C"), B("D"))])
    result = GraphResolver(index).resolve([B("A")])
    assert result.order == (B("A"), B("B"), B("C"), B("D"))
    assert set(result.targets) == {B("B"), B("C"), B("D")}


def test_diamond_visits_shared_superproject_once():
    index = FakeIndex(
        [(B("Lib"), B("Left")), (B("Lib"), B("Right")), (B("Left"), B("Top")), (B("Right"), B("Top"))]
    )
    result = GraphResolver(index).resolve([B("Lib")])
    _assert_topological(result.order, index)
    assert result.order[0] == B("Lib")
    assert result.order[-1] == B("Top")
    assert len(result.targets[B("Top")]) == 2
    assert index.calls.count(B("Top")) == 1


def test_multiple_initial_branches_share_done_set():
    index = FakeIndex([(B("A"), B("S")), (B("C"), B("S"))])
    result = GraphResolver(index).resolve([B("A"), B("C"), B("A")])
    _assert_topological(result.order, index)
    assert result.order.count(B("S")) == 1
    assert index.calls.count(B("A")) == 1


def test_cycle_is_reported_with_chain():
    index = FakeIndex([(B("A"), B("B")), (B("B"), B("A"))])
    with pytest.raises(CircularSubscriptionError) as exc_info:
        GraphResolver(index).resolve([B("A")])
    err = exc_info.value
    assert "Branch level circular subscriptions detected" in str(err)
    assert B("A") in err.chain and B("B") in err.chain
    assert err.chain[0] == err.chain[-1] == B("A")


def test_self_subscription_is_a_cycle():
    index = FakeIndex([(B("A"), B("A"))])
    with pytest.raises(CircularSubscriptionError) as exc_info:
        GraphResolver(index).resolve([B("A")])
    assert exc_info.value.chain == [B("A"), B("A")]


def test_cycle_below_entry_point():
    index = FakeIndex([(B("Start"), B("X")), (B("X"), B("Y")), (B("Y"), B("Z")), (B("Z"), B("X"))])
    with pytest.raises(CircularSubscriptionError) as exc_info:
        GraphResolver(index).resolve([B("Start")])
    assert exc_info.value.chain == [B("X"), B("Z"), B("Y"), B("X")]
    assert B("Start") not in exc_info.value.chain


def test_disabled_subscriptions_short_circuit():
    index = FakeIndex([(B("A"), B("B"))], settings=SubmoduleSettings(enable_superproject_subscriptions=False))
    result = GraphResolver(index).resolve([B("A")])
    assert result.is_empty
    assert index.calls == []


def test_index_failure_is_wrapped():
    class BrokenIndex(FakeIndex):
        def subscriptions_for_submodule_branch(self, branch):
            raise GitRepositoryError("disk on fire")

    with pytest.raises(SubmoduleError) as exc_info:
        GraphResolver(BrokenIndex()).resolve([B("A")])
    assert "Cannot find superprojects for" in str(exc_info.value)
    assert isinstance(exc_info.value.__cause__, GitRepositoryError)


def test_deep_chain_does_not_recurse():
    depth = 5000
    index = FakeIndex([(B(f"P{i}"), B(f"P{i + 1}")) for i in range(depth)])
    result = GraphResolver(index).resolve([B("P0")])
    assert len(result.order) == depth + 1
    assert result.order[0] == B("P0")
    assert result.order[-1] == B(f"P{depth}")


@pytest.mark.parametrize("seed", range(10))
def test_random_dags_are_ordered(seed):
    rng = random.Random(seed)
    nodes = [B(f"N{i}") for i in range(25)]
    edges = [
        (nodes[i], nodes[j])
        for i in range(len(nodes))
        for j in range(i + 1, len(nodes))
        if rng.random() < 0.15
    ]
    index = FakeIndex(edges)
    initial = rng.sample(nodes, 5)
    result = GraphResolver(index).resolve(initial)
    _assert_topological(result.order, index)
    discovered = {s for subs in result.targets.values() for s in subs}
    expected = {s for b in result.order for s in index.edges.get(b, [])}
    assert discovered == expected
