"""
Tests for ref pattern matching.
"""

import pytest

from superproject_sync.refspec import RefPattern


def test_wildcard_source_matches_prefix():
    pattern = RefPattern("refs/heads/*")
    assert pattern.is_wildcard
    assert pattern.match_source("refs/heads/master")
    assert pattern.match_source("refs/heads/feature/x")
    assert not pattern.match_source("refs/tags/v1")


def test_wildcard_with_suffix():
    pattern = RefPattern("refs/heads/*-stable", "refs/heads/release-*")
    assert pattern.match_source("refs/heads/2.0-stable")
    assert not pattern.match_source("refs/heads/2.0")
    assert pattern.expand_from_source("refs/heads/2.0-stable") == "refs/heads/release-2.0"


def test_literal_pattern():
    pattern = RefPattern("refs/heads/master", "refs/heads/stable")
    assert not pattern.is_wildcard
    assert pattern.match_source("refs/heads/master")
    assert not pattern.match_source("refs/heads/master2")
    assert pattern.expand_from_source("refs/heads/master") == "refs/heads/stable"


def test_wildcard_source_literal_destination():
    pattern = RefPattern("refs/heads/*", "refs/heads/master")
    assert pattern.expand_from_source("refs/heads/dev") == "refs/heads/master"


def test_expand_requires_match_and_destination():
    with pytest.raises(ValueError):
        RefPattern("refs/heads/*", "refs/heads/*").expand_from_source("refs/tags/v1")
    with pytest.raises(ValueError):
        RefPattern("refs/heads/*").expand_from_source("refs/heads/master")


@pytest.mark.parametrize(
    "source,destination",
    [("refs/*/heads/*", None), ("refs/heads/master", "refs/heads/*")],
)
def test_invalid_patterns(source, destination):
    with pytest.raises(ValueError):
        RefPattern(source, destination)
