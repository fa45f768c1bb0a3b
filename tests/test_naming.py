from __future__ import annotations

import random

import pytest

from fleet_mcp.naming import (
    AGENT_NAMES,
    branch_name,
    extract_agent_name,
    get_random_agent_name,
    is_hash_like,
    session_name,
)


@pytest.mark.parametrize(
    ("session", "expected"),
    [
        ("agent-proj-abc123-claude", "claude"),
        ("agent-proj-abc123-claude-v2", "claude-v2"),
        ("agent-my-cool-proj-9f8e7d6-codex", "codex"),
        ("agent-proj-nohash-gemini", "gemini"),
        ("not-agent-format", "not-agent-format"),
        ("agent-too-short", "agent-too-short"),
    ],
)
def test_extract_agent_name(session: str, expected: str) -> None:
    assert extract_agent_name(session) == expected


@pytest.mark.parametrize(
    ("token", "expected"),
    [
        ("abc123", True),
        ("9f8e7d6", True),
        ("abcdef", False),
        ("123456", False),
        ("ab12", False),
        ("abc-12", False),
    ],
)
def test_is_hash_like(token: str, expected: bool) -> None:
    assert is_hash_like(token) is expected


def test_session_and_branch_names() -> None:
    assert session_name("fleet", "abc1234", "claude") == "agent-fleet-abc1234-claude"
    assert branch_name("claude", "fleet", "abc1234", 1700000000) == "claude-fleet-abc1234-1700000000"


def test_random_agent_name_is_deterministic_with_seeded_rng() -> None:
    first = get_random_agent_name(random.Random(7))
    second = get_random_agent_name(random.Random(7))

    assert first == second
    assert first in AGENT_NAMES
