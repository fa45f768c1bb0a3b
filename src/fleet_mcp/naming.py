"""Session naming helpers shared by discovery and the orchestrator."""

from __future__ import annotations

import random

SESSION_PREFIX = "agent"
AGENT_WINDOW = "agent"
DEV_WINDOW = "fleet-dev"
RANDOM_AGENT = "random"

AGENT_NAMES: tuple[str, ...] = (
    "ada",
    "alan",
    "barbara",
    "bjarne",
    "dennis",
    "donald",
    "edsger",
    "frances",
    "grace",
    "guido",
    "hedy",
    "ken",
    "linus",
    "margaret",
    "niklaus",
    "radia",
    "rich",
    "shafi",
    "sophie",
    "tim",
    "tony",
    "vint",
    "whitfield",
    "yukihiro",
)


def get_random_agent_name(rng: random.Random | None = None) -> str:
    return (rng or random).choice(AGENT_NAMES)


def session_name(repo: str, git_hash: str, agent_name: str) -> str:
    return f"{SESSION_PREFIX}-{repo}-{git_hash}-{agent_name}"


def branch_name(agent_name: str, repo: str, git_hash: str, timestamp: int) -> str:
    return f"{agent_name}-{repo}-{git_hash}-{timestamp}"


def is_hash_like(token: str) -> bool:
    """Return True for tokens that look like an abbreviated commit hash.

    At least six ASCII alphanumerics with one letter and one digit.
    """

    if len(token) < 6 or not token.isascii() or not token.isalnum():
        return False
    has_digit = any(char.isdigit() for char in token)
    has_letter = any(char.isalpha() for char in token)
    return has_digit and has_letter


def extract_agent_name(session: str) -> str:
    """Return the agent component of ``agent-<project>-<hash>-<name...>``.

    The hash is located by scanning backwards so that both project and agent
    names may contain hyphens. Names that are not session shaped are returned
    unchanged.
    """

    parts = session.split("-")
    if len(parts) < 4 or parts[0] != SESSION_PREFIX:
        return session

    for index in range(len(parts) - 2, 1, -1):
        if is_hash_like(parts[index]):
            return "-".join(parts[index + 1 :])
    return "-".join(parts[3:])
