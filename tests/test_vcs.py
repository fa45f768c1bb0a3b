from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from fleet_mcp.proxy import CommandFailedError, FakeCommandProxy
from fleet_mcp.vcs import GitClient, repo_name_from_url


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("git@github.com:org/fleet.git", "fleet"),
        ("https://github.com/org/fleet", "fleet"),
        ("https://github.com/org/fleet.git/", "fleet"),
        ("/srv/git/fleet.git\n", "fleet"),
    ],
)
def test_repo_name_from_url(url: str, expected: str) -> None:
    assert repo_name_from_url(url) == expected


def test_basic_queries() -> None:
    proxy = FakeCommandProxy()
    proxy.add_response(("git", "rev-parse"), "abc1234\n")
    proxy.add_response(("git", "remote", "get-url"), "git@github.com:org/fleet.git\n")
    proxy.add_response(("git", "symbolic-ref"), "refs/remotes/origin/develop\n")
    git = GitClient(proxy)

    async def scenario():
        return (
            await git.short_hash("/repo"),
            await git.remote_url("/repo"),
            await git.default_branch("/repo"),
        )

    assert asyncio.run(scenario()) == ("abc1234", "git@github.com:org/fleet.git", "develop")
    assert proxy.cwds == ["/repo", "/repo", "/repo"]


def test_default_branch_falls_back_to_main() -> None:
    proxy = FakeCommandProxy()
    proxy.add_response(("git", "symbolic-ref"), returncode=128, stderr="not a symbolic ref")

    assert asyncio.run(GitClient(proxy).default_branch()) == "main"


def test_staged_shortstat_always_resets_index() -> None:
    proxy = FakeCommandProxy()
    proxy.add_response(("git", "diff"), returncode=128, stderr="bad revision 'HEAD'")
    git = GitClient(proxy)

    with pytest.raises(CommandFailedError):
        asyncio.run(git.staged_shortstat("/wt"))

    assert [argv[1] for argv in proxy.invocations] == ["add", "diff", "reset"]
    assert proxy.invocations[-1] == ("git", "reset", "-q", "HEAD")


def test_log_info_counts_commits_and_reads_last_timestamp() -> None:
    proxy = FakeCommandProxy()
    proxy.add_response(("git", "--no-pager", "log", "--since=24 hours ago"), "a1 one\nb2 two\n")
    proxy.add_response(("git", "--no-pager", "log", "-1"), "1700000000\n")

    commits, last = asyncio.run(GitClient(proxy).log_info("/wt"))

    assert commits == 2
    assert last == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)


def test_log_info_without_commits() -> None:
    proxy = FakeCommandProxy()

    assert asyncio.run(GitClient(proxy).log_info("/wt")) == (0, None)
    assert len(proxy.invocations) == 1


def test_worktree_and_branch_commands() -> None:
    proxy = FakeCommandProxy()
    proxy.add_response(("git", "commit"), returncode=1, stderr="nothing to commit")
    proxy.add_response(("git", "merge-base"), "deadbeef\n")
    proxy.add_response(("git", "rev-list"), "3\n")
    git = GitClient(proxy)

    async def scenario():
        await git.add_worktree("claude-fleet-abc1234-1", "/trees/claude", "/repo")
        await git.remove_worktree("/trees/claude", "/repo")
        await git.delete_branch("claude-fleet-abc1234-1", "/repo")
        committed = await git.commit_all("/trees/claude", "wip")
        ahead = await git.commits_ahead("main", "claude-fleet-abc1234-1", "/repo")
        exists = await git.branch_exists("claude-fleet-abc1234-1", "/repo")
        return committed, ahead, exists

    assert asyncio.run(scenario()) == (False, 3, True)
    assert ("git", "worktree", "add", "-b", "claude-fleet-abc1234-1", "/trees/claude") in proxy.invocations
    assert ("git", "worktree", "remove", "--force", "/trees/claude") in proxy.invocations
    assert ("git", "branch", "-D", "claude-fleet-abc1234-1") in proxy.invocations
    assert ("git", "rev-list", "--count", "deadbeef..claude-fleet-abc1234-1") in proxy.invocations
