"""Git operations used by the orchestrator, monitor and facade."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol

from .proxy import CommandProxy, ProxyError

logger = logging.getLogger(__name__)

PathLike = Path | str


class VersionControl(Protocol):
    """Git surface needed to provision and observe agent worktrees."""

    async def short_hash(self, cwd: PathLike | None = None) -> str:
        ...

    async def remote_url(self, cwd: PathLike | None = None) -> str:
        ...

    async def default_branch(self, cwd: PathLike | None = None) -> str:
        ...

    async def add_worktree(self, branch: str, path: PathLike, cwd: PathLike | None = None) -> None:
        ...

    async def remove_worktree(self, path: PathLike, cwd: PathLike | None = None) -> None:
        ...

    async def delete_branch(self, branch: str, cwd: PathLike | None = None) -> None:
        ...

    async def staged_shortstat(self, worktree: PathLike) -> str:
        ...

    async def log_info(self, worktree: PathLike) -> tuple[int, datetime | None]:
        ...

    async def current_branch(self, cwd: PathLike | None = None) -> str:
        ...

    async def commit_all(self, worktree: PathLike, message: str) -> bool:
        ...

    async def branch_exists(self, branch: str, cwd: PathLike | None = None) -> bool:
        ...

    async def commits_ahead(self, base: str, branch: str, cwd: PathLike | None = None) -> int:
        ...

    async def rebase(self, branch: str, cwd: PathLike | None = None) -> None:
        ...


def repo_name_from_url(remote_url: str) -> str:
    """``git@host:org/fleet.git`` and ``https://host/org/fleet`` both give ``fleet``."""

    base = remote_url.strip().rstrip("/").replace(":", "/").rsplit("/", 1)[-1]
    return base[: -len(".git")] if base.endswith(".git") else base


class GitClient:
    """Run git through the command proxy."""

    def __init__(self, proxy: CommandProxy, *, binary: str = "git") -> None:
        self._proxy = proxy
        self._binary = binary

    async def _git(self, *args: str, cwd: PathLike | None = None) -> str:
        return await self._proxy.execute(self._binary, *args, cwd=cwd)

    async def short_hash(self, cwd: PathLike | None = None) -> str:
        return (await self._git("rev-parse", "--short", "HEAD", cwd=cwd)).strip()

    async def remote_url(self, cwd: PathLike | None = None) -> str:
        return (await self._git("remote", "get-url", "origin", cwd=cwd)).strip()

    async def default_branch(self, cwd: PathLike | None = None) -> str:
        try:
            ref = (await self._git("symbolic-ref", "refs/remotes/origin/HEAD", cwd=cwd)).strip()
        except ProxyError:
            return "main"
        return ref.rsplit("/", 1)[-1] or "main"

    async def current_branch(self, cwd: PathLike | None = None) -> str:
        return (await self._git("branch", "--show-current", cwd=cwd)).strip()

    async def add_worktree(self, branch: str, path: PathLike, cwd: PathLike | None = None) -> None:
        await self._git("worktree", "add", "-b", branch, str(path), cwd=cwd)

    async def remove_worktree(self, path: PathLike, cwd: PathLike | None = None) -> None:
        await self._git("worktree", "remove", "--force", str(path), cwd=cwd)

    async def delete_branch(self, branch: str, cwd: PathLike | None = None) -> None:
        await self._git("branch", "-D", branch, cwd=cwd)

    async def staged_shortstat(self, worktree: PathLike) -> str:
        """Shortstat of all worktree changes, untracked files included.

        The index is reset afterwards.
        """

        await self._git("add", "-A", ".", cwd=worktree)
        try:
            return await self._git("diff", "--cached", "--shortstat", "HEAD", cwd=worktree)
        finally:
            await self._git("reset", "-q", "HEAD", cwd=worktree)

    async def log_info(self, worktree: PathLike) -> tuple[int, datetime | None]:
        output = await self._git("--no-pager", "log", "--since=24 hours ago", "--oneline", cwd=worktree)
        commits = len([line for line in output.strip().split("\n") if line])
        if commits == 0:
            return 0, None

        raw = (await self._git("--no-pager", "log", "-1", "--format=%ct", cwd=worktree)).strip()
        try:
            return commits, datetime.fromtimestamp(int(raw), tz=timezone.utc)
        except ValueError:
            return commits, None

    async def commit_all(self, worktree: PathLike, message: str) -> bool:
        await self._git("add", ".", cwd=worktree)
        try:
            await self._git("commit", "-am", message, cwd=worktree)
        except ProxyError as exc:
            logger.warning("Nothing to commit in worktree", extra={"worktree": str(worktree), "error": str(exc)})
            return False
        return True

    async def branch_exists(self, branch: str, cwd: PathLike | None = None) -> bool:
        try:
            await self._git("show-ref", "--verify", "--quiet", f"refs/heads/{branch}", cwd=cwd)
        except ProxyError:
            return False
        return True

    async def commits_ahead(self, base: str, branch: str, cwd: PathLike | None = None) -> int:
        merge_base = (await self._git("merge-base", base, branch, cwd=cwd)).strip()
        count = (await self._git("rev-list", "--count", f"{merge_base}..{branch}", cwd=cwd)).strip()
        return int(count or 0)

    async def rebase(self, branch: str, cwd: PathLike | None = None) -> None:
        await self._git("rebase", branch, cwd=cwd)


__all__ = ["GitClient", "VersionControl", "repo_name_from_url"]
