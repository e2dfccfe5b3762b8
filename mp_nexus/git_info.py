"""Version and description defaults from project metadata.

When ``--ver`` / ``--desc`` (or their ``ciOptions`` counterparts) are not
given, the ``package.json`` version and the latest commit subject are used.
Both lookups are best-effort: a missing repository or manifest only leaves
the corresponding default unset.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

from .utils import CommandError, Logger, read_json_safe, run_command


@dataclass
class GitInfo:
    latest_commit_message: str | None = None
    package_version: str | None = None


async def latest_commit_message(cwd: Path, logger: Logger) -> str | None:
    try:
        returncode, stdout, stderr = await run_command(
            ["git", "log", "-1", "--pretty=%s"], cwd=cwd, timeout=10
        )
    except (CommandError, asyncio.TimeoutError, OSError) as exc:
        logger.debug("[git] Failed to get commit message", {"error": str(exc) or "timed out"})
        return None
    if returncode != 0:
        logger.debug("[git] Not a git repository", {"stderr": stderr})
        return None
    return stdout.strip() or None


async def get_git_info(cwd: str | Path, logger: Logger | None = None) -> GitInfo:
    """Collect the latest commit subject and the ``package.json`` version."""
    logger = logger or Logger()
    root = Path(cwd)
    info = GitInfo(latest_commit_message=await latest_commit_message(root, logger))
    if info.latest_commit_message:
        logger.debug(f"[git] Latest commit message: {info.latest_commit_message}")

    manifest = read_json_safe(root / "package.json") or {}
    version = manifest.get("version")
    if isinstance(version, str) and version:
        info.package_version = version
        logger.debug(f"[git] Package version: {version}")
    return info


def apply_git_defaults(
    version: str | None,
    desc: str | None,
    info: GitInfo,
) -> tuple[str | None, str | None]:
    """Fill unset ``version`` / ``desc`` from *info*; explicit values win."""
    return version or info.package_version, desc or info.latest_commit_message
