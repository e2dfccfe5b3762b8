"""Build strategy resolution.

Each framework owns an ordered row of candidate build invocations in
``STRATEGY_TABLE``. Resolution walks the row in order and the first usable
candidate wins:

1. A ``package.json`` script named for the target platform. Its presence
   already proves intent, so it is taken without probing.
2. The framework's own CLI.
3. A secondary toolchain CLI (uni-app only).
4. The vendor IDE CLI (uni-app only).

CLI candidates are confirmed with a ``--version`` probe run under the
*quick* retry policy. When nothing is usable, resolution fails with
``BuildToolNotFound`` listing every candidate that was tried.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from ..config import BuildMode, normalize_mode
from ..errors import build_tool_not_found
from ..retry import QUICK, RetryExecutor, RetryPolicy
from ..utils import CommandError, Logger, resolve_binary, run_checked
from .detector import FrameworkKind

# platform -> per-framework build target
PLATFORM_TARGETS: dict[str, dict[FrameworkKind, str]] = {
    "weapp": {FrameworkKind.TARO: "weapp", FrameworkKind.UNI_APP: "mp-weixin"},
    "alipay": {FrameworkKind.TARO: "alipay", FrameworkKind.UNI_APP: "mp-alipay"},
    "tt": {FrameworkKind.TARO: "tt", FrameworkKind.UNI_APP: "mp-toutiao"},
    "bytedance": {FrameworkKind.TARO: "tt", FrameworkKind.UNI_APP: "mp-toutiao"},
    "swan": {FrameworkKind.TARO: "swan", FrameworkKind.UNI_APP: "mp-baidu"},
    "qq": {FrameworkKind.TARO: "qq", FrameworkKind.UNI_APP: "mp-qq"},
    "jd": {FrameworkKind.TARO: "jd", FrameworkKind.UNI_APP: "mp-jd"},
}


def platform_target(platform: str, framework: FrameworkKind) -> str:
    """Name the framework uses for *platform* (unknown platforms pass through)."""
    return PLATFORM_TARGETS.get(platform, {}).get(framework, platform)


def script_names(platform: str, framework: FrameworkKind) -> list[str]:
    """Conventional script names, the framework's own spelling first."""
    names = [f"build:{platform_target(platform, framework)}"]
    for other in (FrameworkKind.TARO, FrameworkKind.UNI_APP):
        name = f"build:{platform_target(platform, other)}"
        if name not in names:
            names.append(name)
    return names


def detect_package_manager(project_dir: str | Path) -> str:
    root = Path(project_dir)
    if (root / "pnpm-lock.yaml").exists():
        return "pnpm"
    if (root / "yarn.lock").exists():
        return "yarn"
    return "npm"


class StrategyKind(str, Enum):
    SCRIPT = "script"
    FRAMEWORK_CLI = "framework-cli"
    SECONDARY_CLI = "secondary-cli"
    VENDOR_CLI = "vendor-cli"


@dataclass(frozen=True)
class BuildStrategy:
    """A concrete, ready-to-execute build invocation."""

    command: str
    args: tuple[str, ...]
    description: str
    kind: StrategyKind = StrategyKind.SCRIPT
    env: Mapping[str, str] = field(default_factory=dict)

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]


@dataclass(frozen=True)
class Candidate:
    """One row entry of the strategy table.

    ``args`` and ``env`` values may contain ``{target}`` and ``{mode}``
    placeholders. Script candidates have no ``binary``.
    """

    kind: StrategyKind
    binary: str | None = None
    args: tuple[str, ...] = ()
    env: Mapping[str, str] = field(default_factory=dict)

    def to_strategy(self, command: str, target: str, mode: BuildMode) -> BuildStrategy:
        values = {"target": target, "mode": mode.value}
        args = tuple(a.format(**values) for a in self.args)
        env = {"NODE_ENV": mode.value}
        env.update({k: v.format(**values) for k, v in self.env.items()})
        label = " ".join([self.binary or command, *args])
        return BuildStrategy(
            command=command,
            args=args,
            description=f"{self.kind.value}: {label}",
            kind=self.kind,
            env=env,
        )


STRATEGY_TABLE: dict[FrameworkKind, tuple[Candidate, ...]] = {
    FrameworkKind.TARO: (
        Candidate(StrategyKind.SCRIPT),
        Candidate(
            StrategyKind.FRAMEWORK_CLI,
            binary="taro",
            args=("build", "--type", "{target}", "--mode", "{mode}"),
        ),
    ),
    FrameworkKind.UNI_APP: (
        Candidate(StrategyKind.SCRIPT),
        Candidate(
            StrategyKind.FRAMEWORK_CLI,
            binary="uni",
            args=("build", "--platform", "{target}", "--mode", "{mode}"),
        ),
        Candidate(
            StrategyKind.SECONDARY_CLI,
            binary="vue-cli-service",
            args=("uni-build", "--mode", "{mode}"),
            env={"UNI_PLATFORM": "{target}"},
        ),
        Candidate(
            StrategyKind.VENDOR_CLI,
            binary="cli",
            args=("build", "--platform", "{target}"),
        ),
    ),
}


class BuildStrategyResolver:
    """Chooses exactly one build invocation for a project.

    Args:
        platform: Target platform name from the config (``weapp`` by default).
        executor: Retry executor used for capability probes.
        logger: Diagnostic sink.
        probe_policy: Retry policy for probes (*quick* preset).
        probe_timeout: Seconds a single ``--version`` probe may take.
    """

    def __init__(
        self,
        platform: str = "weapp",
        executor: RetryExecutor | None = None,
        logger: Logger | None = None,
        probe_policy: RetryPolicy = QUICK,
        probe_timeout: float = 10.0,
    ) -> None:
        self.platform = platform
        self.logger = logger or Logger()
        self.executor = executor or RetryExecutor(logger=self.logger)
        self.probe_policy = probe_policy
        self.probe_timeout = probe_timeout

    async def resolve(
        self,
        project_dir: str | Path,
        manifest: Mapping[str, Any],
        mode: str | BuildMode | None,
        framework: FrameworkKind,
    ) -> BuildStrategy:
        """Return the first usable strategy for *framework*.

        Raises:
            NexusError: ``BuildToolNotFound`` when no candidate is usable.
        """
        root = Path(project_dir)
        build_mode = normalize_mode(mode)
        target = platform_target(self.platform, framework)
        tried: list[str] = []

        for candidate in STRATEGY_TABLE.get(framework, ()):
            if candidate.kind is StrategyKind.SCRIPT:
                strategy = self._script_strategy(root, manifest, framework, build_mode)
                if strategy is not None:
                    self.logger.debug(f"[strategy] using {strategy.description}")
                    return strategy
                names = " | ".join(script_names(self.platform, framework))
                tried.append(f"{StrategyKind.SCRIPT.value}: {names}")
                continue

            if candidate.binary is None:
                self.logger.debug(f"[strategy] {candidate.kind.value} candidate has no executable, skipped")
                continue
            command = resolve_binary(candidate.binary, root)
            strategy = candidate.to_strategy(command, target, build_mode)
            tried.append(strategy.description)
            if await self._probe(command, root):
                self.logger.debug(f"[strategy] using {strategy.description}")
                return strategy
            self.logger.debug(f"[strategy] {candidate.binary} unavailable, trying next candidate")

        raise build_tool_not_found(framework.value, tried)

    def _script_strategy(
        self,
        root: Path,
        manifest: Mapping[str, Any],
        framework: FrameworkKind,
        mode: BuildMode,
    ) -> BuildStrategy | None:
        scripts = manifest.get("scripts")
        if not isinstance(scripts, dict):
            return None
        for name in script_names(self.platform, framework):
            if scripts.get(name):
                pm = detect_package_manager(root)
                return BuildStrategy(
                    command=pm,
                    args=("run", name),
                    description=f"{StrategyKind.SCRIPT.value}: {pm} run {name}",
                    kind=StrategyKind.SCRIPT,
                    env={"NODE_ENV": mode.value},
                )
        return None

    async def _probe(self, command: str, cwd: Path) -> bool:
        name = Path(command).name
        try:
            version = await self.executor.execute(
                lambda: run_checked([command, "--version"], cwd=cwd, timeout=self.probe_timeout),
                self.probe_policy,
                f"probe {name}",
            )
        except (CommandError, asyncio.TimeoutError, OSError):
            return False
        self.logger.debug(f"[strategy] {name} available: {version.splitlines()[0] if version else '?'}")
        return True
