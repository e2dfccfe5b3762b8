"""Framework build adapters.

A ``FrameworkAdapter`` knows how to detect, build and locate the output of
one framework. Both Taro and uni-app share the same machinery and differ
only in their ``FrameworkKind``: the strategy table, tool-config table and
output conventions are keyed by it.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from ..config import BuildMode, normalize_mode
from ..errors import ErrorClassifier, ErrorKind, NexusError, build_timeout
from ..retry import BUILD, RetryExecutor, RetryPolicy
from ..utils import CommandError, Logger, run_checked
from .detector import FrameworkDetector, FrameworkKind, read_manifest
from .output import OutputLocation, OutputPathResolver
from .strategy import BuildStrategy, BuildStrategyResolver

SKIP_BUILD_ENV = "NEXUS_SKIP_BUILD"


@dataclass
class BuildOptions:
    """Parameters passed to ``FrameworkAdapter.build`` and ``get_output_path``."""

    cwd: Path
    mode: BuildMode = BuildMode.PRODUCTION
    env: Mapping[str, str] = field(default_factory=dict)
    timeout: float | None = None
    logger: Logger | None = None


class FrameworkAdapter:
    """Detects, builds and locates the output of one framework's projects."""

    def __init__(
        self,
        kind: FrameworkKind,
        platform: str = "weapp",
        logger: Logger | None = None,
        executor: RetryExecutor | None = None,
        build_policy: RetryPolicy = BUILD,
        detector: FrameworkDetector | None = None,
        resolver: BuildStrategyResolver | None = None,
        output_resolver: OutputPathResolver | None = None,
    ) -> None:
        self.kind = kind
        self.platform = platform
        self.logger = (logger or Logger()).child(component=kind.value)
        self.executor = executor or RetryExecutor(logger=self.logger)
        self.build_policy = build_policy
        self.detector = detector or FrameworkDetector(logger=self.logger)
        self.resolver = resolver or BuildStrategyResolver(
            platform=platform, executor=self.executor, logger=self.logger
        )
        self.output_resolver = output_resolver or OutputPathResolver(
            platform=platform, logger=self.logger
        )
        self.classifier = ErrorClassifier()

    @property
    def name(self) -> str:
        return self.kind.value

    def detect(self, cwd: str | Path) -> bool:
        return self.detector.detect(cwd) is self.kind

    async def build(self, options: BuildOptions) -> BuildStrategy | None:
        """Resolve a strategy and run it under the build retry policy.

        Returns the strategy that ran, or ``None`` when the build was skipped.

        Raises:
            NexusError: ``BuildToolNotFound``, ``BuildTimeout`` or the
                classification of the build tool's failure.
        """
        logger = options.logger or self.logger
        if options.env.get(SKIP_BUILD_ENV) == "1":
            logger.info(f"Skipping build ({SKIP_BUILD_ENV}=1)")
            return None

        mode = normalize_mode(options.mode)
        manifest = read_manifest(options.cwd)
        strategy = await self.resolver.resolve(options.cwd, manifest, mode, self.kind)

        logger.info(f"Building with {strategy.description}")
        env = {**options.env, **strategy.env}
        started = time.monotonic()
        try:
            await self.executor.execute(
                lambda: run_checked(strategy.argv, cwd=options.cwd, timeout=options.timeout, env=env),
                self.build_policy,
                f"{self.name} build",
            )
        except asyncio.TimeoutError as exc:
            raise build_timeout(self.name, options.timeout or 0) from exc
        except (CommandError, OSError) as exc:
            raise self._build_error(exc, strategy) from exc

        logger.info(f"Build finished in {time.monotonic() - started:.1f}s")
        return strategy

    def get_output_path(self, options: BuildOptions) -> OutputLocation:
        return self.output_resolver.resolve(options.cwd, options.mode, self.kind)

    def _build_error(self, exc: BaseException, strategy: BuildStrategy) -> NexusError:
        classified = self.classifier.classify(exc)
        kind = classified.kind
        if kind is ErrorKind.UNKNOWN:
            kind = ErrorKind.BUILD_FAILED
        details = {**classified.details, "framework": self.name, "strategy": strategy.description}
        stderr = getattr(exc, "stderr", "")
        if stderr:
            details["stderr"] = "\n".join(stderr.splitlines()[-40:])
        suggestion = classified.suggestion
        if kind is ErrorKind.BUILD_FAILED and classified.kind is ErrorKind.UNKNOWN:
            suggestion = "Check build dependencies and project configuration"
        return NexusError(kind, f"{self.name} build failed: {classified.message}", suggestion, details)


def create_adapters(
    platform: str = "weapp",
    logger: Logger | None = None,
    executor: RetryExecutor | None = None,
) -> dict[FrameworkKind, FrameworkAdapter]:
    """One adapter per supported framework, in detection order."""
    return {
        kind: FrameworkAdapter(kind, platform=platform, logger=logger, executor=executor)
        for kind in (FrameworkKind.TARO, FrameworkKind.UNI_APP)
    }
