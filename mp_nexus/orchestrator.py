"""mp-nexus orchestrator and ``nexus`` CLI.

Drives one ``preview`` or ``deploy`` run through a fixed sequence of states:

Init -> ConfigLoaded -> PathsResolved -> FrameworkDetected -> Built
     -> OutputResolved -> PlatformOperationComplete -> Reported

Any failure jumps straight to Reported with a classified failure, so
``Orchestrator.run`` always returns a ``RunReport`` and never raises.

Usage::

    nexus preview --mode dev --desc "fix login"
    nexus deploy --ver 1.2.0 --json
    nexus deploy --dry-run --verbose
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from enum import Enum
from pathlib import Path
from typing import Callable

from .config import CLIOptions, NexusConfig, ProjectContext, load_config, load_env_overlay
from .errors import ErrorClassifier, NexusError, config_invalid, file_not_found, invalid_app_id, invalid_private_key
from .framework.adapters import BuildOptions, FrameworkAdapter, create_adapters
from .framework.detector import FrameworkDetector, FrameworkKind
from .framework.output import OutputLocation, OutputSource
from .git_info import apply_git_defaults, get_git_info
from .notifier import NotifierError, NotifierMessage, WebhookNotifier
from .platform.weapp import (
    PREVIEW_CLASSIFIER,
    UPLOAD_CLASSIFIER,
    CIOptions,
    PlatformClient,
    create_platform_client,
)
from .reporter import RunReport, print_human, print_json
from .retry import NETWORK, RetryExecutor, RetryPolicy, default_retry_predicate
from .utils import Logger

OPERATIONS = ("preview", "deploy")
DRY_RUN_QRCODE = "dry-run://qrcode"
DRY_RUN_VERSION = "dry-run"

_PROJECT_TYPES: dict[str, FrameworkKind] = {
    "taro": FrameworkKind.TARO,
    "uni-app": FrameworkKind.UNI_APP,
    "uniapp": FrameworkKind.UNI_APP,
    "uni": FrameworkKind.UNI_APP,
}


class RunState(str, Enum):
    INIT = "Init"
    CONFIG_LOADED = "ConfigLoaded"
    PATHS_RESOLVED = "PathsResolved"
    FRAMEWORK_DETECTED = "FrameworkDetected"
    BUILT = "Built"
    OUTPUT_RESOLVED = "OutputResolved"
    PLATFORM_OPERATION_COMPLETE = "PlatformOperationComplete"
    REPORTED = "Reported"


def _platform_retryable(failure: BaseException) -> bool:
    # Failures already classified (missing key file, ...) are final.
    if isinstance(failure, NexusError):
        return False
    return default_retry_predicate(failure)


class Orchestrator:
    """Runs the preview/deploy state machine for one invocation.

    Collaborators are injected so tests can replace the platform client,
    the adapters or the sleep used between retries.

    Args:
        logger: Shared logger; components receive child loggers.
        executor: Retry executor for the platform call (and adapters).
        detector: Framework detector.
        platform_factory: ``(platform, logger) -> PlatformClient``.
        adapter_factory: ``(platform, logger, executor) -> {kind: adapter}``.
        notifier: Webhook notifier used when ``notify.webhook`` is configured.
        network_policy: Retry policy for the platform call.
    """

    def __init__(
        self,
        logger: Logger | None = None,
        executor: RetryExecutor | None = None,
        detector: FrameworkDetector | None = None,
        platform_factory: Callable[[str, Logger], PlatformClient] | None = None,
        adapter_factory: Callable[..., dict[FrameworkKind, FrameworkAdapter]] | None = None,
        notifier: WebhookNotifier | None = None,
        network_policy: RetryPolicy = NETWORK,
    ) -> None:
        self.logger = logger or Logger()
        self.executor = executor or RetryExecutor(logger=self.logger)
        self.detector = detector or FrameworkDetector(logger=self.logger)
        self.platform_factory = platform_factory or create_platform_client
        self.adapter_factory = adapter_factory or create_adapters
        self.notifier = notifier or WebhookNotifier(logger=self.logger)
        self.network_policy = network_policy.with_predicate(_platform_retryable)
        self.state = RunState.INIT
        self.history: list[RunState] = [RunState.INIT]

    def _transition(self, state: RunState) -> None:
        self.logger.debug(f"[orchestrator] {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        operation: str,
        options: CLIOptions,
        context: ProjectContext,
    ) -> RunReport:
        """Execute *operation* (``preview`` or ``deploy``) and report the outcome."""
        self.state = RunState.INIT
        self.history = [RunState.INIT]
        report = RunReport(operation=operation, dry_run=options.dry_run)
        config: NexusConfig | None = None

        try:
            if operation not in OPERATIONS:
                raise config_invalid("operation", operation)
            config = await load_config(options, context)
            self._transition(RunState.CONFIG_LOADED)
            await self._execute(operation, options, context, config, report)
            report.success = True
        except Exception as exc:
            report.failure = ErrorClassifier().classify(exc)
            self.logger.error(report.failure.message)

        self._transition(RunState.REPORTED)
        if config is not None and config.notify and config.notify.webhook and not report.dry_run:
            await self._notify(report, config)
        return report

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _execute(
        self,
        operation: str,
        options: CLIOptions,
        context: ProjectContext,
        config: NexusConfig,
        report: RunReport,
    ) -> None:
        report.platform = config.platform

        project_root = (context.cwd / config.project_path).resolve()
        if not project_root.is_dir():
            raise file_not_found(str(project_root))
        report.project_path = str(project_root)
        self._transition(RunState.PATHS_RESOLVED)

        framework = self._framework(config, project_root)
        report.framework = framework.value
        self._transition(RunState.FRAMEWORK_DETECTED)

        adapter = None
        if framework is not FrameworkKind.UNKNOWN:
            adapter = self.adapter_factory(
                platform=config.platform, logger=self.logger, executor=self.executor
            )[framework]
        build_options = BuildOptions(
            cwd=project_root,
            mode=context.mode,
            env=context.env,
            timeout=config.build_timeout,
            logger=self.logger,
        )

        version = config.ci_options.get("version")
        desc = config.ci_options.get("desc")

        if options.dry_run:
            output = self._output(adapter, build_options, config, project_root)
            report.output_path = str(output.path)
            report.output_source = output.source.value
            report.description = desc
            if operation == "preview":
                report.qrcode_image_path = DRY_RUN_QRCODE
                report.version = version
            else:
                report.version = version or DRY_RUN_VERSION
            self.logger.info(
                f"[dry-run] {operation} plan",
                {"projectRoot": str(project_root), "outputPath": str(output.path), "platform": config.platform},
            )
            return

        if not config.app_id:
            raise invalid_app_id("(not set)")
        key_path = (context.cwd / config.private_key_path).resolve()
        if not key_path.is_file():
            raise invalid_private_key(str(key_path))

        version, desc = apply_git_defaults(version, desc, await get_git_info(project_root, self.logger))
        report.version = version
        report.description = desc

        if adapter is not None:
            await adapter.build(build_options)
        self._transition(RunState.BUILT)

        output = self._output(adapter, build_options, config, project_root)
        report.output_path = str(output.path)
        report.output_source = output.source.value
        self._transition(RunState.OUTPUT_RESOLVED)

        client = self.platform_factory(config.platform, self.logger)
        ci_options = {k: v for k, v in config.ci_options.items() if k not in ("version", "desc")}
        ci = CIOptions(
            project_path=output.path,
            app_id=config.app_id,
            private_key_path=key_path,
            version=version,
            desc=desc,
            ci_options=ci_options,
            qrcode_output_path=project_root / "preview-qrcode.png",
            project_root=project_root,
        )

        if operation == "preview":
            try:
                result = await self.executor.execute(
                    lambda: client.preview(ci), self.network_policy, f"{client.name} preview"
                )
            except Exception as exc:
                raise PREVIEW_CLASSIFIER.to_error(exc) from exc
            report.qrcode_image_path = result.qrcode_image_path
            report.qrcode_terminal = result.qrcode_terminal
        else:
            try:
                result = await self.executor.execute(
                    lambda: client.upload(ci), self.network_policy, f"{client.name} upload"
                )
            except Exception as exc:
                raise UPLOAD_CLASSIFIER.to_error(exc) from exc
            report.version = result.version
        self._transition(RunState.PLATFORM_OPERATION_COMPLETE)

    def _framework(self, config: NexusConfig, project_root: Path) -> FrameworkKind:
        if config.project_type:
            kind = _PROJECT_TYPES.get(config.project_type.strip().lower())
            if kind is None:
                raise config_invalid("projectType", config.project_type)
            self.logger.info(f"[framework] {kind.value} (from projectType)")
            return kind
        kind = self.detector.detect(project_root)
        if kind is FrameworkKind.UNKNOWN:
            self.logger.warn("[framework] No supported framework detected, using configured outputDir")
        else:
            self.logger.info(f"[framework] Detected {kind.value} project")
        return kind

    @staticmethod
    def _output(
        adapter: FrameworkAdapter | None,
        build_options: BuildOptions,
        config: NexusConfig,
        project_root: Path,
    ) -> OutputLocation:
        if adapter is not None:
            return adapter.get_output_path(build_options)
        return OutputLocation(
            path=(project_root / config.output_dir).resolve(),
            source=OutputSource.EXPLICIT_CONFIG,
        )

    async def _notify(self, report: RunReport, config: NexusConfig) -> None:
        if config.notify is None:
            return
        status = "succeeded" if report.success else "failed"
        lines = [
            f"{label}: {value}"
            for label, value in (
                ("Framework", report.framework),
                ("Platform", report.platform),
                ("Version", report.version),
                ("Description", report.description),
            )
            if value
        ]
        if report.failure is not None:
            lines.append(f"Error: {report.failure.message}")
        message = NotifierMessage(
            title=f"mp-nexus {report.operation} {status}",
            text="\n".join(lines),
            level="success" if report.success else "error",
            meta=report.to_structured_output(),
        )
        try:
            await self.notifier.notify(message, config.notify)
        except NotifierError as exc:
            self.logger.warn(f"[notify] {exc}")


# ---------------------------------------------------------------------------
# Convenience entry points
# ---------------------------------------------------------------------------


def _context(options: CLIOptions, cwd: str | Path | None = None) -> ProjectContext:
    root = Path(cwd or Path.cwd())
    return ProjectContext.create(root, options.mode, load_env_overlay(root, options.mode))


async def run_preview(
    options: CLIOptions,
    context: ProjectContext | None = None,
    logger: Logger | None = None,
) -> RunReport:
    logger = logger or Logger(verbose=options.verbose)
    return await Orchestrator(logger=logger).run("preview", options, context or _context(options))


async def run_deploy(
    options: CLIOptions,
    context: ProjectContext | None = None,
    logger: Logger | None = None,
) -> RunReport:
    logger = logger or Logger(verbose=options.verbose)
    return await Orchestrator(logger=logger).run("deploy", options, context or _context(options))


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nexus",
        description="mp-nexus -- one-command preview and deploy for mini-program projects",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  nexus preview --mode dev\n"
            "  nexus deploy --ver 1.2.0 --desc 'release notes'\n"
            "  nexus deploy --dry-run --json\n"
        ),
    )
    subparsers = parser.add_subparsers(dest="command", metavar="command")
    subparsers.required = True

    helps = {
        "preview": "Build and generate a preview QR code",
        "deploy": "Build and upload a new version",
    }
    for name in OPERATIONS:
        sub = subparsers.add_parser(name, help=helps[name], description=helps[name])
        sub.add_argument("--mode", default=None, help="Build mode; also selects .env.<mode>")
        sub.add_argument("--desc", default=None, help="Version description")
        sub.add_argument("--ver", default=None, help="Version number (x.y.z)")
        sub.add_argument("--config", default=None, help="Path to the mp-nexus config file")
        sub.add_argument("--dry-run", action="store_true", help="Show the plan without building or calling the platform")
        sub.add_argument("--verbose", action="store_true", help="Show debug logs and error details")
        sub.add_argument("--json", dest="json_output", action="store_true", help="Print a structured JSON result on stdout")
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for ``nexus``."""
    args = build_parser().parse_args(argv)

    options = CLIOptions(
        mode=args.mode,
        desc=args.desc,
        ver=args.ver,
        config=args.config,
        dry_run=args.dry_run,
        verbose=args.verbose,
        json_output=args.json_output,
    )
    logger = Logger(verbose=options.verbose)
    context = _context(options)

    report = asyncio.run(Orchestrator(logger=logger).run(args.command, options, context))

    if options.json_output:
        print_json(report)
    else:
        print_human(report, logger, verbose=options.verbose)
    sys.exit(report.exit_code)


if __name__ == "__main__":
    main()
