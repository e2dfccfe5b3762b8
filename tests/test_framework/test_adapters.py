"""Unit tests for FrameworkAdapter (mp_nexus.framework.adapters).

Tests cover:
- Build invocation (argv, cwd, merged environment, timeout)
- NEXUS_SKIP_BUILD short-circuit
- Build failures mapped to BuildFailed / classified kinds
- BuildTimeout and the build retry policy
- Detection, output path and create_adapters
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from mp_nexus.config import BuildMode
from mp_nexus.errors import ErrorKind, NexusError
from mp_nexus.framework.adapters import SKIP_BUILD_ENV, BuildOptions, FrameworkAdapter, create_adapters
from mp_nexus.framework.detector import FrameworkKind
from mp_nexus.framework.output import OutputSource
from mp_nexus.framework.strategy import StrategyKind
from mp_nexus.utils import CommandError

ADAPTER_RUN = "mp_nexus.framework.adapters.run_checked"
PROBE_RUN = "mp_nexus.framework.strategy.run_checked"


@pytest.fixture
def uni_adapter(logger, executor) -> FrameworkAdapter:
    return FrameworkAdapter(FrameworkKind.UNI_APP, logger=logger, executor=executor)


@pytest.fixture
def taro_adapter(logger, executor) -> FrameworkAdapter:
    return FrameworkAdapter(FrameworkKind.TARO, logger=logger, executor=executor)


def _failure(stderr: str, returncode: int = 1) -> CommandError:
    tail = stderr.splitlines()[-1] if stderr else ""
    return CommandError(
        f"'npm' exited with code {returncode}: {tail}",
        command="npm run build:mp-weixin",
        returncode=returncode,
        stderr=stderr,
    )


# ---------------------------------------------------------------------------
# Successful builds
# ---------------------------------------------------------------------------


class TestBuild:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_runs_script_strategy(self, uni_adapter, uni_project: Path):
        options = BuildOptions(cwd=uni_project, mode=BuildMode.TEST, env={"MP_APP_ID": "wx1"}, timeout=120)
        with patch(ADAPTER_RUN, new_callable=AsyncMock, return_value="") as mock_run:
            strategy = await uni_adapter.build(options)

        assert strategy is not None
        assert strategy.kind is StrategyKind.SCRIPT
        mock_run.assert_awaited_once()
        args, kwargs = mock_run.await_args
        assert args[0] == ["npm", "run", "build:mp-weixin"]
        assert kwargs["cwd"] == uni_project
        assert kwargs["timeout"] == 120
        assert kwargs["env"] == {"MP_APP_ID": "wx1", "NODE_ENV": "test"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_strategy_env_wins_over_overlay(self, uni_adapter, uni_project: Path):
        options = BuildOptions(cwd=uni_project, mode=BuildMode.PRODUCTION, env={"NODE_ENV": "development"})
        with patch(ADAPTER_RUN, new_callable=AsyncMock, return_value="") as mock_run:
            await uni_adapter.build(options)
        assert mock_run.await_args.kwargs["env"]["NODE_ENV"] == "production"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_logs_strategy(self, uni_adapter, uni_project: Path, log_stream):
        with patch(ADAPTER_RUN, new_callable=AsyncMock, return_value=""):
            await uni_adapter.build(BuildOptions(cwd=uni_project))
        output = log_stream.getvalue()
        assert "Building with script: npm run build:mp-weixin" in output
        assert "Build finished" in output

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_skip_build(self, uni_adapter, uni_project: Path):
        options = BuildOptions(cwd=uni_project, env={SKIP_BUILD_ENV: "1"})
        with patch(ADAPTER_RUN, new_callable=AsyncMock) as mock_run:
            result = await uni_adapter.build(options)
        assert result is None
        mock_run.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_skip_requires_exact_value(self, uni_adapter, uni_project: Path):
        options = BuildOptions(cwd=uni_project, env={SKIP_BUILD_ENV: "true"})
        with patch(ADAPTER_RUN, new_callable=AsyncMock, return_value="") as mock_run:
            result = await uni_adapter.build(options)
        assert result is not None
        mock_run.assert_awaited_once()


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestBuildFailures:
    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unclassified_failure_is_build_failed(self, uni_adapter, uni_project: Path, recording_sleep):
        stderr = "\n".join(f"line {i}" for i in range(100))
        with patch(ADAPTER_RUN, new_callable=AsyncMock, side_effect=_failure(stderr)) as mock_run:
            with pytest.raises(NexusError) as exc_info:
                await uni_adapter.build(BuildOptions(cwd=uni_project))

        err = exc_info.value
        assert err.kind is ErrorKind.BUILD_FAILED
        assert err.exit_code == 60
        assert str(err).startswith("uni-app build failed:")
        assert err.details["framework"] == "uni-app"
        assert err.details["strategy"] == "script: npm run build:mp-weixin"
        assert err.details["exitCode"] == 1
        assert err.details["stderr"].splitlines() == [f"line {i}" for i in range(60, 100)]
        # Non-retryable, so a single attempt.
        assert mock_run.await_count == 1
        recording_sleep.assert_not_awaited()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_syntax_error(self, uni_adapter, uni_project: Path):
        failure = _failure("SyntaxError: Unexpected token (12:4)")
        with patch(ADAPTER_RUN, new_callable=AsyncMock, side_effect=failure):
            with pytest.raises(NexusError) as exc_info:
                await uni_adapter.build(BuildOptions(cwd=uni_project))
        assert exc_info.value.kind is ErrorKind.BUILD_FAILED
        assert exc_info.value.details["rule"] == "syntax"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_syntax_error_behind_npm_trailer(self, uni_adapter, uni_project: Path):
        stderr = (
            "SyntaxError: /app/src/pages/index/index.vue: Unexpected token (3:4)\n"
            "npm ERR! code 1\n"
            "npm ERR! path /app\n"
            "npm ERR! command failed\n"
            "npm ERR! command sh -c uni build -p mp-weixin"
        )
        failure = CommandError(
            f"'npm' exited with code 1: {stderr}",
            command="npm run build:mp-weixin",
            returncode=1,
            stderr=stderr,
        )
        with patch(ADAPTER_RUN, new_callable=AsyncMock, side_effect=failure):
            with pytest.raises(NexusError) as exc_info:
                await uni_adapter.build(BuildOptions(cwd=uni_project))
        assert exc_info.value.details["rule"] == "syntax"
        assert exc_info.value.failure.suggestion == "Fix the syntax error reported in the build output"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_module(self, uni_adapter, uni_project: Path):
        failure = _failure("Error: Cannot find module '@dcloudio/vue-cli-plugin-uni'")
        with patch(ADAPTER_RUN, new_callable=AsyncMock, side_effect=failure):
            with pytest.raises(NexusError) as exc_info:
                await uni_adapter.build(BuildOptions(cwd=uni_project))
        assert exc_info.value.failure.suggestion.startswith("Install project dependencies")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_retryable_failure_gets_second_attempt(self, uni_adapter, uni_project: Path, recording_sleep):
        side_effect = [_failure("npm ERR! network ETIMEDOUT registry.npmjs.org"), ""]
        with patch(ADAPTER_RUN, new_callable=AsyncMock, side_effect=side_effect) as mock_run:
            strategy = await uni_adapter.build(BuildOptions(cwd=uni_project))
        assert strategy is not None
        assert mock_run.await_count == 2
        recording_sleep.assert_awaited_once_with(2.0)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_timeout(self, uni_adapter, uni_project: Path):
        options = BuildOptions(cwd=uni_project, timeout=30)
        with patch(ADAPTER_RUN, new_callable=AsyncMock, side_effect=asyncio.TimeoutError()) as mock_run:
            with pytest.raises(NexusError) as exc_info:
                await uni_adapter.build(options)
        assert exc_info.value.kind is ErrorKind.BUILD_TIMEOUT
        assert exc_info.value.exit_code == 62
        assert exc_info.value.details["timeout"] == 30
        assert mock_run.await_count == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_no_build_tool(self, taro_adapter, taro_project: Path):
        missing = CommandError("command not found: taro")
        with patch(PROBE_RUN, new_callable=AsyncMock, side_effect=missing), \
                patch(ADAPTER_RUN, new_callable=AsyncMock) as mock_run:
            with pytest.raises(NexusError) as exc_info:
                await taro_adapter.build(BuildOptions(cwd=taro_project))
        assert exc_info.value.kind is ErrorKind.BUILD_TOOL_NOT_FOUND
        mock_run.assert_not_awaited()


# ---------------------------------------------------------------------------
# Detection, output and factory
# ---------------------------------------------------------------------------


class TestAdapterSurface:
    @pytest.mark.unit
    def test_detect(self, taro_adapter, uni_adapter, uni_project: Path):
        assert uni_adapter.detect(uni_project) is True
        assert taro_adapter.detect(uni_project) is False

    @pytest.mark.unit
    def test_output_path_follows_mode(self, uni_adapter, uni_project: Path):
        dev = uni_adapter.get_output_path(BuildOptions(cwd=uni_project, mode=BuildMode.DEVELOPMENT))
        prod = uni_adapter.get_output_path(BuildOptions(cwd=uni_project))
        assert dev.path == (uni_project / "dist" / "dev" / "mp-weixin").resolve()
        assert prod.path == (uni_project / "dist" / "build" / "mp-weixin").resolve()
        assert prod.source is OutputSource.CONVENTION_FALLBACK

    @pytest.mark.unit
    def test_create_adapters(self, logger, executor):
        adapters = create_adapters(platform="weapp", logger=logger, executor=executor)
        assert list(adapters) == [FrameworkKind.TARO, FrameworkKind.UNI_APP]
        assert adapters[FrameworkKind.TARO].name == "taro"
        assert adapters[FrameworkKind.UNI_APP].name == "uni-app"
        assert all(a.executor is executor for a in adapters.values())
