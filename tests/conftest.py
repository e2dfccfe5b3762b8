"""Shared pytest fixtures for the mp-nexus test suite.

Provides reusable fixtures for:
- Temporary project directories (empty, Taro, uni-app)
- A quiet logger whose output can be inspected
- A retry executor that records delays instead of sleeping
- Mock subprocess helpers
"""

from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from rich.console import Console

from mp_nexus.retry import RetryExecutor
from mp_nexus.utils import Logger


def _write_json(path: Path, data: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2), encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Paths & Directories
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_project_dir(tmp_path: Path) -> Path:
    """Temporary mini-program project directory (auto-cleanup)."""
    project_dir = tmp_path / "test-project"
    project_dir.mkdir()
    yield project_dir


@pytest.fixture
def taro_project(tmp_project_dir: Path) -> Path:
    """Taro project with no build scripts."""
    _write_json(
        tmp_project_dir / "package.json",
        {
            "name": "taro-demo",
            "version": "1.4.2",
            "dependencies": {"@tarojs/taro": "*"},
        },
    )
    return tmp_project_dir


@pytest.fixture
def uni_project(tmp_project_dir: Path) -> Path:
    """uni-app project with a ``build:mp-weixin`` script."""
    _write_json(
        tmp_project_dir / "package.json",
        {
            "name": "uni-demo",
            "version": "2.0.0",
            "scripts": {"build:mp-weixin": "uni build -p mp-weixin"},
            "dependencies": {"@dcloudio/uni-app": "^3.0.0"},
        },
    )
    return tmp_project_dir


@pytest.fixture
def credentials(tmp_project_dir: Path) -> dict[str, str]:
    """Config file with an AppID plus an on-disk private key."""
    (tmp_project_dir / "private.key").write_text("-----BEGIN KEY-----\n", encoding="utf-8")
    config = {"appId": "wx1234567890abcdef", "privateKeyPath": "private.key"}
    _write_json(tmp_project_dir / "mp-nexus.config.json", config)
    return config


# ---------------------------------------------------------------------------
# Logging & retry
# ---------------------------------------------------------------------------

@pytest.fixture
def log_stream() -> io.StringIO:
    return io.StringIO()


@pytest.fixture
def logger(log_stream: io.StringIO) -> Logger:
    """Verbose logger writing plain text into ``log_stream``."""
    console = Console(file=log_stream, width=200, force_terminal=False, color_system=None)
    return Logger(verbose=True, console=console)


@pytest.fixture
def recording_sleep() -> AsyncMock:
    """Stand-in for ``asyncio.sleep``; ``await_args_list`` holds the delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def executor(logger: Logger, recording_sleep: AsyncMock) -> RetryExecutor:
    return RetryExecutor(logger=logger, sleep=recording_sleep)


# ---------------------------------------------------------------------------
# Subprocess Mocking
# ---------------------------------------------------------------------------

@pytest.fixture
def mock_subprocess():
    """Mock asyncio subprocess for testing command execution.

    Returns a factory that creates mock subprocess instances with configurable
    stdout, stderr, and return codes.

    Usage:
        def test_command(mock_subprocess):
            proc = mock_subprocess(stdout="output", returncode=0)
            with patch("asyncio.create_subprocess_exec", return_value=proc):
                ...
    """
    def factory(
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
    ) -> AsyncMock:
        mock_proc = AsyncMock()
        mock_proc.communicate = AsyncMock(
            return_value=(stdout.encode("utf-8"), stderr.encode("utf-8"))
        )
        mock_proc.returncode = returncode
        mock_proc.pid = 99999
        mock_proc.kill = MagicMock()
        mock_proc.wait = AsyncMock(return_value=returncode)
        return mock_proc

    return factory


@pytest.fixture
def write_json():
    """Helper that writes *data* as JSON to *path*, creating parent dirs."""
    return _write_json
