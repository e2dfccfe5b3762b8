"""Shared utility functions for mp-nexus.

Provides async command execution, best-effort JSON and JS-literal reading,
node binary lookup, and the Rich-based ``Logger`` that every component takes
explicitly instead of reaching for a process-wide console.
"""

from __future__ import annotations

import asyncio
import json
import os
import re
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

# ---------------------------------------------------------------------------
# Async command execution
# ---------------------------------------------------------------------------


class CommandError(Exception):
    """Raised when an external command cannot be started or exits non-zero."""

    def __init__(
        self,
        message: str,
        command: str = "",
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        self.command = command
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(message)


async def run_command(
    cmd: list[str],
    cwd: str | Path | None = None,
    timeout: float | None = None,
    env: dict[str, str] | None = None,
) -> tuple[int, str, str]:
    """Run a command asynchronously.

    Args:
        cmd: Argument list; the first element is the executable.
        cwd: Working directory for the child process.
        timeout: Maximum wall-clock seconds before the process is killed.
            ``None`` waits for the process to finish on its own.
        env: Optional extra environment variables merged on top of ``os.environ``.

    Returns:
        A ``(returncode, stdout, stderr)`` tuple.

    Raises:
        CommandError: If the executable is missing or not runnable.
        asyncio.TimeoutError: If *timeout* elapses (the process is killed first).
    """
    merged_env: dict[str, str] | None = None
    if env:
        merged_env = {**os.environ, **env}

    cmd_str = " ".join(cmd)
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd else None,
            env=merged_env,
        )
    except FileNotFoundError:
        raise CommandError(f"command not found: {cmd[0]}", command=cmd_str)
    except PermissionError:
        raise CommandError(f"permission denied: {cmd[0]}", command=cmd_str)

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(
            process.communicate(), timeout=timeout
        )
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        raise

    stdout_str = (stdout_bytes or b"").decode("utf-8", errors="replace").strip()
    stderr_str = (stderr_bytes or b"").decode("utf-8", errors="replace").strip()
    return (process.returncode or 0, stdout_str, stderr_str)


async def run_checked(
    cmd: list[str],
    cwd: str | Path | None = None,
    timeout: float | None = None,
    env: dict[str, str] | None = None,
) -> str:
    """Run a command and return its stdout, raising on a non-zero exit.

    The error message carries the tail of stderr (or stdout when stderr is
    empty) so that keyword classification sees what the tool complained about.
    Only the executable name goes into the message; the full command line is
    kept on ``CommandError.command``.
    """
    returncode, stdout, stderr = await run_command(cmd, cwd=cwd, timeout=timeout, env=env)
    if returncode != 0:
        output = stderr or stdout
        tail = "\n".join(output.splitlines()[-20:])
        message = f"'{Path(cmd[0]).name}' exited with code {returncode}"
        if tail:
            message = f"{message}: {tail}"
        raise CommandError(
            message,
            command=" ".join(cmd),
            returncode=returncode,
            stdout=stdout,
            stderr=stderr,
        )
    return stdout


def resolve_binary(name: str, project_dir: str | Path | None = None) -> str:
    """Prefer a project-local ``node_modules/.bin`` executable over ``PATH``."""
    if project_dir is not None:
        local = Path(project_dir) / "node_modules" / ".bin" / name
        if local.exists():
            return str(local)
    return name


# ---------------------------------------------------------------------------
# JSON / JS-literal reading
# ---------------------------------------------------------------------------


def load_json(path: str | Path) -> dict[str, Any]:
    """Load and parse a JSON file.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    raw = Path(path).read_text(encoding="utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        return {"_root": data}
    return data


def read_json_safe(path: str | Path) -> dict[str, Any] | None:
    """Return the parsed JSON object at *path*, or ``None`` on any failure."""
    try:
        data = load_json(path)
    except (OSError, ValueError):
        return None
    if "_root" in data and len(data) == 1:
        return None
    return data


_EXPORT_PREFIX = re.compile(r"^\s*(?:module\.exports\s*=|export\s+default)\s*", re.M)
_LINE_COMMENT = re.compile(r"(?<![:\"'])//[^\n]*")
_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.S)
_UNQUOTED_KEY = re.compile(r"([{,]\s*)([A-Za-z_$][\w$]*)\s*:")
_SINGLE_QUOTED = re.compile(r"'((?:[^'\\]|\\.)*)'")
_TRAILING_COMMA = re.compile(r",(\s*[}\]])")


def parse_js_object(source: str) -> dict[str, Any]:
    """Parse a static ``module.exports = {...}`` literal into a dict.

    Only plain data is supported: comments, unquoted keys, single-quoted
    strings and trailing commas are normalised to JSON. Anything dynamic
    (function calls, template strings, ``require``) makes the JSON parse fail.

    Raises:
        ValueError: If the source is not a static object literal.
    """
    text = _BLOCK_COMMENT.sub("", source)
    text = _LINE_COMMENT.sub("", text)
    match = _EXPORT_PREFIX.search(text)
    if match is None:
        raise ValueError("no exported object literal")
    body = text[match.end():].strip()
    if not body.startswith("{"):
        raise ValueError("export is not an object literal")
    end = body.rfind("}")
    body = body[: end + 1]

    body = _SINGLE_QUOTED.sub(
        lambda m: json.dumps(m.group(1).replace("\\'", "'")), body
    )
    body = _UNQUOTED_KEY.sub(r'\1"\2":', body)
    body = _TRAILING_COMMA.sub(r"\1", body)
    data = json.loads(body)
    if not isinstance(data, dict):
        raise ValueError("export is not an object literal")
    return data


def find_string_value(source: str, key: str) -> str | None:
    """Best-effort textual lookup of ``key: 'value'`` in a script file."""
    pattern = re.compile(
        rf"""["']?{re.escape(key)}["']?\s*:\s*(["'`])((?:(?!\1).)*)\1"""
    )
    match = pattern.search(source)
    if match is None:
        return None
    return match.group(2)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


class Logger:
    """Rich-backed logger passed explicitly into every component.

    Attributes:
        verbose: Whether ``debug`` messages are shown.
        context: Key/value bindings printed as a prefix (e.g. ``component=taro``).
        console: The Rich console messages are written to.
    """

    def __init__(
        self,
        verbose: bool = False,
        context: dict[str, Any] | None = None,
        console: Console | None = None,
    ) -> None:
        self.verbose = verbose
        self.context = dict(context or {})
        self.console = console or Console(stderr=True)

    def child(self, **bindings: Any) -> "Logger":
        """Return a logger sharing this console with extra context bindings."""
        return Logger(
            verbose=self.verbose,
            context={**self.context, **bindings},
            console=self.console,
        )

    def _prefix(self) -> str:
        if not self.context:
            return ""
        pairs = ",".join(f"{k}={v}" for k, v in self.context.items())
        return f"[dim]{escape(f'[{pairs}]')}[/dim] "

    def _emit(self, style: str, label: str, message: str, data: Any = None) -> None:
        line = f"[{style}]{label}[/{style}] {self._prefix()}{escape(message)}"
        if data:
            line += f" [dim]{escape(json.dumps(data, ensure_ascii=False, default=str))}[/dim]"
        self.console.print(line, highlight=False)

    def info(self, message: str, data: Any = None) -> None:
        self._emit("cyan", "info", message, data)

    def warn(self, message: str, data: Any = None) -> None:
        self._emit("bold yellow", "warn", message, data)

    def error(self, message: str, data: Any = None) -> None:
        self._emit("bold red", "error", message, data)

    def debug(self, message: str, data: Any = None) -> None:
        if self.verbose:
            self._emit("dim", "debug", message, data)

    def verbatim(self, text: str) -> None:
        """Print *text* unchanged, without markup or line wrapping."""
        self.console.print(text, markup=False, highlight=False, soft_wrap=True)

    def panel(self, body: str, title: str, style: str = "cyan") -> None:
        self.console.print(Panel(body, title=title, border_style=style))

    def summary_table(self, data: dict[str, Any], title: str = "Summary") -> None:
        """Print a two-column key/value summary table, skipping empty values."""
        table = Table(title=title, show_header=True, header_style="bold cyan")
        table.add_column("Item", style="dim", no_wrap=True)
        table.add_column("Value")
        for key, value in data.items():
            if value is None or value == "":
                continue
            table.add_row(key, escape(str(value)))
        self.console.print(table)
