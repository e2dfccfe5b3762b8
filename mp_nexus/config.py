"""mp-nexus configuration.

Typed configuration for one ``nexus`` invocation. The project config file
(``mp-nexus.config.json`` / ``.js`` / ``.cjs``) is validated into
``NexusConfig``; CLI flags land in ``CLIOptions``; the invocation-scoped
``ProjectContext`` carries the working directory, normalised build mode and
environment overlay.

Loading a config file is two-phase: a static parse (JSON, or a JS object
literal normalised to JSON) is tried first. Only when the file needs to run
code is it evaluated, in an isolated ``node`` subprocess whose sole contract
is printing one JSON mapping.
"""

from __future__ import annotations

import asyncio
import json
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import ErrorKind, NexusError, config_invalid, config_not_found
from .utils import CommandError, parse_js_object, run_checked

CONFIG_FILENAMES = ("mp-nexus.config.json", "mp-nexus.config.js", "mp-nexus.config.cjs")


class BuildMode(str, Enum):
    """Normalised build mode."""

    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"


_MODE_SYNONYMS: dict[str, BuildMode] = {
    "dev": BuildMode.DEVELOPMENT,
    "develop": BuildMode.DEVELOPMENT,
    "development": BuildMode.DEVELOPMENT,
    "local": BuildMode.DEVELOPMENT,
    "test": BuildMode.TEST,
    "testing": BuildMode.TEST,
    "qa": BuildMode.TEST,
    "staging": BuildMode.TEST,
    "stage": BuildMode.TEST,
    "preprod": BuildMode.TEST,
    "uat": BuildMode.TEST,
    "prod": BuildMode.PRODUCTION,
    "production": BuildMode.PRODUCTION,
    "release": BuildMode.PRODUCTION,
    "live": BuildMode.PRODUCTION,
}


def normalize_mode(mode: str | BuildMode | None) -> BuildMode:
    """Map any caller-supplied mode onto ``BuildMode``.

    Unrecognised values fall back to production so an unknown mode never
    yields an unoptimised debug build.
    """
    if isinstance(mode, BuildMode):
        return mode
    if not mode:
        return BuildMode.PRODUCTION
    return _MODE_SYNONYMS.get(mode.strip().lower(), BuildMode.PRODUCTION)


class NotifyConfig(BaseModel):
    """Optional webhook notification settings."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    webhook: str = ""
    provider: str = Field(default="custom")
    headers: dict[str, str] = Field(default_factory=dict)


class NexusConfig(BaseModel):
    """Project configuration file model (camelCase keys on disk)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    project_type: str | None = Field(default=None, alias="projectType")
    platform: str = Field(default="weapp")
    app_id: str = Field(default="", alias="appId")
    private_key_path: str = Field(default="private.key", alias="privateKeyPath")
    project_path: str = Field(default=".", alias="projectPath")
    output_dir: str = Field(default="dist/weapp", alias="outputDir")
    ci_options: dict[str, Any] = Field(default_factory=dict, alias="ciOptions")
    notify: NotifyConfig | None = None
    build_timeout: float | None = Field(
        default=None, gt=0, alias="buildTimeout", description="Per-attempt build timeout in seconds"
    )


class CLIOptions(BaseModel):
    """Flags shared by the ``preview`` and ``deploy`` commands."""

    mode: str | None = None
    desc: str | None = None
    ver: str | None = None
    config: str | None = None
    dry_run: bool = False
    verbose: bool = False
    json_output: bool = False


@dataclass(frozen=True)
class ProjectContext:
    """Invocation-scoped context, created once per CLI command."""

    cwd: Path
    mode: BuildMode = BuildMode.PRODUCTION
    env: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        cwd: str | Path | None = None,
        mode: str | None = None,
        env: Mapping[str, str] | None = None,
    ) -> "ProjectContext":
        return cls(
            cwd=Path(cwd or Path.cwd()).resolve(),
            mode=normalize_mode(mode),
            env=dict(env if env is not None else os.environ),
        )


def load_env_overlay(cwd: str | Path, mode: str | None = None) -> dict[str, str]:
    """Build the environment overlay: ``.env`` < ``.env.<mode>`` < process env."""
    root = Path(cwd)
    overlay: dict[str, str] = {}
    candidates = [root / ".env"]
    if mode:
        candidates.append(root / f".env.{mode}")
    for env_file in candidates:
        if env_file.exists():
            overlay.update({k: v for k, v in dotenv_values(env_file).items() if v is not None})
    overlay.update(os.environ)
    return overlay


# ---------------------------------------------------------------------------
# Config file loading
# ---------------------------------------------------------------------------

_NODE_EVAL = (
    "const m = require(process.argv[1]);"
    "const c = (m && m.default) ? m.default : m;"
    "Promise.resolve(typeof c === 'function' ? c() : c)"
    ".then(v => process.stdout.write(JSON.stringify(v || {})));"
)


def find_config_file(cwd: str | Path, explicit: str | None = None) -> Path | None:
    """Locate the config file.

    Raises:
        NexusError: ``ConfigNotFound`` if an explicit path does not exist.
    """
    root = Path(cwd)
    if explicit:
        path = Path(explicit)
        if not path.is_absolute():
            path = root / path
        if not path.exists():
            raise config_not_found(str(path))
        return path.resolve()
    for name in CONFIG_FILENAMES:
        candidate = root / name
        if candidate.exists():
            return candidate.resolve()
    return None


def _read_static(path: Path) -> dict[str, Any]:
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".json":
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("config root must be an object")
        return data
    return parse_js_object(text)


async def _evaluate_with_node(path: Path, timeout: float = 30.0) -> dict[str, Any]:
    try:
        output = await run_checked(["node", "-e", _NODE_EVAL, str(path)], cwd=path.parent, timeout=timeout)
    except (CommandError, asyncio.TimeoutError) as exc:
        raise NexusError(
            ErrorKind.CONFIG_INVALID,
            f"Could not evaluate configuration file {path}: {str(exc) or 'timed out'}",
            "Make the config file export a plain object, or install Node.js to evaluate it",
            {"path": str(path), "originalError": str(exc)},
        ) from exc
    try:
        data = json.loads(output or "{}")
    except json.JSONDecodeError as exc:
        raise config_invalid(str(path), "did not evaluate to JSON") from exc
    if not isinstance(data, dict):
        raise config_invalid(str(path), "did not evaluate to an object")
    return data


async def load_file_config(path: Path | None) -> dict[str, Any]:
    """Return the raw mapping exported by the config file (empty when absent)."""
    if path is None:
        return {}
    try:
        return _read_static(path)
    except json.JSONDecodeError as exc:
        if path.suffix == ".json":
            raise config_invalid(str(path), f"invalid JSON ({exc.msg})") from exc
    except ValueError:
        pass
    except OSError as exc:
        raise config_not_found(str(path)) from exc
    return await _evaluate_with_node(path)


def merge_config(
    file_config: Mapping[str, Any],
    options: CLIOptions,
    env: Mapping[str, str],
) -> NexusConfig:
    """Merge file config, environment and CLI flags into a validated model.

    Credentials: environment > file > built-in default.
    Version/description: CLI flag > file ``ciOptions``.

    Raises:
        NexusError: ``ConfigInvalid`` if the merged mapping fails validation.
    """
    raw = dict(file_config)
    if env.get("MP_APP_ID"):
        raw["appId"] = env["MP_APP_ID"]
    if env.get("MP_PRIVATE_KEY_PATH"):
        raw["privateKeyPath"] = env["MP_PRIVATE_KEY_PATH"]
    if env.get("NEXUS_BUILD_TIMEOUT") and "buildTimeout" not in raw:
        raw["buildTimeout"] = env["NEXUS_BUILD_TIMEOUT"]

    ci_options = dict(raw.get("ciOptions") or {})
    if options.ver:
        ci_options["version"] = options.ver
    if options.desc:
        ci_options["desc"] = options.desc
    raw["ciOptions"] = ci_options

    try:
        return NexusConfig.model_validate(raw)
    except ValidationError as exc:
        first = exc.errors()[0]
        field_name = ".".join(str(p) for p in first.get("loc", ())) or "config"
        raise config_invalid(field_name, first.get("msg")) from exc


async def load_config(
    options: CLIOptions,
    context: ProjectContext,
) -> NexusConfig:
    """Find, load and merge the configuration for one invocation."""
    path = find_config_file(context.cwd, options.config)
    file_config = await load_file_config(path)
    return merge_config(file_config, options, context.env)
