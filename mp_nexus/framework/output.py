"""Build output directory resolution.

Sources are consulted in a fixed order and the first one that yields a
value wins:

1. the framework tool's own config file,
2. the framework's namespace in ``package.json``,
3. the platform's project manifest (``project.config.json`` etc.),
4. a conventional path per framework and target.

A source that cannot be read or parsed counts as absent, so ``resolve``
always returns an answer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from ..config import BuildMode, normalize_mode
from ..utils import Logger, find_string_value, parse_js_object, read_json_safe
from .detector import FrameworkKind, read_manifest
from .strategy import platform_target


class OutputSource(str, Enum):
    """Provenance of a resolved output directory (diagnostics only)."""

    EXPLICIT_CONFIG = "explicit-config"
    TOOL_CONFIG_FILE = "tool-config-file"
    MANIFEST = "manifest"
    CONVENTION_FALLBACK = "convention-fallback"


@dataclass(frozen=True)
class OutputLocation:
    path: Path
    source: OutputSource


@dataclass(frozen=True)
class ToolConfig:
    """Where a framework tool keeps its output directory setting.

    ``key_path`` is walked through the structured parse; ``text_key`` is the
    bare key searched for when the file can only be matched textually.
    """

    filename: str
    key_path: tuple[str, ...]
    text_key: str


TOOL_CONFIGS: dict[FrameworkKind, tuple[ToolConfig, ...]] = {
    FrameworkKind.TARO: (
        ToolConfig("config/index.js", ("outputRoot",), "outputRoot"),
        ToolConfig("config/index.ts", ("outputRoot",), "outputRoot"),
    ),
    FrameworkKind.UNI_APP: (
        ToolConfig("vue.config.js", ("pluginOptions", "uni-app", "outputDir"), "outputDir"),
        ToolConfig("vue.config.js", ("outputDir",), "outputDir"),
        ToolConfig("vite.config.js", ("build", "outDir"), "outDir"),
        ToolConfig("vite.config.ts", ("build", "outDir"), "outDir"),
    ),
}

# framework -> (package.json namespace, key)
MANIFEST_KEYS: dict[FrameworkKind, tuple[str, str]] = {
    FrameworkKind.TARO: ("taro", "outputRoot"),
    FrameworkKind.UNI_APP: ("uniApp", "outputDir"),
}

# platform -> (secondary manifest file, key)
PLATFORM_MANIFESTS: dict[str, tuple[str, str]] = {
    "weapp": ("project.config.json", "miniprogramRoot"),
    "qq": ("project.config.json", "miniprogramRoot"),
    "tt": ("project.config.json", "miniprogramRoot"),
    "bytedance": ("project.config.json", "miniprogramRoot"),
    "swan": ("project.swan.json", "miniprogramRoot"),
    "alipay": ("mini.project.json", "miniprogramRoot"),
}

CONVENTIONS: dict[FrameworkKind, str] = {
    FrameworkKind.TARO: "dist/{target}",
    FrameworkKind.UNI_APP: "dist/{stage}/{target}",
}
DEFAULT_CONVENTION = "dist/{target}"

_TARO_ENV_PLACEHOLDERS = ("${process.env.TARO_ENV}", "${process.env.UNI_PLATFORM}")


def _dig(data: Any, key_path: tuple[str, ...]) -> Any:
    for key in key_path:
        if not isinstance(data, dict):
            return None
        data = data.get(key)
    return data


def _non_empty(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


class OutputPathResolver:
    """Determines the directory holding build artifacts.

    Args:
        platform: Target platform name (``weapp`` by default).
        logger: Diagnostic sink.
    """

    def __init__(self, platform: str = "weapp", logger: Logger | None = None) -> None:
        self.platform = platform
        self.logger = logger or Logger()

    def resolve(
        self,
        project_dir: str | Path,
        mode: str | BuildMode | None,
        framework: FrameworkKind,
    ) -> OutputLocation:
        root = Path(project_dir).resolve()
        build_mode = normalize_mode(mode)
        target = platform_target(self.platform, framework)

        sources: tuple[tuple[OutputSource, Callable[[], str | None]], ...] = (
            (OutputSource.TOOL_CONFIG_FILE, lambda: self._from_tool_config(root, framework, target)),
            (OutputSource.MANIFEST, lambda: self._from_manifest(root, framework)),
            (OutputSource.MANIFEST, lambda: self._from_platform_manifest(root)),
        )
        for source, read in sources:
            try:
                value = read()
            except (OSError, ValueError) as exc:
                self.logger.debug(f"[output] {source.value} source unreadable: {exc}")
                continue
            if value:
                location = OutputLocation(path=(root / value).resolve(), source=source)
                self.logger.debug(f"[output] {location.path} (from {source.value})")
                return location

        location = OutputLocation(
            path=(root / self._convention(framework, target, build_mode)).resolve(),
            source=OutputSource.CONVENTION_FALLBACK,
        )
        self.logger.debug(f"[output] {location.path} (from {location.source.value})")
        return location

    def _from_tool_config(self, root: Path, framework: FrameworkKind, target: str) -> str | None:
        for tool in TOOL_CONFIGS.get(framework, ()):
            path = root / tool.filename
            if not path.is_file():
                continue
            source = path.read_text(encoding="utf-8")
            try:
                value = _non_empty(_dig(parse_js_object(source), tool.key_path))
            except ValueError:
                value = _non_empty(find_string_value(source, tool.text_key))
            if value:
                for placeholder in _TARO_ENV_PLACEHOLDERS:
                    value = value.replace(placeholder, target)
                return value
        return None

    def _from_manifest(self, root: Path, framework: FrameworkKind) -> str | None:
        if framework not in MANIFEST_KEYS:
            return None
        namespace, key = MANIFEST_KEYS[framework]
        return _non_empty(_dig(read_manifest(root), (namespace, key)))

    def _from_platform_manifest(self, root: Path) -> str | None:
        if self.platform not in PLATFORM_MANIFESTS:
            return None
        filename, key = PLATFORM_MANIFESTS[self.platform]
        data = read_json_safe(root / filename) or {}
        return _non_empty(data.get(key))

    def _convention(self, framework: FrameworkKind, target: str, mode: BuildMode) -> str:
        template = CONVENTIONS.get(framework, DEFAULT_CONVENTION)
        stage = "dev" if mode is BuildMode.DEVELOPMENT else "build"
        return template.format(target=target, stage=stage)
