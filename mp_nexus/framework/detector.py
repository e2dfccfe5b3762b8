"""Framework detection from project metadata.

Detectors run in a fixed order (Taro, then uni-app) and the first match
wins. Detection only reads files; a missing or broken ``package.json`` is
simply "no match".
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from ..utils import Logger, read_json_safe


class FrameworkKind(str, Enum):
    """Framework that owns a project."""

    TARO = "taro"
    UNI_APP = "uni-app"
    UNKNOWN = "unknown"


TARO_PACKAGES = frozenset({"@tarojs/taro", "@tarojs/cli", "taro"})
UNI_APP_PACKAGES = frozenset(
    {
        "@dcloudio/uni-app",
        "@dcloudio/vue-cli-plugin-uni",
        "@dcloudio/webpack-uni-pages-loader",
        "@dcloudio/vite-plugin-uni",
    }
)


def read_manifest(project_dir: str | Path) -> dict[str, Any]:
    """Return ``package.json`` as a dict, or ``{}`` when missing/unparseable."""
    return read_json_safe(Path(project_dir) / "package.json") or {}


def dependency_names(manifest: dict[str, Any]) -> set[str]:
    """Union of ``dependencies`` and ``devDependencies`` package names."""
    names: set[str] = set()
    for section in ("dependencies", "devDependencies"):
        deps = manifest.get(section)
        if isinstance(deps, dict):
            names.update(deps)
    return names


def _is_taro(project_dir: Path, manifest: dict[str, Any]) -> bool:
    return bool(dependency_names(manifest) & TARO_PACKAGES)


def _is_uni_app(project_dir: Path, manifest: dict[str, Any]) -> bool:
    if dependency_names(manifest) & UNI_APP_PACKAGES:
        return True
    if isinstance(manifest.get("uniApp"), dict):
        return True
    for root in (project_dir, project_dir / "src"):
        if (root / "manifest.json").is_file() and (root / "pages.json").is_file():
            return True
    return False


_DETECTORS = (
    (FrameworkKind.TARO, _is_taro),
    (FrameworkKind.UNI_APP, _is_uni_app),
)


class FrameworkDetector:
    """Decides which framework adapter, if any, owns a project directory."""

    def __init__(self, logger: Logger | None = None) -> None:
        self.logger = logger or Logger()

    def detect(self, project_dir: str | Path) -> FrameworkKind:
        root = Path(project_dir)
        manifest = read_manifest(root)
        for kind, matches in _DETECTORS:
            if matches(root, manifest):
                self.logger.debug(f"[framework] detected {kind.value} project at {root}")
                return kind
        self.logger.debug(f"[framework] no supported framework detected at {root}")
        return FrameworkKind.UNKNOWN
