"""WeChat mini-program platform client.

Drives the ``miniprogram-ci`` command line tool for preview (QR code) and
upload (new version). Preview runs the tool twice, first with
``--qrcode-format terminal`` to capture a printable code, then with
``--qrcode-format image`` to write the PNG. Extra ``ciOptions`` keys become
command line flags. The client itself does not retry or classify: a failed
CLI run surfaces as ``CommandError`` so the caller can wrap the call in the
network retry policy and classify with ``PREVIEW_CLASSIFIER`` or
``UPLOAD_CLASSIFIER`` once retries are exhausted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol

from ..errors import CI_RULES, ErrorClassifier, ErrorKind, config_invalid, invalid_private_key
from ..utils import Logger, resolve_binary, run_checked

DEFAULT_VERSION = "1.0.0"
DEFAULT_ROBOT = 1
DEFAULT_SETTING: dict[str, bool] = {"es6": True, "minify": True, "codeProtect": True}

# ciOptions.setting key -> miniprogram-ci flag
SETTING_FLAGS: dict[str, str] = {
    "es6": "--enable-es6",
    "es7": "--enable-es7",
    "minify": "--enable-minify",
    "minifyJS": "--enable-minify-js",
    "minifyWXML": "--enable-minify-wxml",
    "minifyWXSS": "--enable-minify-wxss",
    "codeProtect": "--enable-code-protect",
    "autoPrefixWXSS": "--enable-autoprefixwxss",
}

# ciOptions key -> miniprogram-ci flag. Keys not listed here are passed
# through as ``--<kebab-case-key> <value>``.
CI_OPTION_FLAGS: dict[str, str] = {
    "pagePath": "--preview-page-path",
    "searchQuery": "--preview-search-query",
    "scene": "--scene",
    "threads": "--threads",
}
PREVIEW_ONLY_OPTIONS = frozenset({"pagePath", "searchQuery", "scene"})

# Keys turned into dedicated arguments or set by the client itself.
RESERVED_OPTIONS = frozenset({"setting", "robot", "version", "desc", "qrcodeFormat", "qrcodeOutputDest"})

PREVIEW_CLASSIFIER = ErrorClassifier(CI_RULES, fallback=ErrorKind.CI_OPERATION_FAILED)
UPLOAD_CLASSIFIER = ErrorClassifier(CI_RULES, fallback=ErrorKind.DEPLOY_FAILED)


@dataclass
class CIOptions:
    """Inputs shared by preview and upload.

    ``project_path`` is the build output handed to ``--pp``. ``project_root``
    is the source project: ``miniprogram-ci`` is looked up in its
    ``node_modules/.bin`` and runs with it as working directory. When unset,
    ``project_path`` is used for both.
    """

    project_path: Path
    app_id: str
    private_key_path: Path
    version: str | None = None
    desc: str | None = None
    ci_options: dict[str, Any] = field(default_factory=dict)
    qrcode_output_path: Path | None = None
    project_root: Path | None = None

    @property
    def working_dir(self) -> Path:
        return self.project_root or self.project_path


@dataclass
class PreviewResult:
    success: bool
    qrcode_image_path: str | None = None
    qrcode_terminal: str = ""
    raw: str = ""


@dataclass
class UploadResult:
    success: bool
    version: str
    raw: str = ""


class PlatformClient(Protocol):
    """What the orchestrator needs from a hosting platform."""

    name: str

    async def preview(self, options: CIOptions) -> PreviewResult: ...

    async def upload(self, options: CIOptions) -> UploadResult: ...


class WeappPlatformClient:
    """``miniprogram-ci`` wrapper for the WeChat platform.

    Args:
        ci_binary: Name or path of the ``miniprogram-ci`` executable. A
            project-local ``node_modules/.bin`` copy is preferred.
        logger: Diagnostic sink.
        timeout: Seconds a single CLI run may take.
    """

    name = "weapp"

    def __init__(
        self,
        ci_binary: str = "miniprogram-ci",
        logger: Logger | None = None,
        timeout: float | None = 600.0,
    ) -> None:
        self.ci_binary = ci_binary
        self.logger = (logger or Logger()).child(platform=self.name)
        self.timeout = timeout

    def ensure_private_key(self, path: Path) -> None:
        """Raise ``InvalidPrivateKey`` unless *path* is a readable file."""
        try:
            with open(path, "rb"):
                pass
        except OSError as exc:
            raise invalid_private_key(str(path)) from exc

    async def preview(self, options: CIOptions) -> PreviewResult:
        """Generate the preview QR code twice: once for the terminal, once as an image."""
        self.ensure_private_key(options.private_key_path)
        image_path = options.qrcode_output_path or (options.working_dir / "preview-qrcode.png")
        args = self._common_args(options, "preview", default_desc="Preview version")

        self.logger.info("Generating preview QR code...")
        terminal = await self._run([*args, "--qrcode-format", "terminal"], options.working_dir)
        output = await self._run(
            [*args, "--qrcode-format", "image", "--qrcode-output-dest", str(image_path)],
            options.working_dir,
        )
        self.logger.info(f"QR code saved to: {image_path}")
        return PreviewResult(
            success=True,
            qrcode_image_path=str(image_path),
            qrcode_terminal=terminal,
            raw=output,
        )

    async def upload(self, options: CIOptions) -> UploadResult:
        self.ensure_private_key(options.private_key_path)
        version = options.version or DEFAULT_VERSION
        args = self._common_args(options, "upload", default_desc="Upload version")

        self.logger.info(f"Uploading version {version}...")
        output = await self._run(args, options.working_dir)
        self.logger.info("Upload completed")
        return UploadResult(success=True, version=version, raw=output)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _common_args(self, options: CIOptions, action: str, default_desc: str) -> list[str]:
        extra = dict(options.ci_options)
        setting = {**DEFAULT_SETTING, **(extra.pop("setting", None) or {})}
        robot = extra.pop("robot", DEFAULT_ROBOT)

        args = [
            action,
            "--pp", str(options.project_path),
            "--pkp", str(options.private_key_path),
            "--appid", options.app_id,
            "--uv", options.version or DEFAULT_VERSION,
            "--ud", options.desc or default_desc,
            "-r", str(robot),
        ]
        for key, value in setting.items():
            flag = SETTING_FLAGS.get(key)
            if flag is None:
                self.logger.warn(f"[weapp] ignoring unsupported setting '{key}'")
                continue
            args += [flag, "true" if value else "false"]

        for key, value in extra.items():
            if key in RESERVED_OPTIONS or value is None:
                continue
            if action != "preview" and key in PREVIEW_ONLY_OPTIONS:
                self.logger.warn(f"[weapp] '{key}' only applies to preview, ignored for {action}")
                continue
            if isinstance(value, (dict, list, tuple)):
                raise config_invalid(f"ciOptions.{key}", value)
            flag = CI_OPTION_FLAGS.get(key) or "--" + _kebab(key)
            if isinstance(value, bool):
                value = "true" if value else "false"
            args += [flag, str(value)]
        return args

    async def _run(self, args: list[str], cwd: Path) -> str:
        binary = resolve_binary(self.ci_binary, cwd)
        self.logger.debug(f"[weapp] {self.ci_binary} {' '.join(args)}")
        return await run_checked([binary, *args], cwd=cwd, timeout=self.timeout)


def _kebab(key: str) -> str:
    """``searchQuery`` -> ``search-query``."""
    return re.sub(r"(?<=[a-z0-9])(?=[A-Z])", "-", key).replace("_", "-").lower()


def create_platform_client(platform: str, logger: Logger | None = None) -> PlatformClient:
    """Return the client for *platform*; only ``weapp`` is built in."""
    if platform != "weapp":
        logger = logger or Logger()
        logger.warn(f"No dedicated client for platform '{platform}', using weapp")
    return WeappPlatformClient(logger=logger)
