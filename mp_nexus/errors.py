"""Error taxonomy, stable exit codes, and rule-based failure classification.

Every failure that leaves a component is a ``NexusError`` carrying a
``ClassifiedFailure``. Raw exceptions (subprocess failures, OS errors,
transport errors) are turned into one by ``ErrorClassifier.classify``, which
walks an ordered list of keyword rules and takes the first match.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable


class ErrorKind(str, Enum):
    """Closed set of failure kinds surfaced to the caller."""

    CONFIG_NOT_FOUND = "ConfigNotFound"
    CONFIG_INVALID = "ConfigInvalid"
    FILE_NOT_FOUND = "FileNotFound"
    FILE_PERMISSION = "FilePermission"
    BUILD_TOOL_NOT_FOUND = "BuildToolNotFound"
    BUILD_FAILED = "BuildFailed"
    BUILD_TIMEOUT = "BuildTimeout"
    DEPLOY_FAILED = "DeployFailed"
    DEPLOY_VERSION_EXISTS = "DeployVersionExists"
    NETWORK_ERROR = "NetworkError"
    API_AUTH_ERROR = "ApiAuthError"
    INVALID_APP_ID = "InvalidAppId"
    INVALID_PRIVATE_KEY = "InvalidPrivateKey"
    CI_OPERATION_FAILED = "CiOperationFailed"
    UNKNOWN = "Unknown"


SUCCESS = 0

EXIT_CODES: dict[ErrorKind, int] = {
    ErrorKind.UNKNOWN: 1,
    ErrorKind.CONFIG_NOT_FOUND: 3,
    ErrorKind.CONFIG_INVALID: 4,
    ErrorKind.FILE_NOT_FOUND: 20,
    ErrorKind.FILE_PERMISSION: 21,
    ErrorKind.NETWORK_ERROR: 40,
    ErrorKind.API_AUTH_ERROR: 41,
    ErrorKind.BUILD_FAILED: 60,
    ErrorKind.BUILD_TOOL_NOT_FOUND: 61,
    ErrorKind.BUILD_TIMEOUT: 62,
    ErrorKind.DEPLOY_FAILED: 80,
    ErrorKind.DEPLOY_VERSION_EXISTS: 81,
    ErrorKind.INVALID_APP_ID: 101,
    ErrorKind.INVALID_PRIVATE_KEY: 102,
    ErrorKind.CI_OPERATION_FAILED: 103,
}

DEFAULT_SUGGESTION = (
    "Check the logs (run again with --verbose), verify the project setup, "
    "and ensure dependencies are installed"
)


@dataclass(frozen=True)
class ClassifiedFailure:
    """A failure mapped onto the taxonomy, with a remediation hint."""

    kind: ErrorKind
    message: str
    suggestion: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.kind]

    def to_dict(self) -> dict[str, Any]:
        """The ``error`` member of the structured JSON output."""
        return {
            "code": self.exit_code,
            "message": self.message,
            "details": {**self.details, "kind": self.kind.value, "suggestion": self.suggestion},
        }


class NexusError(Exception):
    """The only exception type that crosses component boundaries."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        suggestion: str = DEFAULT_SUGGESTION,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.failure = ClassifiedFailure(
            kind=kind,
            message=message,
            suggestion=suggestion or DEFAULT_SUGGESTION,
            details=dict(details or {}),
        )
        super().__init__(message)

    @property
    def kind(self) -> ErrorKind:
        return self.failure.kind

    @property
    def details(self) -> dict[str, Any]:
        return self.failure.details

    @property
    def exit_code(self) -> int:
        return self.failure.exit_code


# ---------------------------------------------------------------------------
# Factories for failures raised directly by the orchestrator and clients
# ---------------------------------------------------------------------------


def config_not_found(path: str) -> NexusError:
    return NexusError(
        ErrorKind.CONFIG_NOT_FOUND,
        f"Configuration file not found: {path}",
        "Create mp-nexus.config.js (or .json) in the project root or pass --config",
        {"path": path},
    )


def config_invalid(field_name: str, value: Any = None) -> NexusError:
    return NexusError(
        ErrorKind.CONFIG_INVALID,
        f"Invalid configuration field '{field_name}': {value}",
        "Check configuration file syntax and required fields",
        {"field": field_name, "value": value},
    )


def file_not_found(path: str) -> NexusError:
    return NexusError(
        ErrorKind.FILE_NOT_FOUND,
        f"File not found: {path}",
        "Verify the file path exists and is accessible",
        {"path": path},
    )


def build_tool_not_found(framework: str, tried: list[str]) -> NexusError:
    return NexusError(
        ErrorKind.BUILD_TOOL_NOT_FOUND,
        f"No usable build tool found for {framework}",
        "Add a build script to package.json or install the framework CLI "
        "(e.g. @tarojs/cli, @dcloudio/uni-app) locally or globally",
        {"framework": framework, "triedStrategies": list(tried)},
    )


def build_timeout(framework: str, timeout: float) -> NexusError:
    return NexusError(
        ErrorKind.BUILD_TIMEOUT,
        f"{framework} build timed out after {timeout}s",
        "Check for build performance issues or raise buildTimeout",
        {"framework": framework, "timeout": timeout},
    )


def invalid_app_id(app_id: str) -> NexusError:
    return NexusError(
        ErrorKind.INVALID_APP_ID,
        f"Invalid AppID: {app_id}",
        "Set appId in the config file or MP_APP_ID, and check it is registered on the platform",
        {"appId": app_id},
    )


def invalid_private_key(path: str) -> NexusError:
    return NexusError(
        ErrorKind.INVALID_PRIVATE_KEY,
        f"Invalid private key file: {path}",
        "Verify the private key file exists, is readable, and belongs to this AppID",
        {"path": path},
    )


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

Predicate = Callable[[str], bool]


def _any_of(*keywords: str) -> Predicate:
    return lambda text: any(kw in text for kw in keywords)


def _all_of(*keywords: str) -> Predicate:
    return lambda text: all(kw in text for kw in keywords)


@dataclass(frozen=True)
class Rule:
    """One ordered ``predicate -> kind`` classification rule."""

    name: str
    matches: Predicate
    kind: ErrorKind
    suggestion: str


BUILD_RULES: tuple[Rule, ...] = (
    Rule(
        "tool-not-found",
        _any_of(
            "command not found",
            "is not recognized as an internal or external command",
            "executable not found",
            "no usable build tool",
        ),
        ErrorKind.BUILD_TOOL_NOT_FOUND,
        "Install the required CLI tool or add a build script to package.json",
    ),
    Rule(
        "dependency",
        _any_of(
            "cannot find module",
            "module not found",
            "missing dependenc",
            "peer dep",
            "missing peer",
            "err_pnpm_outdated_lockfile",
            "err_pnpm_no_matching_version",
            "err_pnpm_peer_dep",
        ),
        ErrorKind.BUILD_FAILED,
        "Install project dependencies (npm install / yarn / pnpm install) and retry",
    ),
    Rule(
        "config-file",
        _any_of(
            "vue.config",
            "vite.config",
            "config/index",
            "babel.config",
            "tsconfig",
            "project.config.json",
            "invalid configuration",
        ),
        ErrorKind.CONFIG_INVALID,
        "Check the framework configuration file (vue.config.js, config/index.js, ...)",
    ),
    Rule(
        "target-platform",
        _any_of(
            "unsupported platform",
            "unknown platform",
            "invalid platform",
            "unknown type",
            "hbuilderx",
        ),
        ErrorKind.BUILD_FAILED,
        "Check the target platform name and that the framework supports it",
    ),
    Rule(
        "syntax",
        _any_of("syntaxerror", "syntax error", "unexpected token", "parse error", "failed to parse"),
        ErrorKind.BUILD_FAILED,
        "Fix the syntax error reported in the build output",
    ),
    Rule(
        "manifest-file",
        _any_of(
            "package.json",
            "manifest.json",
            "pages.json",
            "app.json",
            "no such file",
            "enoent",
        ),
        ErrorKind.FILE_NOT_FOUND,
        "Verify package.json, manifest.json and pages.json exist and are valid",
    ),
    Rule(
        "out-of-memory",
        _any_of("out of memory", "heap out of memory", "enomem", "allocation failed"),
        ErrorKind.BUILD_FAILED,
        "Raise the Node.js heap limit, e.g. NODE_OPTIONS=--max-old-space-size=4096",
    ),
    Rule(
        "permission",
        _any_of("permission denied", "eacces", "eperm", "operation not permitted"),
        ErrorKind.FILE_PERMISSION,
        "Check file permissions or run with appropriate privileges",
    ),
    Rule(
        "network",
        _any_of(
            "enotfound",
            "econnrefused",
            "econnreset",
            "etimedout",
            "connection refused",
            "getaddrinfo",
            "socket hang up",
            "timed out",
            "timeout",
            "network",
        ),
        ErrorKind.NETWORK_ERROR,
        "Check internet connection and proxy settings, then retry",
    ),
)

CI_RULES: tuple[Rule, ...] = (
    Rule(
        "app-id",
        _any_of("appid", "invalid app"),
        ErrorKind.INVALID_APP_ID,
        "Check the AppID and that the mini program is registered on the platform",
    ),
    Rule(
        "private-key",
        _any_of("private", "key", "signature"),
        ErrorKind.INVALID_PRIVATE_KEY,
        "Check the private key path, permissions, and that it matches the AppID",
    ),
    Rule(
        "network",
        _any_of("network", "timeout", "timed out", "connect", "enotfound", "econnrefused"),
        ErrorKind.NETWORK_ERROR,
        "Check internet connection and whitelist the CI IP on the platform",
    ),
    Rule(
        "version-exists",
        _all_of("version", "exist"),
        ErrorKind.DEPLOY_VERSION_EXISTS,
        "Use a different version number or increment the version",
    ),
    Rule(
        "auth",
        _any_of("auth", "permission", "forbidden", "unauthorized"),
        ErrorKind.API_AUTH_ERROR,
        "Verify the platform credentials and upload permissions",
    ),
)

_FALLBACK_SUGGESTIONS: dict[ErrorKind, str] = {
    ErrorKind.UNKNOWN: DEFAULT_SUGGESTION,
    ErrorKind.CI_OPERATION_FAILED: "Check miniprogram-ci configuration and logs",
    ErrorKind.DEPLOY_FAILED: "Check platform credentials and network connectivity",
    ErrorKind.BUILD_FAILED: "Check build dependencies and project configuration",
}


def _failure_text(failure: BaseException | str) -> str:
    if isinstance(failure, BaseException):
        text = str(failure)
        return text if text else type(failure).__name__
    return str(failure)


# Trailer lines a package manager prints after a failed ``run`` script. Rules
# never see them: they repeat the script name (``build:mp-weixin``), not the
# cause.
_PACKAGE_MANAGER_NOISE = re.compile(
    r"^('[^'\n]*' exited with code -?\d+: )?[ \t]*"
    r"(?:npm (?:err!|error|warn)|elifecycle|err_pnpm_recursive_run_first_fail"
    r"|error command failed with exit code|info visit https://yarnpkg\.com)[^\n]*$",
    re.IGNORECASE | re.MULTILINE,
)


def _without_package_manager_noise(text: str) -> str:
    return _PACKAGE_MANAGER_NOISE.sub(lambda m: m.group(1) or "", text)


class ErrorClassifier:
    """Maps raw failures onto ``ErrorKind`` with a first-match rule walk.

    Args:
        rules: Ordered rules; the first whose predicate matches wins.
        fallback: Kind used when no rule matches.
    """

    def __init__(
        self,
        rules: tuple[Rule, ...] = BUILD_RULES,
        fallback: ErrorKind = ErrorKind.UNKNOWN,
    ) -> None:
        self.rules = rules
        self.fallback = fallback

    def classify(self, failure: BaseException | str) -> ClassifiedFailure:
        if isinstance(failure, NexusError):
            return failure.failure

        original = _failure_text(failure)
        text = _without_package_manager_noise(original).lower()
        details: dict[str, Any] = {"originalError": original}
        if isinstance(failure, BaseException):
            details["errorType"] = type(failure).__name__
            returncode = getattr(failure, "returncode", None)
            if returncode is not None:
                details["exitCode"] = returncode

        for rule in self.rules:
            if rule.matches(text):
                details["rule"] = rule.name
                return ClassifiedFailure(
                    kind=rule.kind,
                    message=original,
                    suggestion=rule.suggestion,
                    details=details,
                )

        return ClassifiedFailure(
            kind=self.fallback,
            message=original,
            suggestion=_FALLBACK_SUGGESTIONS.get(self.fallback, DEFAULT_SUGGESTION),
            details=details,
        )

    def to_error(self, failure: BaseException | str) -> NexusError:
        """Classify *failure* and wrap the result in a ``NexusError``."""
        if isinstance(failure, NexusError):
            return failure
        classified = self.classify(failure)
        return NexusError(
            classified.kind,
            classified.message,
            classified.suggestion,
            classified.details,
        )


_default_classifier = ErrorClassifier()


def classify(failure: BaseException | str) -> ClassifiedFailure:
    """Classify *failure* with the default build-stage rules."""
    return _default_classifier.classify(failure)
