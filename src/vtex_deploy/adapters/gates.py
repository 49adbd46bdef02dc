"""Project validation gates backed by the app manifest and shell commands.

Built-in checks read ``manifest.json`` and the project tree. Test suites and
any additional checks run as shell commands configured under
``gates.commands``; a test scope without a command is SKIPPED.

Example:
    >>> gate = ProjectValidationGate(GateSettings(commands={"unit": "yarn test"}))
    >>> gate.run_tests(TestScope.UNIT).status  # doctest: +SKIP
    <GateStatus.PASSED: 'passed'>
"""

from __future__ import annotations

import json
import re
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from vtex_deploy.errors import ValidationFailedError
from vtex_deploy.schemas.config import GateSettings
from vtex_deploy.schemas.deploy import AppManifest, GateResult, GateStatus, TestScope
from vtex_deploy.telemetry.sanitization import sanitize_error_message
from vtex_deploy.telemetry.tracing import create_span
from vtex_deploy.versioning import parse_version

logger = structlog.get_logger(__name__)

SENSITIVE_FILES = (".env", ".env.local", ".env.production", "config/secrets.json")
"""Files that must not ship with an app."""

# Dependency -> (minimum version, reason)
MINIMUM_DEPENDENCY_VERSIONS: dict[str, tuple[tuple[int, int, int], str]] = {
    "vtex.render-runtime": ((8, 0, 0), "Versions below 8.0.0 have security vulnerabilities"),
}

_COMPARATOR_PATTERN = re.compile(
    r"^(?:[<>]=?|=|~|\^)?v?(?:\*|x|X|\d+)(?:\.(?:\*|x|X|\d+)){0,2}"
    r"(?:-[0-9A-Za-z.-]+)?(?:\+[0-9A-Za-z.-]+)?$"
)
_SENSITIVE_KEY_PATTERN = re.compile(
    r'"(?:password|secret|api[_-]?key|token|private[_-]?key)"\s*:', re.IGNORECASE
)

_BLOCKING_SEVERITIES = frozenset({"critical", "high"})


@dataclass(frozen=True)
class Finding:
    """One security finding from the built-in scanners."""

    severity: str
    message: str


def is_valid_range(value: str) -> bool:
    """Whether ``value`` is a semver range such as ``0.x``, ``^1.2.0`` or ``>=1 <2``.

    Examples:
        >>> is_valid_range("1.x")
        True
        >>> is_valid_range("latest-ish")
        False
    """
    if not isinstance(value, str) or not value.strip():
        return False
    for alternative in value.split("||"):
        alternative = alternative.strip()
        if alternative in ("", "*"):
            continue
        parts = alternative.split(" - ")
        if len(parts) == 2:
            comparators = [p.strip() for p in parts]
        else:
            comparators = alternative.split()
        if not all(_COMPARATOR_PATTERN.match(c) for c in comparators):
            return False
    return True


def _lowest_version(value: str) -> tuple[int, int, int] | None:
    match = re.search(r"(\d+)(?:\.(\d+))?(?:\.(\d+))?", value)
    if match is None:
        return None
    return tuple(int(part or 0) for part in match.groups())  # type: ignore[return-value]


class ProjectValidationGate:
    """ValidationGate over a VTEX IO project directory.

    Args:
        settings: Gate settings (manifest path and shell commands).
        project_dir: Project root; the current directory by default.
    """

    def __init__(self, settings: GateSettings | None = None, project_dir: Path | str = ".") -> None:
        self.settings = settings or GateSettings()
        self.project_dir = Path(project_dir)
        self._log = logger.bind(project_dir=str(self.project_dir))

    @property
    def manifest_path(self) -> Path:
        return self.project_dir / self.settings.manifest_path

    # ------------------------------------------------------------------
    # Manifest
    # ------------------------------------------------------------------

    def _read_manifest(self) -> dict[str, Any]:
        try:
            data = json.loads(self.manifest_path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ValidationFailedError(
                "manifest",
                [f"Failed to read {self.settings.manifest_path}: {e}"],
                overridable=False,
            ) from e
        if not isinstance(data, dict):
            raise ValidationFailedError(
                "manifest",
                [f"{self.settings.manifest_path} must contain a JSON object"],
                overridable=False,
            )
        return data

    def get_manifest(self) -> AppManifest:
        """App identity from the manifest.

        Raises:
            ValidationFailedError: If the manifest is missing or unreadable.
        """
        return AppManifest.model_validate(self._read_manifest())

    def validate_manifest(self) -> GateResult:
        start = time.monotonic()
        try:
            data = self._read_manifest()
        except ValidationFailedError as e:
            return GateResult(gate="manifest", status=GateStatus.FAILED, issues=e.issues)

        issues = self._manifest_errors(data)
        warnings = [
            f"Invalid peer dependency version range: {name}@{rng}"
            for name, rng in (data.get("peerDependencies") or {}).items()
            if not is_valid_range(rng)
        ]
        return self._result("manifest", issues, warnings, start)

    def _manifest_errors(self, data: dict[str, Any]) -> list[str]:
        issues: list[str] = []
        if not data.get("name"):
            issues.append("Manifest must have a name field")
        version = data.get("version")
        if not version:
            issues.append("Manifest must have a version field")
        elif parse_version(str(version)) is None:
            issues.append(f"Invalid version format: {version}")
        if not data.get("vendor"):
            issues.append("Manifest must have a vendor field")
        for name, rng in (data.get("builders") or {}).items():
            if not is_valid_range(rng):
                issues.append(f"Invalid builder version range: {name}@{rng}")
        for name, rng in (data.get("dependencies") or {}).items():
            if not is_valid_range(rng):
                issues.append(f"Invalid dependency version range: {name}@{rng}")
        return issues

    def check_dependencies(self) -> GateResult:
        start = time.monotonic()
        try:
            data = self._read_manifest()
        except ValidationFailedError as e:
            return GateResult(gate="dependencies", status=GateStatus.FAILED, issues=e.issues)

        issues = self._dependency_issues(data.get("dependencies") or {})
        result = self._result("dependencies", issues, [], start)
        return self._with_command("dependencies", result)

    def _dependency_issues(self, dependencies: dict[str, str]) -> list[str]:
        issues: list[str] = []
        for name, rng in dependencies.items():
            minimum = MINIMUM_DEPENDENCY_VERSIONS.get(name)
            if minimum is None:
                continue
            lowest = _lowest_version(str(rng))
            if lowest is not None and lowest < minimum[0]:
                issues.append(f"Dependency {name}@{rng} is incompatible: {minimum[1]}")
        return issues

    # ------------------------------------------------------------------
    # Security
    # ------------------------------------------------------------------

    def _findings(self) -> list[Finding]:
        findings = [
            Finding("medium", f"Sensitive file found: {name}")
            for name in SENSITIVE_FILES
            if (self.project_dir / name).exists()
        ]
        try:
            data = self._read_manifest()
        except ValidationFailedError:
            # reported by the manifest gate
            return findings
        for policy in data.get("policies") or []:
            if (
                isinstance(policy, dict)
                and policy.get("name") == "outbound-access"
                and (policy.get("attrs") or {}).get("host") == "*"
            ):
                findings.append(Finding("medium", "Overly permissive outbound access"))
        node_builder = (data.get("builders") or {}).get("node")
        if node_builder and "debug" in json.dumps(node_builder):
            findings.append(Finding("low", "Debug configuration in production"))
        return findings

    def security_scan(self) -> GateResult:
        start = time.monotonic()
        findings = self._findings()
        issues = [f.message for f in findings if f.severity in _BLOCKING_SEVERITIES]
        warnings = [f.message for f in findings if f.severity == "medium"]
        result = self._result(
            "security_scan",
            issues,
            warnings,
            start,
            details={"low": [f.message for f in findings if f.severity == "low"]},
        )
        return self._with_command("security_scan", result)

    def validate_production_readiness(self) -> GateResult:
        start = time.monotonic()
        try:
            data = self._read_manifest()
        except ValidationFailedError as e:
            return GateResult(gate="production_readiness", status=GateStatus.FAILED, issues=e.issues)

        issues = self._manifest_errors(data)
        issues += self._dependency_issues(data.get("dependencies") or {})
        findings = self._findings()
        critical = [f for f in findings if f.severity == "critical"]
        high = [f for f in findings if f.severity == "high"]
        warnings: list[str] = []
        if critical:
            issues.append(f"{len(critical)} critical security vulnerabilities found")
        if high:
            warnings.append(f"{len(high)} high severity security vulnerabilities found")
        details = {} if data.get("policies") else {"note": "No policies defined"}
        result = self._result("production_readiness", issues, warnings, start, details=details)
        return self._with_command("production_readiness", result)

    def check_security_compliance(self) -> GateResult:
        start = time.monotonic()
        findings = self._findings()
        issues: list[str] = []
        warnings: list[str] = []
        for severity in ("critical", "high"):
            count = sum(1 for f in findings if f.severity == severity)
            if count:
                issues.append(f"{count} {severity} severity security vulnerabilities must be fixed")
        medium = sum(1 for f in findings if f.severity == "medium")
        if medium:
            warnings.append(f"{medium} medium severity security vulnerabilities should be reviewed")
        if self.manifest_path.exists() and _SENSITIVE_KEY_PATTERN.search(
            self.manifest_path.read_text()
        ):
            issues.append("Potential sensitive data found in manifest")
        result = self._result("security_compliance", issues, warnings, start)
        return self._with_command("security_compliance", result)

    # ------------------------------------------------------------------
    # Tests and commands
    # ------------------------------------------------------------------

    def run_tests(self, scope: TestScope) -> GateResult:
        command = self.settings.commands.get(scope.value)
        if command is None:
            self._log.info("test_command_not_configured", scope=scope.value)
            return GateResult(
                gate=f"tests.{scope.value}",
                status=GateStatus.SKIPPED,
                issues=[f"No {scope.value} test command configured"],
            )
        return self._run_command(f"tests.{scope.value}", command)

    def _with_command(self, gate: str, result: GateResult) -> GateResult:
        """Merge the configured command for ``gate`` into ``result``."""
        command = self.settings.commands.get(gate)
        if command is None:
            return result
        command_result = self._run_command(gate, command)
        if command_result.status != GateStatus.FAILED:
            return result
        return GateResult(
            gate=gate,
            status=GateStatus.FAILED,
            issues=[*result.issues, *command_result.issues],
            duration_ms=result.duration_ms + command_result.duration_ms,
            details={**result.details, **command_result.details},
        )

    def _run_command(self, gate: str, command: str) -> GateResult:
        timeout_seconds = self.settings.command_timeout_seconds
        with create_span(
            f"vtex_deploy.gate.{gate}",
            attributes={"gate": gate, "timeout_seconds": timeout_seconds},
        ) as span:
            start_time = time.monotonic()
            self._log.info(
                "gate_execution_started",
                gate=gate,
                command=command,
                timeout_seconds=timeout_seconds,
            )
            try:
                result = subprocess.run(
                    command,
                    shell=True,
                    capture_output=True,
                    text=True,
                    timeout=timeout_seconds,
                    cwd=self.project_dir,
                )
            except subprocess.TimeoutExpired:
                duration_ms = int((time.monotonic() - start_time) * 1000)
                span.set_attribute("duration_ms", duration_ms)
                self._log.warning(
                    "gate_execution_timeout",
                    gate=gate,
                    duration_ms=duration_ms,
                    timeout_seconds=timeout_seconds,
                )
                return GateResult(
                    gate=gate,
                    status=GateStatus.FAILED,
                    issues=[f"Gate execution timed out after {timeout_seconds} seconds"],
                    duration_ms=duration_ms,
                )
            except OSError as e:
                duration_ms = int((time.monotonic() - start_time) * 1000)
                return GateResult(
                    gate=gate,
                    status=GateStatus.FAILED,
                    issues=[f"Gate execution error: {sanitize_error_message(str(e))}"],
                    duration_ms=duration_ms,
                )

            duration_ms = int((time.monotonic() - start_time) * 1000)
            span.set_attribute("duration_ms", duration_ms)
            details = {"stdout": result.stdout, "stderr": result.stderr}

            if result.returncode == 0:
                self._log.info("gate_execution_passed", gate=gate, duration_ms=duration_ms)
                return GateResult(
                    gate=gate,
                    status=GateStatus.PASSED,
                    duration_ms=duration_ms,
                    details=details,
                )

            error_msg = f"Gate failed with exit code {result.returncode}"
            if result.stderr:
                error_msg = f"{error_msg}: {sanitize_error_message(result.stderr.strip())}"
            self._log.warning(
                "gate_execution_failed",
                gate=gate,
                duration_ms=duration_ms,
                exit_code=result.returncode,
                error=error_msg,
            )
            return GateResult(
                gate=gate,
                status=GateStatus.FAILED,
                issues=[error_msg],
                duration_ms=duration_ms,
                details=details,
            )

    def _result(
        self,
        gate: str,
        issues: list[str],
        warnings: list[str],
        start: float,
        *,
        details: dict[str, Any] | None = None,
    ) -> GateResult:
        if issues:
            status = GateStatus.FAILED
        elif warnings:
            status = GateStatus.WARNING
        else:
            status = GateStatus.PASSED
        result = GateResult(
            gate=gate,
            status=status,
            issues=issues or warnings,
            duration_ms=int((time.monotonic() - start) * 1000),
            details=details or {},
        )
        self._log.info("gate_checked", gate=gate, status=status.value, issues=len(result.issues))
        return result


__all__: list[str] = [
    "Finding",
    "MINIMUM_DEPENDENCY_VERSIONS",
    "ProjectValidationGate",
    "SENSITIVE_FILES",
    "is_valid_range",
]
