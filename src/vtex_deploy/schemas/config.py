"""Configuration schemas for vtex-deploy.

Defines the YAML-backed ``DeployerConfig`` and the explicit option structs
passed to each orchestrator operation.

Example YAML:
    environments:
      qa:
        account: mystore
        workspace: qa
      production:
        account: mystore
        workspace: master
        verification_workspace: prodtest
        auth_token_env: VTEX_PROD_TOKEN
    deployment:
      rollback_on_failure: true
    notifications:
      webhooks:
        - url: https://hooks.slack.com/services/T00/B00/XXX
          events: [deploy, rollback]
"""

from __future__ import annotations

import os

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator

from vtex_deploy.errors import ConfigurationError
from vtex_deploy.schemas.deploy import Environment

DEFAULT_TIMEOUT_SECONDS: dict[Environment, int] = {
    Environment.DEVELOPMENT: 600,
    Environment.QA: 600,
    Environment.PRODUCTION: 1200,
}
"""Default deployment budget per environment."""

DEFAULT_AUTH_TOKEN_ENV = "VTEX_AUTH_TOKEN"

# Valid webhook event types
VALID_WEBHOOK_EVENTS = frozenset({"deploy", "rollback"})

# Keys accepted in gates.commands
VALID_GATE_COMMANDS = frozenset(
    {
        "unit",
        "integration",
        "all",
        "smoke",
        "security_scan",
        "dependencies",
        "production_readiness",
        "security_compliance",
    }
)


class EnvironmentConfig(BaseModel):
    """Platform target for one environment.

    Attributes:
        account: VTEX account name.
        workspace: Workspace deployments target.
        auth_token: Explicit auth token (prefer ``auth_token_env``).
        auth_token_env: Environment variable holding the auth token.
        verification_workspace: Workspace production releases are installed
            into before promotion.
        timeout_seconds: Total budget for one deployment; defaults per
            environment when unset.
        step_timeout_seconds: Upper bound for any single step.

    Examples:
        >>> config = EnvironmentConfig(account="mystore", workspace="qa")
        >>> config.verification_workspace
        'prodtest'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    account: str = Field(..., min_length=1, description="VTEX account name")
    workspace: str = Field(default="master", min_length=1, description="Target workspace")
    auth_token: SecretStr | None = Field(default=None, description="Explicit auth token")
    auth_token_env: str = Field(
        default=DEFAULT_AUTH_TOKEN_ENV,
        min_length=1,
        description="Environment variable holding the auth token",
    )
    verification_workspace: str = Field(
        default="prodtest",
        min_length=1,
        description="Workspace production releases are verified in",
    )
    timeout_seconds: int | None = Field(
        default=None,
        ge=1,
        description="Deployment budget in seconds",
    )
    step_timeout_seconds: int | None = Field(
        default=None,
        ge=1,
        description="Upper bound for a single step in seconds",
    )

    def resolve_auth_token(self) -> str:
        """Return the explicit token or the value of ``auth_token_env``.

        Raises:
            ConfigurationError: If no token is available.
        """
        if self.auth_token is not None:
            return self.auth_token.get_secret_value()
        token = os.environ.get(self.auth_token_env)
        if not token:
            raise ConfigurationError(
                f"No auth token configured for account {self.account}: "
                f"set auth_token or the {self.auth_token_env} environment variable"
            )
        return token

    def budget_seconds(self, environment: Environment) -> int:
        return self.timeout_seconds or DEFAULT_TIMEOUT_SECONDS[environment]


class DeploymentSettings(BaseModel):
    """Orchestrator behavior shared by all environments."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    rollback_on_failure: bool = Field(
        default=True, description="Auto-rollback failed production deployments"
    )
    lease_timeout_seconds: float = Field(
        default=30.0, ge=0, description="Wait for a busy workspace lease"
    )
    timed_out_step_wait_seconds: float = Field(
        default=60.0,
        ge=0,
        description="Wait for a timed-out step to return before rolling back",
    )
    history_limit: int = Field(
        default=10, ge=1, description="Default number of history records"
    )


class GitSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    production_branch: str = Field(
        default="main", min_length=1, description="Branch production deploys from"
    )


class GateSettings(BaseModel):
    """Project validation gate settings.

    Attributes:
        manifest_path: Path of the app manifest, relative to the project.
        commands: Shell commands backing each gate; unset gates are SKIPPED.
        command_timeout_seconds: Timeout for any single gate command.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    manifest_path: str = Field(default="manifest.json", description="Manifest path")
    commands: dict[str, str] = Field(
        default_factory=dict, description="Gate name to shell command"
    )
    command_timeout_seconds: int = Field(
        default=900, ge=1, le=7200, description="Gate command timeout"
    )

    @field_validator("commands")
    @classmethod
    def validate_command_keys(cls, v: dict[str, str]) -> dict[str, str]:
        """Validate all keys name a known gate."""
        invalid = set(v) - VALID_GATE_COMMANDS
        if invalid:
            raise ValueError(
                f"Invalid gate commands: {invalid}. Valid gates: {sorted(VALID_GATE_COMMANDS)}"
            )
        return v


class WebhookConfig(BaseModel):
    """Webhook notification configuration.

    Attributes:
        url: Webhook endpoint URL.
        events: Event types to notify (deploy, rollback).
        headers: Custom headers (e.g., for authentication).
        timeout_seconds: Request timeout in seconds.
        retry_count: Number of retries on failure.

    Examples:
        >>> config = WebhookConfig(
        ...     url="https://hooks.slack.com/services/T00/B00/XXX",
        ...     events=["deploy"],
        ... )
        >>> config.retry_count
        3
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str = Field(..., min_length=1, description="Webhook endpoint URL")
    events: list[str] = Field(
        default_factory=lambda: sorted(VALID_WEBHOOK_EVENTS),
        min_length=1,
        description="Event types to notify",
    )
    headers: dict[str, str] | None = Field(
        default=None, description="Custom headers for requests"
    )
    timeout_seconds: int = Field(
        default=30, ge=1, le=300, description="Request timeout in seconds"
    )
    retry_count: int = Field(
        default=3, ge=0, le=10, description="Number of retries on failure"
    )

    @field_validator("events")
    @classmethod
    def validate_events(cls, v: list[str]) -> list[str]:
        """Validate all events are valid webhook event types."""
        invalid = set(v) - VALID_WEBHOOK_EVENTS
        if invalid:
            raise ValueError(
                f"Invalid event types: {invalid}. Valid types: {sorted(VALID_WEBHOOK_EVENTS)}"
            )
        return v


class NotificationSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = Field(default=True, description="Send notifications")
    webhooks: list[WebhookConfig] = Field(
        default_factory=list, description="Webhook endpoints"
    )


class LoggingSettings(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    level: str = Field(default="INFO", description="Log level name")
    json_output: bool = Field(default=False, description="Render logs as JSON")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level


class DeployerConfig(BaseModel):
    """Top-level vtex-deploy configuration.

    Examples:
        >>> config = DeployerConfig.model_validate(
        ...     {"environments": {"qa": {"account": "mystore", "workspace": "qa"}}}
        ... )
        >>> config.environment(Environment.QA).account
        'mystore'
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    environments: dict[Environment, EnvironmentConfig] = Field(
        default_factory=dict, description="Platform target per environment"
    )
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    git: GitSettings = Field(default_factory=GitSettings)
    gates: GateSettings = Field(default_factory=GateSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    def environment(self, environment: Environment) -> EnvironmentConfig:
        """Return the target for ``environment``.

        Raises:
            ConfigurationError: If the environment is not configured.
        """
        try:
            return self.environments[environment]
        except KeyError:
            raise ConfigurationError(
                f"Environment '{environment.value}' is not configured"
            ) from None


# =============================================================================
# Per-operation options
# =============================================================================


class QADeployOptions(BaseModel):
    """Options for a QA deployment.

    Attributes:
        branch: Branch to switch to before deploying (current branch if None).
        workspace: Workspace override (configured QA workspace if None).
        skip_tests: Skip the unit test gate.
        force: Deploy despite failed gates or an unclean working tree.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    branch: str | None = None
    workspace: str | None = None
    skip_tests: bool = False
    force: bool = False


class ProductionDeployOptions(BaseModel):
    """Options for a production deployment.

    Attributes:
        version: Input version; any prerelease qualifier is stripped.
        branch: Branch override (``git.production_branch`` if None).
        force: Accept gate warnings and an unclean working tree.
        skip_tests: Skip the full test suite; honored only with ``emergency``.
        emergency: Bypass failed readiness and compliance checks.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    version: str = Field(..., min_length=1)
    branch: str | None = None
    force: bool = False
    skip_tests: bool = False
    emergency: bool = False


class RollbackOptions(BaseModel):
    """Options for a standalone rollback.

    The target is ``version`` when given, else the version of
    ``deployment_id``, else the previous registered version of the app.
    Confirmation bypasses (``--force``, ``--emergency``) are CLI flags and
    never reach the rollback itself.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    environment: Environment = Environment.QA
    version: str | None = None
    deployment_id: str | None = None
    workspace: str | None = None
    reason: str | None = None


__all__: list[str] = [
    "DEFAULT_TIMEOUT_SECONDS",
    "DeployerConfig",
    "DeploymentSettings",
    "EnvironmentConfig",
    "GateSettings",
    "GitSettings",
    "LoggingSettings",
    "NotificationSettings",
    "ProductionDeployOptions",
    "QADeployOptions",
    "RollbackOptions",
    "VALID_GATE_COMMANDS",
    "VALID_WEBHOOK_EVENTS",
    "WebhookConfig",
]
