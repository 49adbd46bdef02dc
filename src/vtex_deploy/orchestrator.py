"""Deployment orchestrator: the QA and production release state machine.

Both paths are an ordered list of named ``Step`` objects run through a
``StepRunner``:

    INIT -> VALIDATING -> AUTHENTICATING -> RELEASING -> INSTALLING -> VERIFYING
         -> SUCCESS | FAILED | CANCELLED

Production adds a ROLLING_BACK sub-path entered on failure, before the
record turns FAILED. The (account, workspace) lease is taken between
VALIDATING and AUTHENTICATING and released at the terminal transition.

Every terminal transition produces exactly one notification carrying a
snapshot of the record. The error a caller observes is always the one that
failed the deployment; an auto-rollback failure is logged on the record
and never replaces it.

Example:
    >>> orchestrator = DeploymentOrchestrator(
    ...     config, platform=VTEXClient(), git=GitVersionControl(), gate=gate
    ... )  # doctest: +SKIP
    >>> record = orchestrator.deploy_to_qa(QADeployOptions(skip_tests=True))  # doctest: +SKIP
    >>> record.status  # doctest: +SKIP
    <DeployStatus.SUCCESS: 'success'>
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING

import structlog

from vtex_deploy.errors import (
    DeployError,
    DeploymentCancelledError,
    ErrorKind,
    LeaseUnavailableError,
    ValidationFailedError,
)
from vtex_deploy.health import DEFAULT_HEALTH_CHECK_TIMEOUT, HealthChecker, HealthStatus
from vtex_deploy.ledger import DeploymentLedger
from vtex_deploy.lease import WorkspaceLeaseManager
from vtex_deploy.notifications import LoggingNotificationSink, send_deployment
from vtex_deploy.rollback import RollbackManager
from vtex_deploy.schemas.config import (
    EnvironmentConfig,
    ProductionDeployOptions,
    QADeployOptions,
    RollbackOptions,
)
from vtex_deploy.schemas.deploy import (
    DeploymentRecord,
    DeployStatus,
    Environment,
    GateResult,
    GateStatus,
    ReleaseTag,
    RollbackRecord,
    TestScope,
)
from vtex_deploy.steps import CancellationToken, Phase, Step, StepRunner
from vtex_deploy.telemetry.sanitization import sanitize_error_message
from vtex_deploy.telemetry.tracing import create_span
from vtex_deploy.verification import app_reference, verify_installation
from vtex_deploy.versioning import (
    generate_deployment_id,
    qa_version,
    stable_version,
    suggest_next_version,
)

if TYPE_CHECKING:
    from vtex_deploy.contracts import (
        NotificationSink,
        PlatformClient,
        ValidationGate,
        VersionControl,
    )
    from vtex_deploy.schemas.config import DeployerConfig

logger = structlog.get_logger(__name__)

VALIDATION_CHECKS = ("manifest", "dependencies", "security", "production", "compliance", "tests")
DEFAULT_VALIDATION_CHECKS = VALIDATION_CHECKS[:3]


class DeploymentOrchestrator:
    """Sequences QA and production deployments against the platform.

    Args:
        config: Deployer configuration.
        platform: Platform control client.
        git: Version control working copy.
        gate: Project validation gates.
        ledger: Deployment ledger (in-memory by default).
        notifier: Notification sink (process log by default).
        leases: Workspace lease manager shared by concurrent deployments.
        rollback_manager: Rollback subsystem (built from the above by default).
    """

    def __init__(
        self,
        config: DeployerConfig,
        *,
        platform: PlatformClient,
        git: VersionControl,
        gate: ValidationGate,
        ledger: DeploymentLedger | None = None,
        notifier: NotificationSink | None = None,
        leases: WorkspaceLeaseManager | None = None,
        rollback_manager: RollbackManager | None = None,
    ) -> None:
        self.config = config
        self._platform = platform
        self._git = git
        self._gate = gate
        self._ledger = ledger or DeploymentLedger()
        self._notifier: NotificationSink = notifier or LoggingNotificationSink()
        self._leases = leases or WorkspaceLeaseManager()
        self._rollback = rollback_manager or RollbackManager(
            config,
            platform=platform,
            gate=gate,
            ledger=self._ledger,
            notifier=self._notifier,
            leases=self._leases,
        )

        self._log = logger.bind(
            environments=sorted(env.value for env in config.environments),
            rollback_on_failure=config.deployment.rollback_on_failure,
        )
        self._log.debug("deployment_orchestrator_initialized")

    @property
    def ledger(self) -> DeploymentLedger:
        return self._ledger

    @property
    def rollback_manager(self) -> RollbackManager:
        return self._rollback

    # ------------------------------------------------------------------
    # QA path
    # ------------------------------------------------------------------

    def deploy_to_qa(
        self,
        options: QADeployOptions | None = None,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> DeploymentRecord:
        """Deploy the current project to the QA workspace.

        Returns:
            Snapshot of the successful deployment record.

        Raises:
            ConfigurationError: If QA is not configured.
            Exception: The error of the step that failed, unchanged.
        """
        options = options or QADeployOptions()
        env_config = self.config.environment(Environment.QA)
        workspace = options.workspace or env_config.workspace
        record = self._start_record(Environment.QA, env_config, workspace)

        steps_before_lease = [
            self._working_tree_step(record, options.force),
            self._branch_step(record, options.branch),
            self._prerequisites_step(env_config.account, workspace),
        ]

        def derive_version() -> str:
            manifest = self._gate.get_manifest()
            version = qa_version(manifest.version)
            record.app_name = manifest.name
            record.version = version
            return f"Generated QA version: {version}"

        steps_after_lease = [
            self._authenticate_step(env_config, f"Authenticated with VTEX account: {env_config.account}"),
            self._use_workspace_step(workspace, f"Switched to workspace: {workspace}"),
            Step(
                "validate_manifest",
                Phase.VALIDATING,
                lambda: self._check_gates(
                    record,
                    [self._gate.validate_manifest, self._gate.check_dependencies],
                    production=False,
                    force=options.force,
                ),
                failure_kind=ErrorKind.VALIDATION,
                message="Manifest and dependencies validated",
            ),
        ]
        if options.skip_tests:
            steps_after_lease.append(
                Step("skip_tests", Phase.VALIDATING, lambda: None, message="Unit tests skipped")
            )
        else:
            steps_after_lease.append(
                Step(
                    "unit_tests",
                    Phase.VALIDATING,
                    lambda: self._check_gates(
                        record,
                        [lambda: self._gate.run_tests(TestScope.UNIT)],
                        production=False,
                        force=options.force,
                    ),
                    failure_kind=ErrorKind.VALIDATION,
                    message="Unit tests passed",
                )
            )
        steps_after_lease += [
            Step("derive_version", Phase.RELEASING, derive_version, failure_kind=ErrorKind.VALIDATION),
            Step(
                "release",
                Phase.RELEASING,
                lambda: self._release(record, ReleaseTag.BETA),
                failure_kind=ErrorKind.RELEASE,
            ),
            Step(
                "install",
                Phase.INSTALLING,
                lambda: self._install(record, "Installed app"),
                failure_kind=ErrorKind.INSTALL,
            ),
            Step(
                "verify",
                Phase.VERIFYING,
                lambda: self._verify(record),
                failure_kind=ErrorKind.VERIFICATION,
                message="Installation verified successfully",
            ),
        ]

        return self._execute(
            record,
            env_config,
            steps_before_lease,
            steps_after_lease,
            span_name="vtex_deploy.deploy.qa",
            cancel_token=cancel_token,
            failure_prefix="Deployment failed",
            auto_rollback=False,
        )

    # ------------------------------------------------------------------
    # Production path
    # ------------------------------------------------------------------

    def deploy_to_production(
        self,
        options: ProductionDeployOptions,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> DeploymentRecord:
        """Release ``options.version`` as stable and verify it in the verification workspace.

        On failure the previous registered version is reinstalled (unless
        disabled) and the original error is re-raised.

        Returns:
            Snapshot of the successful deployment record.

        Raises:
            ConfigurationError: If production is not configured.
            Exception: The error of the step that failed, unchanged.
        """
        env_config = self.config.environment(Environment.PRODUCTION)
        workspace = env_config.verification_workspace
        record = self._start_record(
            Environment.PRODUCTION, env_config, workspace, version=options.version
        )
        branch = options.branch or self.config.git.production_branch

        steps_before_lease = [
            self._working_tree_step(record, options.force),
            self._branch_step(record, branch),
            self._prerequisites_step(env_config.account, workspace),
            Step(
                "production_readiness",
                Phase.VALIDATING,
                lambda: self._check_gates(
                    record,
                    [self._gate.validate_production_readiness, self._gate.check_security_compliance],
                    production=True,
                    force=options.force,
                    emergency=options.emergency,
                ),
                failure_kind=ErrorKind.VALIDATION,
                message="Production prerequisites validated",
            ),
        ]

        def derive_version() -> str:
            manifest = self._gate.get_manifest()
            version = stable_version(options.version)
            record.app_name = manifest.name
            record.version = version
            return f"Derived stable version: {version}"

        steps_after_lease = [
            self._authenticate_step(
                env_config, f"Authenticated with production account: {env_config.account}"
            ),
            self._use_workspace_step(workspace, f"Switched to {workspace} workspace"),
            Step(
                "production_validations",
                Phase.VALIDATING,
                lambda: self._check_gates(
                    record,
                    [
                        self._gate.validate_manifest,
                        self._gate.check_dependencies,
                        self._gate.security_scan,
                    ],
                    production=True,
                    force=options.force,
                ),
                failure_kind=ErrorKind.VALIDATION,
                message="Enhanced production validations completed",
            ),
        ]
        if options.skip_tests and options.emergency:
            steps_after_lease.append(
                Step(
                    "skip_tests",
                    Phase.VALIDATING,
                    lambda: None,
                    message="Full test suite skipped (emergency mode)",
                )
            )
        else:
            if options.skip_tests:
                record.append_log(
                    "Ignoring skip-tests: production tests can only be skipped in emergency mode"
                )
            steps_after_lease.append(
                Step(
                    "full_test_suite",
                    Phase.VALIDATING,
                    lambda: self._check_gates(
                        record,
                        [lambda: self._gate.run_tests(TestScope.ALL)],
                        production=True,
                        force=options.force,
                    ),
                    failure_kind=ErrorKind.VALIDATION,
                    message="Full test suite passed",
                )
            )
        steps_after_lease += [
            Step("derive_version", Phase.RELEASING, derive_version, failure_kind=ErrorKind.VALIDATION),
            Step(
                "release",
                Phase.RELEASING,
                lambda: self._release(record, ReleaseTag.STABLE),
                failure_kind=ErrorKind.RELEASE,
            ),
            Step(
                "install",
                Phase.INSTALLING,
                lambda: self._install(record, f"Installed in {workspace}"),
                failure_kind=ErrorKind.INSTALL,
            ),
            Step(
                "smoke_tests",
                Phase.VERIFYING,
                lambda: self._check_gates(
                    record,
                    [lambda: self._gate.run_tests(TestScope.SMOKE)],
                    production=True,
                    force=options.force,
                ),
                failure_kind=ErrorKind.VERIFICATION,
                message="Smoke tests passed",
            ),
            Step(
                "verify",
                Phase.VERIFYING,
                lambda: self._verify(record),
                failure_kind=ErrorKind.VERIFICATION,
                message="Production installation verified",
            ),
        ]

        return self._execute(
            record,
            env_config,
            steps_before_lease,
            steps_after_lease,
            span_name="vtex_deploy.deploy.production",
            cancel_token=cancel_token,
            failure_prefix="Production deployment failed",
            auto_rollback=True,
        )

    # ------------------------------------------------------------------
    # Rollback and queries
    # ------------------------------------------------------------------

    def rollback(self, options: RollbackOptions) -> RollbackRecord:
        """Standalone rollback; see ``RollbackManager.rollback_with_options``."""
        return self._rollback.rollback_with_options(options)

    def suggest_production_version(self) -> str:
        """Latest git tag with the patch incremented, ``1.0.0`` without tags."""
        return suggest_next_version(self._git.get_latest_tag())

    def get_deploy_status(self, deployment_id: str) -> DeploymentRecord:
        """Current snapshot of a deployment.

        Raises:
            DeploymentNotFoundError: If the id is unknown.
        """
        return self._ledger.get_status(deployment_id)

    def get_deployment_history(
        self,
        environment: Environment,
        limit: int | None = None,
    ) -> list[DeploymentRecord]:
        """Most recent deployments for ``environment``, newest first."""
        if limit is None:
            limit = self.config.deployment.history_limit
        return self._ledger.get_history(environment, limit)

    # ------------------------------------------------------------------
    # Standalone checks
    # ------------------------------------------------------------------

    def validate_project(self, checks: Iterable[str] | None = None) -> list[GateResult]:
        """Run validation gates outside a deployment.

        Checks are ``manifest``, ``dependencies``, ``security``, ``production``,
        ``compliance`` and ``tests`` (unit scope); the first three run by
        default. A gate that raises is reported as FAILED with its sanitized
        error, so every requested check gets a result.

        Raises:
            ValueError: If a check name is unknown.
        """
        gates: dict[str, Callable[[], GateResult]] = {
            "manifest": self._gate.validate_manifest,
            "dependencies": self._gate.check_dependencies,
            "security": self._gate.security_scan,
            "production": self._gate.validate_production_readiness,
            "compliance": self._gate.check_security_compliance,
            "tests": lambda: self._gate.run_tests(TestScope.UNIT),
        }
        selected = list(checks) if checks is not None else list(DEFAULT_VALIDATION_CHECKS)
        unknown = [name for name in selected if name not in gates]
        if unknown:
            raise ValueError(f"Unknown validation check: {', '.join(unknown)}")

        results: list[GateResult] = []
        with create_span(
            "vtex_deploy.validate", attributes={"validate.checks": ",".join(selected)}
        ):
            for name in selected:
                try:
                    results.append(gates[name]())
                except ValidationFailedError as e:
                    results.append(GateResult(gate=name, status=GateStatus.FAILED, issues=e.issues))
                except Exception as e:
                    issue = sanitize_error_message(str(e))
                    results.append(GateResult(gate=name, status=GateStatus.FAILED, issues=[issue]))
        self._log.info(
            "project_validated",
            checks=selected,
            failed=[r.gate for r in results if r.status == GateStatus.FAILED],
        )
        return results

    def check_health(
        self,
        services: Iterable[str] | None = None,
        timeout: float = DEFAULT_HEALTH_CHECK_TIMEOUT,
    ) -> dict[str, HealthStatus]:
        """Health of the configuration, the VTEX toolbelt, git and the manifest."""
        checker = HealthChecker(
            self.config, platform=self._platform, git=self._git, gate=self._gate
        )
        return checker.check_all(services, timeout)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def _start_record(
        self,
        environment: Environment,
        env_config: EnvironmentConfig,
        workspace: str,
        *,
        version: str | None = None,
    ) -> DeploymentRecord:
        record = DeploymentRecord(
            id=generate_deployment_id(),
            environment=environment,
            workspace=workspace,
            account=env_config.account,
            version=version,
        )
        record.transition(DeployStatus.IN_PROGRESS)
        self._ledger.record(record)
        return record

    def _execute(
        self,
        record: DeploymentRecord,
        env_config: EnvironmentConfig,
        steps_before_lease: list[Step],
        steps_after_lease: list[Step],
        *,
        span_name: str,
        cancel_token: CancellationToken | None,
        failure_prefix: str,
        auto_rollback: bool,
    ) -> DeploymentRecord:
        log = self._log.bind(deployment_id=record.id, environment=record.environment.value)
        runner = StepRunner(
            record,
            self._ledger,
            budget_seconds=env_config.budget_seconds(record.environment),
            step_timeout_seconds=env_config.step_timeout_seconds,
            cancel_token=cancel_token,
        )
        lease_held = False

        with create_span(
            span_name,
            attributes={
                "deploy.id": record.id,
                "deploy.environment": record.environment.value,
                "deploy.workspace": record.workspace,
                "deploy.account": record.account,
            },
        ) as span:
            span_context = span.get_span_context()
            if span_context.is_valid:
                record.trace_id = format(span_context.trace_id, "032x")
            log.info("deployment_started", workspace=record.workspace, version=record.version)

            try:
                runner.run_all(steps_before_lease)
                if runner.cancel_token.cancelled:
                    raise DeploymentCancelledError(record.id, before_step="acquire_lease")
                self._leases.acquire(
                    env_config.account,
                    record.workspace,
                    record.id,
                    timeout=self.config.deployment.lease_timeout_seconds,
                )
                lease_held = True
                runner.run_all(steps_after_lease)
            except Exception as e:
                kind = _classify(e, runner)
                record.error = str(e)
                record.error_kind = kind
                cancelled = isinstance(e, DeploymentCancelledError)
                if cancelled:
                    record.append_log(f"Deployment cancelled: {e}")
                else:
                    record.append_log(f"{failure_prefix}: {e}")

                # a timed-out action may still be talking to the platform
                still_running = runner.wait_for_timed_out_steps(
                    self.config.deployment.timed_out_step_wait_seconds
                )
                for step in still_running:
                    record.append_log(f"Step {step.name} still running after its timeout")

                if auto_rollback and not cancelled:
                    runner.phase = Phase.ROLLING_BACK
                    self._handle_auto_rollback(record, env_config, e, still_running)

                record.transition(DeployStatus.CANCELLED if cancelled else DeployStatus.FAILED)
                self._ledger.record(record)
                if lease_held:
                    self._leases.release(env_config.account, record.workspace, record.id)
                send_deployment(self._notifier, record)
                log.error(
                    "deployment_failed",
                    status=record.status.value,
                    error=sanitize_error_message(str(e)),
                    error_kind=kind.value,
                    failed_step=runner.failed_step.name if runner.failed_step else None,
                    rollback_version=record.rollback_version,
                )
                raise

            record.transition(DeployStatus.SUCCESS)
            self._ledger.record(record)
            self._leases.release(env_config.account, record.workspace, record.id)
            send_deployment(self._notifier, record)
            log.info(
                "deployment_completed",
                version=record.version,
                duration_ms=record.duration_ms,
            )
            return record.model_copy(deep=True)

    def _handle_auto_rollback(
        self,
        record: DeploymentRecord,
        env_config: EnvironmentConfig,
        error: Exception,
        still_running: list[Step],
    ) -> None:
        if not self.config.deployment.rollback_on_failure:
            record.append_log("Auto-rollback disabled")
            return
        if isinstance(error, LeaseUnavailableError):
            record.append_log("Auto-rollback skipped: workspace lease not held")
            return
        if still_running:
            # rolling back now could be overwritten when the step returns
            names = ", ".join(step.name for step in still_running)
            record.append_log(f"Auto-rollback failed: step {names} still running")
            self._log.error(
                "auto_rollback_failed",
                deployment_id=record.id,
                still_running=[step.name for step in still_running],
            )
            return

        self._log.info("auto_rollback_started", deployment_id=record.id)
        record.append_log("Initiating auto-rollback")
        try:
            with self._leases.hold(
                env_config.account,
                record.workspace,
                record.id,
                timeout=self.config.deployment.lease_timeout_seconds,
            ):
                self._platform.authenticate(env_config.resolve_auth_token())
                self._platform.use_workspace(record.workspace)
                app_name = record.app_name or self._gate.get_manifest().name
                target = self._rollback.previous_version(app_name)
                record.rollback_version = target
                record.append_log(f"Rolling back to previous version: {target}")
                self._rollback.rollback(
                    target,
                    record.environment,
                    workspace=record.workspace,
                    reason=f"Auto-rollback after failed deployment {record.id}",
                    deployment_id=record.id,
                    lease_owner=record.id,
                )
        except Exception as rollback_error:
            record.append_log(f"Auto-rollback failed: {rollback_error}")
            self._log.error(
                "auto_rollback_failed",
                deployment_id=record.id,
                error=sanitize_error_message(str(rollback_error)),
            )
            return
        record.append_log("Auto-rollback completed")
        self._log.info("auto_rollback_completed", deployment_id=record.id, version=record.rollback_version)

    # ------------------------------------------------------------------
    # Step builders and actions
    # ------------------------------------------------------------------

    def _working_tree_step(self, record: DeploymentRecord, force: bool) -> Step:
        def check() -> str:
            if self._git.is_clean():
                return "Working tree is clean"
            if not force:
                raise ValidationFailedError(
                    "clean_tree", ["Working tree has uncommitted changes"]
                )
            return "Working tree has uncommitted changes; continuing (force)"

        return Step("working_tree", Phase.VALIDATING, check, failure_kind=ErrorKind.VERSION_CONTROL)

    def _branch_step(self, record: DeploymentRecord, branch: str | None) -> Step:
        def select() -> str:
            current = self._git.get_current_branch()
            if branch is None or branch == current:
                return f"Using branch: {current}"
            self._git.switch_branch(branch)
            return f"Switched from branch {current} to {branch}"

        return Step("branch", Phase.VALIDATING, select, failure_kind=ErrorKind.VERSION_CONTROL)

    def _prerequisites_step(self, account: str, workspace: str) -> Step:
        def validate() -> None:
            self._platform.validate_cli()
            self._platform.validate_account(account)
            self._platform.validate_workspace(workspace)

        return Step(
            "prerequisites",
            Phase.VALIDATING,
            validate,
            failure_kind=ErrorKind.PLATFORM,
            message="Prerequisites validated successfully",
        )

    def _authenticate_step(self, env_config: EnvironmentConfig, message: str) -> Step:
        def authenticate() -> None:
            self._platform.authenticate(env_config.resolve_auth_token())

        return Step(
            "authenticate",
            Phase.AUTHENTICATING,
            authenticate,
            failure_kind=ErrorKind.AUTHENTICATION,
            message=message,
        )

    def _use_workspace_step(self, workspace: str, message: str) -> Step:
        def use_workspace() -> None:
            self._platform.use_workspace(workspace)

        return Step("use_workspace", Phase.AUTHENTICATING, use_workspace, message=message)

    def _check_gates(
        self,
        record: DeploymentRecord,
        gates: list[Callable[[], GateResult]],
        *,
        production: bool,
        force: bool,
        emergency: bool = False,
    ) -> None:
        """Run ``gates`` in order and apply the environment's gate policy.

        QA: FAILED blocks unless ``force``; WARNING is logged.
        Production: FAILED always blocks, except that ``emergency`` bypasses
        the readiness and compliance gates; WARNING blocks unless ``force``.
        """
        for run_gate in gates:
            result = run_gate()
            if result.status == GateStatus.FAILED:
                if production:
                    if emergency:
                        record.append_log(
                            f"Gate {result.gate} failed; bypassed in emergency mode: "
                            + "; ".join(result.issues)
                        )
                        continue
                    raise ValidationFailedError(result.gate, result.issues, overridable=False)
                if force:
                    record.append_log(
                        f"Gate {result.gate} failed; continuing (force): " + "; ".join(result.issues)
                    )
                    continue
                raise ValidationFailedError(result.gate, result.issues)
            if result.status == GateStatus.WARNING:
                if production and not force:
                    raise ValidationFailedError(result.gate, result.issues)
                record.append_log(
                    f"Gate {result.gate} passed with warnings: " + "; ".join(result.issues)
                )
            elif result.status == GateStatus.SKIPPED:
                record.append_log(f"Gate {result.gate} skipped")

    def _release(self, record: DeploymentRecord, tag: ReleaseTag) -> str:
        version = _require_version(record)
        self._platform.release(version, tag)
        return f"Created {tag.value} release: {version}"

    def _install(self, record: DeploymentRecord, prefix: str) -> str:
        reference = app_reference(_require_app(record), _require_version(record))
        self._platform.install_app(reference)
        return f"{prefix}: {reference}"

    def _verify(self, record: DeploymentRecord) -> None:
        verify_installation(self._platform, _require_app(record), _require_version(record))


def _require_version(record: DeploymentRecord) -> str:
    if record.version is None:
        raise RuntimeError(f"Deployment {record.id} has no resolved version")
    return record.version


def _require_app(record: DeploymentRecord) -> str:
    if record.app_name is None:
        raise RuntimeError(f"Deployment {record.id} has no resolved app name")
    return record.app_name


def _classify(error: Exception, runner: StepRunner) -> ErrorKind:
    if runner.failure_kind is not None:
        return runner.failure_kind
    if isinstance(error, DeployError):
        return error.kind
    return ErrorKind.PLATFORM


__all__: list[str] = ["DEFAULT_VALIDATION_CHECKS", "VALIDATION_CHECKS", "DeploymentOrchestrator"]
