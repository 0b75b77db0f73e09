"""
Release pipeline.

Drives one release through build, migrate, deploy and health check on a
single environment. Stages run strictly in order; the first stage failure
moves the release to Failed and stops the pipeline. Completed build, migrate
and deploy stages are recorded in the stage ledger, so re-running one for the
same revision reuses the recorded output instead of repeating the side effect.
The health check probes on every run.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from .collaborators import Collaborators
from .config import HealthCheckPolicy, StagePolicies, StagePolicy
from .enums import HealthStatus, PipelineStage, ReleaseStatus
from .events import TransitionEventBus
from .exceptions import (
    BuildError,
    ConfigurationError,
    DeployError,
    HealthCheckTimeout,
    MigrationError,
    ReleaseStateError,
    StageError,
)
from .metrics import PromoterMetrics
from .models import Environment, EnvironmentState, MigrationSet, Release
from .store import StateStore

T = TypeVar("T")
logger = logging.getLogger(__name__)

STATUS_ORDER = {
    ReleaseStatus.PENDING: 0,
    ReleaseStatus.BUILDING: 1,
    ReleaseStatus.MIGRATING: 2,
    ReleaseStatus.DEPLOYING: 3,
    ReleaseStatus.HEALTH_CHECKING: 4,
}

# Stages with side effects; their recorded output is reused instead of repeating them
REPLAYABLE_STAGES = (PipelineStage.BUILD, PipelineStage.MIGRATE, PipelineStage.DEPLOY)


class ReleasePipeline:
    """Sequential stage runner with bounded timeouts and retries."""

    def __init__(
        self,
        collaborators: Collaborators,
        store: StateStore,
        event_bus: TransitionEventBus,
        policies: StagePolicies | None = None,
        health: HealthCheckPolicy | None = None,
        metrics: PromoterMetrics | None = None,
    ):
        self.collaborators = collaborators
        self.store = store
        self.event_bus = event_bus
        self.policies = policies or StagePolicies()
        self.health = health or HealthCheckPolicy()
        self.metrics = metrics

        self._stage_handlers: dict[
            PipelineStage, Callable[[Environment, Release], Awaitable[dict[str, Any]]]
        ] = {
            PipelineStage.BUILD: self._build,
            PipelineStage.MIGRATE: self._migrate,
            PipelineStage.DEPLOY: self._deploy,
            PipelineStage.HEALTH_CHECK: self._health_check,
        }

    async def run(self, state: EnvironmentState, release: Release) -> Release:
        """Run ``release`` to Healthy or Failed, resuming from its current status."""
        if not release.status.is_active:
            raise ReleaseStateError(
                f"Release {release.release_id} is {release.status.value} and cannot run",
                environment=release.environment,
                revision_id=release.revision_id,
            )
        if release.environment != state.name:
            raise ReleaseStateError(
                f"Release {release.release_id} belongs to {release.environment}, not {state.name}",
                environment=state.name,
                revision_id=release.revision_id,
            )

        state.current_release = release
        if release.status == ReleaseStatus.PENDING:
            self.store.ledger.retain_only(state.name, release.revision_id)
        self.store.checkpoint()

        logger.info(
            f"Starting pipeline for revision {release.revision_id} on {state.name} "
            f"from {release.status.value}"
        )

        for stage in PipelineStage:
            if STATUS_ORDER[release.status] > STATUS_ORDER[stage.status]:
                continue

            if release.status != stage.status:
                await self.transition(state, release, stage.status)

            try:
                await self.run_stage(state, release, stage)
            except StageError as e:
                release.error = str(e)
                release.failed_stage = stage.value
                logger.error(
                    f"Stage {stage.value} failed for revision {release.revision_id} "
                    f"on {state.name}: {e}"
                )
                await self.transition(state, release, ReleaseStatus.FAILED, reason=str(e))
                return release

        await self.transition(state, release, ReleaseStatus.HEALTHY)
        state.last_known_good = release
        self.store.checkpoint()

        logger.info(f"Revision {release.revision_id} is healthy on {state.name}")
        return release

    async def run_stage(self, state: EnvironmentState, release: Release, stage: PipelineStage) -> None:
        """Perform one stage, or replay its recorded output if already done.

        The health check is never replayed; it probes on every run.
        """
        environment = state.environment
        replayable = stage in REPLAYABLE_STAGES
        record = (
            self.store.ledger.lookup(environment.name, release.revision_id, stage)
            if replayable
            else None
        )
        if record is not None:
            self._restore_output(release, stage, record.output)
            logger.info(
                f"Stage {stage.value} already completed for revision {release.revision_id} "
                f"on {environment.name}, skipping"
            )
            return

        started = time.monotonic()
        try:
            output = await self._stage_handlers[stage](environment, release)
        finally:
            if self.metrics:
                self.metrics.observe_stage(environment.name, stage.value, time.monotonic() - started)

        if replayable:
            self.store.ledger.record(environment.name, release.revision_id, stage, output)
            self.store.checkpoint()

    async def transition(
        self,
        state: EnvironmentState,
        release: Release,
        to_state: ReleaseStatus,
        reason: str | None = None,
    ) -> None:
        """Apply a status transition, persist it and publish the event."""
        event = release.transition(to_state, reason)
        self.store.checkpoint()
        if self.metrics:
            self.metrics.record_transition(event)
        await self.event_bus.publish(event)

    async def call_with_policy(
        self,
        operation: str,
        func: Callable[[], Awaitable[T]],
        policy: StagePolicy,
        error_cls: type[StageError],
        release: Release,
    ) -> T:
        """Call ``func`` with a per-attempt timeout and a bounded number of attempts."""
        last_error: StageError | None = None

        for attempt in range(1, policy.max_attempts + 1):
            try:
                return await asyncio.wait_for(func(), timeout=policy.timeout_seconds)
            except asyncio.TimeoutError as e:
                last_error = error_cls(
                    f"{operation} timed out after {policy.timeout_seconds}s",
                    environment=release.environment,
                    revision_id=release.revision_id,
                    cause=e,
                )
            except ConfigurationError as e:
                raise error_cls(
                    f"{operation} is misconfigured: {e}",
                    environment=release.environment,
                    revision_id=release.revision_id,
                    cause=e,
                ) from e
            except StageError as e:
                if isinstance(e, MigrationError) and e.schema_mutated:
                    release.schema_mutated = True
                e.environment = e.environment or release.environment
                e.revision_id = e.revision_id or release.revision_id
                last_error = e
            except Exception as e:
                last_error = error_cls(
                    f"{operation} raised {e.__class__.__name__}: {e}",
                    environment=release.environment,
                    revision_id=release.revision_id,
                    cause=e,
                )

            logger.warning(
                f"{operation} attempt {attempt}/{policy.max_attempts} failed "
                f"for revision {release.revision_id} on {release.environment}: {last_error}"
            )
            if attempt < policy.max_attempts and policy.retry_backoff_seconds:
                await asyncio.sleep(policy.retry_backoff_seconds)

        raise last_error

    async def wait_until_healthy(self, environment: Environment, release: Release) -> int:
        """Poll the health endpoint until healthy; returns the number of probes used."""
        policy = self.health
        loop = asyncio.get_running_loop()
        deadline = loop.time() + policy.max_wait_seconds
        max_probes = int(policy.max_wait_seconds // policy.poll_interval_seconds) + 1

        for probe in range(1, max_probes + 1):
            remaining = max(deadline - loop.time(), 0.001)
            timeout = min(policy.probe_timeout_seconds, remaining)
            try:
                status = await asyncio.wait_for(
                    self.collaborators.prober.probe(environment.health_check_url, timeout),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                status = HealthStatus.UNHEALTHY
            except Exception as e:
                logger.warning(f"Health probe of {environment.health_check_url} raised: {e}")
                status = HealthStatus.UNHEALTHY

            if status == HealthStatus.HEALTHY:
                return probe

            if loop.time() + policy.poll_interval_seconds > deadline:
                break
            await asyncio.sleep(policy.poll_interval_seconds)

        raise HealthCheckTimeout(
            f"{environment.name} not healthy at {environment.health_check_url} "
            f"within {policy.max_wait_seconds}s",
            environment=environment.name,
            revision_id=release.revision_id,
        )

    async def _build(self, environment: Environment, release: Release) -> dict[str, Any]:
        artifact = await self.call_with_policy(
            "build",
            lambda: self.collaborators.builder.build(release.revision_id),
            self.policies.build,
            BuildError,
            release,
        )
        release.built_artifact_ref = artifact.artifact_ref
        release.migration_version = artifact.migration_version or release.revision_id
        return {
            "artifact_ref": release.built_artifact_ref,
            "migration_version": release.migration_version,
        }

    async def _migrate(self, environment: Environment, release: Release) -> dict[str, Any]:
        migration_set = MigrationSet(
            environment=environment.name,
            target_host=environment.target_host,
            revision_id=release.revision_id,
            version=release.migration_version or release.revision_id,
        )
        await self.call_with_policy(
            "migrate",
            lambda: self.collaborators.migrator.apply(migration_set),
            self.policies.migrate,
            MigrationError,
            release,
        )
        release.schema_mutated = True
        return {"migration_version": migration_set.version}

    async def _deploy(self, environment: Environment, release: Release) -> dict[str, Any]:
        artifact_ref = release.built_artifact_ref
        await self.call_with_policy(
            "deploy",
            lambda: self.collaborators.deployer.deploy(artifact_ref, environment.target_host),
            self.policies.deploy,
            DeployError,
            release,
        )
        return {"artifact_ref": artifact_ref, "target_host": environment.target_host}

    async def _health_check(self, environment: Environment, release: Release) -> dict[str, Any]:
        probes = await self.wait_until_healthy(environment, release)
        return {"probes": probes}

    @staticmethod
    def _restore_output(release: Release, stage: PipelineStage, output: dict[str, Any]) -> None:
        if stage == PipelineStage.BUILD:
            release.built_artifact_ref = output.get("artifact_ref", release.built_artifact_ref)
            release.migration_version = output.get("migration_version", release.migration_version)
        elif stage == PipelineStage.MIGRATE:
            release.migration_version = output.get("migration_version", release.migration_version)
            release.schema_mutated = True
