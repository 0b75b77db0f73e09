"""
Rollback manager.

Restores an environment to its last-known-good release after a release
fails: reverts schema changes the failed release made, re-applies the
known-good migration version, re-deploys the known-good artifact and
optionally verifies it is healthy again. A failed rollback halts the
environment instead of retrying indefinitely.
"""

import logging

from .config import StagePolicy
from .enums import ReleaseStatus
from .exceptions import (
    ConfigurationError,
    DeployError,
    MigrationError,
    ReleaseStateError,
    StageError,
    UnrecoverableEnvironment,
)
from .models import EnvironmentAlert, EnvironmentState, MigrationSet, Release
from .pipeline import ReleasePipeline

logger = logging.getLogger(__name__)


class RollbackManager:
    """Restores the last-known-good release of an environment."""

    def __init__(
        self,
        pipeline: ReleasePipeline,
        policy: StagePolicy | None = None,
        verify_health: bool = True,
    ):
        self.pipeline = pipeline
        self.policy = policy or pipeline.policies.rollback
        self.verify_health = verify_health

    async def rollback(self, state: EnvironmentState, failed: Release) -> Release:
        """Roll ``failed`` back; returns it in RolledBack status.

        Raises UnrecoverableEnvironment if any restore step fails.
        """
        if failed.status != ReleaseStatus.FAILED:
            raise ReleaseStateError(
                f"Only failed releases can be rolled back; {failed.release_id} is "
                f"{failed.status.value}",
                environment=failed.environment,
                revision_id=failed.revision_id,
            )

        known_good = state.last_known_good
        logger.warning(
            f"Rolling back revision {failed.revision_id} on {state.name} to "
            f"{known_good.revision_id if known_good else 'no previous revision'}"
        )

        try:
            await self._restore(state, failed, known_good)
        except (StageError, ConfigurationError) as e:
            await self._halt(state, failed, e)
            raise UnrecoverableEnvironment(
                f"Rollback of revision {failed.revision_id} on {state.name} failed: {e}",
                environment=state.name,
                revision_id=failed.revision_id,
                cause=e,
            ) from e

        state.current_release = known_good
        self.pipeline.store.ledger.purge(state.name, failed.revision_id)
        reason = (
            f"restored revision {known_good.revision_id}" if known_good else "no known-good revision"
        )
        await self.pipeline.transition(state, failed, ReleaseStatus.ROLLED_BACK, reason=reason)

        logger.info(f"Rollback of revision {failed.revision_id} on {state.name} completed")
        return failed

    async def _restore(
        self, state: EnvironmentState, failed: Release, known_good: Release | None
    ) -> None:
        environment = state.environment
        collaborators = self.pipeline.collaborators

        if failed.schema_mutated:
            failed_set = MigrationSet(
                environment=environment.name,
                target_host=environment.target_host,
                revision_id=failed.revision_id,
                version=failed.migration_version or failed.revision_id,
            )
            await self.pipeline.call_with_policy(
                "revert migrations",
                lambda: collaborators.migrator.revert(failed_set),
                self.policy,
                MigrationError,
                failed,
            )

            if known_good is not None:
                known_good_set = MigrationSet(
                    environment=environment.name,
                    target_host=environment.target_host,
                    revision_id=known_good.revision_id,
                    version=known_good.migration_version or known_good.revision_id,
                )
                await self.pipeline.call_with_policy(
                    "reapply migrations",
                    lambda: collaborators.migrator.apply(known_good_set),
                    self.policy,
                    MigrationError,
                    failed,
                )

        if known_good is None:
            return

        artifact_ref = known_good.built_artifact_ref or known_good.revision_id
        await self.pipeline.call_with_policy(
            "redeploy",
            lambda: collaborators.deployer.deploy(artifact_ref, environment.target_host),
            self.policy,
            DeployError,
            failed,
        )

        if self.verify_health:
            await self.pipeline.wait_until_healthy(environment, known_good)

    async def _halt(self, state: EnvironmentState, failed: Release, error: Exception) -> None:
        state.halted = True
        state.halt_reason = f"rollback of revision {failed.revision_id} failed: {error}"
        self.pipeline.store.checkpoint()

        if self.pipeline.metrics:
            self.pipeline.metrics.set_halted(state.name, True)

        logger.critical(f"Environment {state.name} halted: {state.halt_reason}")
        await self.pipeline.event_bus.publish(
            EnvironmentAlert(
                environment=state.name,
                revision_id=failed.revision_id,
                message=f"UnrecoverableEnvironment: {state.halt_reason}",
            )
        )
