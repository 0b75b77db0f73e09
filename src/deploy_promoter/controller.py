"""
Promotion controller.

Validates promotion requests, enforces a single in-flight release per
environment and runs the release pipeline, handing failed releases to the
rollback manager. Releases on different environments run concurrently.
"""

import asyncio
import builtins
import logging
from pathlib import Path

import structlog

from .collaborators import Collaborators, create_collaborators
from .config import PromoterConfig
from .enums import ReleaseStatus
from .events import TransitionEventBus
from .exceptions import (
    EnvironmentBusy,
    InvalidPromotion,
    UnrecoverableEnvironment,
)
from .metrics import PromoterMetrics
from .models import Environment, EnvironmentState, EnvironmentStatus, PromotionRequest, Release
from .pipeline import ReleasePipeline
from .registry import EnvironmentRegistry
from .rollback import RollbackManager
from .store import StateStore

logger = logging.getLogger(__name__)


class PromotionController:
    """Entry point for releasing and promoting revisions."""

    def __init__(
        self,
        registry: EnvironmentRegistry,
        store: StateStore,
        pipeline: ReleasePipeline,
        rollback_manager: RollbackManager,
        event_bus: TransitionEventBus | None = None,
        metrics: PromoterMetrics | None = None,
    ):
        self.registry = registry
        self.store = store
        self.pipeline = pipeline
        self.rollback_manager = rollback_manager
        self.event_bus = event_bus or pipeline.event_bus
        self.metrics = metrics or pipeline.metrics

        # Environment name -> task running its active release
        self._in_flight: builtins.dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------ #
    # Promotion
    # ------------------------------------------------------------------ #

    async def promote(self, request: PromotionRequest) -> Release:
        """Promote a revision one rank up and wait for the outcome."""
        return await self.submit(request)

    def submit(self, request: PromotionRequest) -> asyncio.Task:
        """Validate and reserve, then run the promotion in the background."""
        source, target = self._validate_promotion(request)
        source_release = self.store.get(source.name).current_release

        release = Release(
            environment=target.name,
            revision_id=request.revision_id,
            source_branch=source_release.source_branch,
        )
        logger.info(
            f"Promoting revision {request.revision_id} from {source.name} to {target.name}"
        )
        return self._start(target, release)

    async def release(
        self, environment_name: str, revision_id: str, source_branch: str = "main"
    ) -> Release:
        """Introduce a new revision into the entry environment and wait for the outcome."""
        return await self.submit_release(environment_name, revision_id, source_branch)

    def submit_release(
        self, environment_name: str, revision_id: str, source_branch: str = "main"
    ) -> asyncio.Task:
        target = self.registry.get(environment_name)
        entry = self.registry.entry()
        if target.name != entry.name:
            self._reject(target.name, "invalid")
            raise InvalidPromotion(
                f"{target.name} only accepts promotions; new revisions enter at {entry.name}",
                environment=target.name,
                revision_id=revision_id,
            )
        self._check_target(target, revision_id)

        release = Release(environment=target.name, revision_id=revision_id, source_branch=source_branch)
        logger.info(f"Releasing revision {revision_id} ({source_branch}) to {target.name}")
        return self._start(target, release)

    async def trigger(
        self, environment_name: str, revision_id: str, source_branch: str = "main"
    ) -> Release:
        """Handle an external ``{environment, revision}`` trigger."""
        target = self.registry.get(environment_name)
        source = self.registry.previous_before(target)

        if source is None:
            return await self.release(target.name, revision_id, source_branch)

        return await self.promote(
            PromotionRequest(
                from_environment=source.name,
                to_environment=target.name,
                revision_id=revision_id,
            )
        )

    async def resume(self, environment_name: str) -> Release:
        """Continue a release left mid-flight, e.g. after a crash."""
        target = self.registry.get(environment_name)
        state = self.store.get(target.name)
        release = state.current_release

        if not self._interrupted(state):
            raise InvalidPromotion(
                f"{target.name} has no interrupted release to resume",
                environment=target.name,
            )
        self._check_target(target, release.revision_id, resuming=True)

        logger.info(
            f"Resuming revision {release.revision_id} on {target.name} from {release.status.value}"
        )
        return await self._start(target, release)

    def acknowledge(self, environment_name: str) -> EnvironmentStatus:
        """Clear the halted flag after manual intervention."""
        state = self.store.get(environment_name)
        if state.halted:
            logger.warning(
                f"Halt on {state.name} acknowledged; previous reason: {state.halt_reason}"
            )
        state.halted = False
        state.halt_reason = None
        self.store.checkpoint()
        if self.metrics:
            self.metrics.set_halted(state.name, False)
        return self.status(state.name)

    # ------------------------------------------------------------------ #
    # Status
    # ------------------------------------------------------------------ #

    def status(self, environment_name: str) -> EnvironmentStatus:
        state = self.store.get(environment_name)
        current = state.current_release
        known_good = state.last_known_good
        return EnvironmentStatus(
            environment=state.environment,
            current_revision=current.revision_id if current else None,
            current_status=current.status if current else None,
            last_known_good_revision=known_good.revision_id if known_good else None,
            busy=self.is_busy(state.name),
            halted=state.halted,
            halt_reason=state.halt_reason,
        )

    def statuses(self) -> builtins.list[EnvironmentStatus]:
        return [self.status(env.name) for env in self.registry]

    def is_busy(self, environment_name: str) -> bool:
        """True while a release runs here or an interrupted one awaits ``resume``."""
        return environment_name in self._in_flight or self._interrupted(
            self.store.get(environment_name)
        )

    async def wait_idle(self) -> None:
        """Wait for every in-flight release; errors are left on the tasks."""
        tasks = list(self._in_flight.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _validate_promotion(self, request: PromotionRequest) -> tuple[Environment, Environment]:
        source = self.registry.get(request.from_environment)
        target = self.registry.get(request.to_environment)

        if target.rank != source.rank + 1:
            self._reject(target.name, "invalid")
            raise InvalidPromotion(
                f"Cannot promote {source.name} (rank {source.rank}) to {target.name} "
                f"(rank {target.rank}); target must be rank {source.rank + 1}",
                environment=target.name,
                revision_id=request.revision_id,
            )

        source_state = self.store.get(source.name)
        if self.is_busy(source.name) or not source_state.is_healthy:
            self._reject(target.name, "invalid")
            raise InvalidPromotion(
                f"{source.name} is not healthy; cannot promote to {target.name}",
                environment=target.name,
                revision_id=request.revision_id,
            )

        if source_state.current_release.revision_id != request.revision_id:
            self._reject(target.name, "invalid")
            raise InvalidPromotion(
                f"{source.name} is healthy at {source_state.current_release.revision_id}, "
                f"not {request.revision_id}",
                environment=target.name,
                revision_id=request.revision_id,
            )

        self._check_target(target, request.revision_id)
        return source, target

    def _check_target(self, target: Environment, revision_id: str, resuming: bool = False) -> None:
        state = self.store.get(target.name)
        if state.halted:
            self._reject(target.name, "halted")
            raise UnrecoverableEnvironment(
                f"{target.name} is halted pending manual intervention: {state.halt_reason}",
                environment=target.name,
                revision_id=revision_id,
            )
        if target.name in self._in_flight:
            self._reject(target.name, "busy")
            raise EnvironmentBusy(
                f"{target.name} already has a release in flight",
                environment=target.name,
                revision_id=revision_id,
            )
        if not resuming and self._interrupted(state):
            interrupted = state.current_release
            self._reject(target.name, "busy")
            raise EnvironmentBusy(
                f"{target.name} has an unfinished release of {interrupted.revision_id} "
                f"({interrupted.status.value}); run resume first",
                environment=target.name,
                revision_id=revision_id,
            )

    @staticmethod
    def _interrupted(state: EnvironmentState) -> bool:
        # Active or failed without a completed rollback, e.g. restored from the state file
        release = state.current_release
        return release is not None and (
            release.status.is_active or release.status == ReleaseStatus.FAILED
        )

    def _start(self, target: Environment, release: Release) -> asyncio.Task:
        state = self.store.get(target.name)
        task = asyncio.create_task(
            self._execute(state, release), name=f"release-{target.name}-{release.revision_id}"
        )
        # Reserved before control returns to the event loop
        self._in_flight[target.name] = task
        return task

    async def _execute(self, state: EnvironmentState, release: Release) -> Release:
        try:
            with structlog.contextvars.bound_contextvars(
                environment=state.name,
                revision=release.revision_id,
                release_id=release.release_id,
            ):
                if release.status != ReleaseStatus.FAILED:
                    await self.pipeline.run(state, release)

                if release.status == ReleaseStatus.FAILED:
                    await self.rollback_manager.rollback(state, release)

            self._count(state.name, release.status.value)
            return release

        except UnrecoverableEnvironment:
            self._count(state.name, "unrecoverable")
            raise
        finally:
            self._in_flight.pop(state.name, None)

    def _reject(self, environment: str, reason: str) -> None:
        self._count(environment, f"rejected_{reason}")

    def _count(self, environment: str, outcome: str) -> None:
        if self.metrics:
            self.metrics.record_promotion(environment, outcome)


def create_promotion_controller(
    config: PromoterConfig,
    state_file: Path | None = None,
    collaborators: Collaborators | None = None,
    event_bus: TransitionEventBus | None = None,
    metrics: PromoterMetrics | None = None,
) -> PromotionController:
    """Wire registry, store, pipeline and rollback manager from configuration."""
    registry = EnvironmentRegistry.from_config(config)
    store = StateStore(registry, state_file)
    metrics = metrics or PromoterMetrics()
    pipeline = ReleasePipeline(
        collaborators or create_collaborators(config),
        store,
        event_bus or TransitionEventBus(),
        policies=config.stages,
        health=config.health,
        metrics=metrics,
    )
    rollback_manager = RollbackManager(pipeline, verify_health=config.verify_rollback_health)

    for state in store.all():
        metrics.set_halted(state.name, state.halted)

    return PromotionController(registry, store, pipeline, rollback_manager, metrics=metrics)
