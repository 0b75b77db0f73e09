"""
Global pytest configuration and fixtures for promoter testing.

Provides in-memory collaborators that record every call so tests can assert
on side effects, plus a three-environment configuration with fast timing.
"""

import asyncio
import logging

import pytest
import structlog

from deploy_promoter.collaborators import Builder, Collaborators, Deployer, HealthProber, Migrator
from deploy_promoter.config import (
    HealthCheckPolicy,
    PromoterConfig,
    StagePolicies,
    StagePolicy,
    parse_config,
)
from deploy_promoter.controller import create_promotion_controller
from deploy_promoter.enums import HealthStatus
from deploy_promoter.events import TransitionEventBus
from deploy_promoter.exceptions import BuildError, DeployError, MigrationError
from deploy_promoter.logger import PromoterJsonFormatter
from deploy_promoter.metrics import PromoterMetrics
from deploy_promoter.models import BuildArtifact, MigrationSet

ENVIRONMENTS = [
    {
        "name": "dev",
        "rank": 1,
        "target_host": "ubuntu@dev.internal",
        "health_check_url": "http://dev.internal/health",
    },
    {
        "name": "staging",
        "rank": 2,
        "target_host": "ubuntu@staging.internal",
        "health_check_url": "http://staging.internal/health",
    },
    {
        "name": "production",
        "rank": 3,
        "target_host": "ubuntu@prod.internal",
        "health_check_url": "http://prod.internal/health",
    },
]


class FakeBuilder(Builder):
    def __init__(self):
        self.calls: list[str] = []
        self.failing: set[str] = set()

    async def build(self, revision_id: str) -> BuildArtifact:
        self.calls.append(revision_id)
        if revision_id in self.failing:
            raise BuildError(f"compilation failed for {revision_id}")
        return BuildArtifact(artifact_ref=f"artifact-{revision_id}", migration_version=f"m-{revision_id}")


class FakeMigrator(Migrator):
    def __init__(self):
        self.applied: list[MigrationSet] = []
        self.reverted: list[MigrationSet] = []
        self.failing: set[str] = set()
        self.partial_failure = False
        self.revert_fails = False

    async def apply(self, migration_set: MigrationSet) -> None:
        if migration_set.revision_id in self.failing:
            raise MigrationError(
                f"migration {migration_set.version} failed",
                schema_mutated=self.partial_failure,
            )
        self.applied.append(migration_set)

    async def revert(self, migration_set: MigrationSet) -> None:
        if self.revert_fails:
            raise MigrationError(f"cannot revert {migration_set.version}")
        self.reverted.append(migration_set)


class FakeDeployer(Deployer):
    def __init__(self):
        self.deployed: list[tuple[str, str]] = []
        self.failing_artifacts: set[str] = set()
        self.gate: asyncio.Event | None = None
        self.attempts = 0

    async def deploy(self, artifact_ref: str, target_host: str) -> None:
        self.attempts += 1
        if self.gate is not None:
            await self.gate.wait()
        if artifact_ref in self.failing_artifacts:
            raise DeployError(f"pm2 reload failed on {target_host}")
        self.deployed.append((artifact_ref, target_host))


class FakeProber(HealthProber):
    def __init__(self):
        self.probes: list[str] = []
        self.unhealthy_urls: set[str] = set()
        # url -> number of unhealthy answers before turning healthy
        self.warmup: dict[str, int] = {}

    async def probe(self, health_check_url: str, timeout: float) -> HealthStatus:
        self.probes.append(health_check_url)
        if health_check_url in self.unhealthy_urls:
            return HealthStatus.UNHEALTHY
        remaining = self.warmup.get(health_check_url, 0)
        if remaining > 0:
            self.warmup[health_check_url] = remaining - 1
            return HealthStatus.UNHEALTHY
        return HealthStatus.HEALTHY


@pytest.fixture
def fast_config() -> PromoterConfig:
    """Three environments with millisecond timing."""
    config = parse_config({"environments": ENVIRONMENTS})
    fast = StagePolicy(timeout_seconds=1.0, max_attempts=2, retry_backoff_seconds=0)
    config.stages = StagePolicies(build=fast, migrate=fast, deploy=fast, rollback=fast)
    config.health = HealthCheckPolicy(
        poll_interval_seconds=0.01, max_wait_seconds=0.2, probe_timeout_seconds=0.05
    )
    return config


@pytest.fixture
def collaborators() -> Collaborators:
    return Collaborators(
        builder=FakeBuilder(),
        migrator=FakeMigrator(),
        deployer=FakeDeployer(),
        prober=FakeProber(),
    )


@pytest.fixture
def event_bus() -> TransitionEventBus:
    return TransitionEventBus()


@pytest.fixture
def metrics() -> PromoterMetrics:
    return PromoterMetrics()


@pytest.fixture
def controller(fast_config, collaborators, event_bus, metrics):
    return create_promotion_controller(
        fast_config, collaborators=collaborators, event_bus=event_bus, metrics=metrics
    )


@pytest.fixture
def restore_logging():
    """Undo logging configuration done by the code under test."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if isinstance(handler.formatter, (PromoterJsonFormatter, structlog.stdlib.ProcessorFormatter)):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
