"""Collaborator interfaces used by the release pipeline and rollback manager."""

from abc import ABC, abstractmethod

from ..enums import HealthStatus
from ..models import BuildArtifact, MigrationSet


class Builder(ABC):
    """Turns a revision into a deployable artifact."""

    @abstractmethod
    async def build(self, revision_id: str) -> BuildArtifact:
        """Build ``revision_id``; raises BuildError."""


class Migrator(ABC):
    """Applies and reverts schema migration sets."""

    @abstractmethod
    async def apply(self, migration_set: MigrationSet) -> None:
        """Apply a migration set; raises MigrationError."""

    @abstractmethod
    async def revert(self, migration_set: MigrationSet) -> None:
        """Revert a migration set; raises MigrationError."""


class Deployer(ABC):
    """Ships an artifact to a host and reloads the runtime supervisor."""

    @abstractmethod
    async def deploy(self, artifact_ref: str, target_host: str) -> None:
        """Deploy ``artifact_ref`` to ``target_host``; raises DeployError."""


class HealthProber(ABC):
    """Reports whether an environment's health endpoint is healthy."""

    @abstractmethod
    async def probe(self, health_check_url: str, timeout: float) -> HealthStatus:
        """Probe once; never slower than ``timeout`` seconds."""
