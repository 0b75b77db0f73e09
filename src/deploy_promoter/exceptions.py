"""
Promotion Exceptions

Error taxonomy for registry lookups, promotion validation, pipeline stages
and rollback.
"""

from typing import Any


class PromoterError(Exception):
    """Base exception for deployment promotion errors."""

    def __init__(
        self,
        message: str,
        environment: str | None = None,
        revision_id: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.environment = environment
        self.revision_id = revision_id
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for reporting."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "environment": self.environment,
            "revision_id": self.revision_id,
            "cause": str(self.cause) if self.cause else None,
        }


class ConfigurationError(PromoterError):
    """Raised when the promoter configuration is invalid."""


class UnknownEnvironment(PromoterError):
    """Raised when an environment name is not in the registry."""


class InvalidPromotion(PromoterError):
    """Raised when a promotion request violates rank adjacency or source health."""


class EnvironmentBusy(PromoterError):
    """Raised when the target environment already has a release in flight."""


class ReleaseStateError(PromoterError):
    """Raised on an illegal release status transition."""


class StageError(PromoterError):
    """Base for errors raised by a single pipeline stage."""

    stage = "unknown"

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["stage"] = self.stage
        return data


class BuildError(StageError):
    """Raised when building a revision fails."""

    stage = "build"


class MigrationError(StageError):
    """Raised when applying or reverting a migration set fails."""

    stage = "migrate"

    def __init__(self, message: str, schema_mutated: bool = False, **kwargs):
        super().__init__(message, **kwargs)
        # Partial application leaves schema state that rollback must revert
        self.schema_mutated = schema_mutated


class DeployError(StageError):
    """Raised when deploying an artifact to a host fails."""

    stage = "deploy"


class HealthCheckTimeout(StageError):
    """Raised when an environment does not report healthy within the wait window."""

    stage = "health_check"


class UnrecoverableEnvironment(PromoterError):
    """Raised when rollback fails; automated action on the environment halts."""
