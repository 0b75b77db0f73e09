"""Promotion enums."""

from enum import Enum


class ReleaseStatus(Enum):
    """Release lifecycle states"""

    PENDING = "pending"
    BUILDING = "building"
    MIGRATING = "migrating"
    DEPLOYING = "deploying"
    HEALTH_CHECKING = "health_checking"
    HEALTHY = "healthy"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"

    @property
    def is_terminal(self) -> bool:
        return self in (ReleaseStatus.HEALTHY, ReleaseStatus.ROLLED_BACK)

    @property
    def is_active(self) -> bool:
        return self not in (
            ReleaseStatus.HEALTHY,
            ReleaseStatus.FAILED,
            ReleaseStatus.ROLLED_BACK,
        )


class PipelineStage(Enum):
    """Pipeline stages in execution order"""

    BUILD = "build"
    MIGRATE = "migrate"
    DEPLOY = "deploy"
    HEALTH_CHECK = "health_check"

    @property
    def status(self) -> ReleaseStatus:
        """Release status held while this stage runs."""
        return _STAGE_STATUS[self]


_STAGE_STATUS = {
    PipelineStage.BUILD: ReleaseStatus.BUILDING,
    PipelineStage.MIGRATE: ReleaseStatus.MIGRATING,
    PipelineStage.DEPLOY: ReleaseStatus.DEPLOYING,
    PipelineStage.HEALTH_CHECK: ReleaseStatus.HEALTH_CHECKING,
}


class HealthStatus(Enum):
    """Health probe outcome"""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"
