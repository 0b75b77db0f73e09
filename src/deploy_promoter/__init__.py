"""
Deploy Promoter

Promotes revisions through ranked deployment environments (dev, staging,
production, ...) with build, migration, deploy and health-check stages,
and rolls failed releases back to the last known-good revision.
"""

__version__ = "1.0.0"

from .config import PromoterConfig, PromoterSettings, load_config
from .controller import PromotionController, create_promotion_controller
from .enums import HealthStatus, PipelineStage, ReleaseStatus
from .events import TransitionEventBus
from .exceptions import (
    BuildError,
    ConfigurationError,
    DeployError,
    EnvironmentBusy,
    HealthCheckTimeout,
    InvalidPromotion,
    MigrationError,
    PromoterError,
    ReleaseStateError,
    StageError,
    UnknownEnvironment,
    UnrecoverableEnvironment,
)
from .models import (
    BuildArtifact,
    Environment,
    EnvironmentStatus,
    MigrationSet,
    PromotionRequest,
    Release,
    TransitionEvent,
)
from .pipeline import ReleasePipeline
from .registry import EnvironmentRegistry
from .rollback import RollbackManager

__all__ = [
    "__version__",
    # Configuration
    "PromoterConfig",
    "PromoterSettings",
    "load_config",
    # Components
    "EnvironmentRegistry",
    "ReleasePipeline",
    "PromotionController",
    "RollbackManager",
    "TransitionEventBus",
    "create_promotion_controller",
    # Models
    "BuildArtifact",
    "Environment",
    "EnvironmentStatus",
    "MigrationSet",
    "PromotionRequest",
    "Release",
    "TransitionEvent",
    # Enums
    "HealthStatus",
    "PipelineStage",
    "ReleaseStatus",
    # Errors
    "PromoterError",
    "ConfigurationError",
    "UnknownEnvironment",
    "InvalidPromotion",
    "EnvironmentBusy",
    "ReleaseStateError",
    "StageError",
    "BuildError",
    "MigrationError",
    "DeployError",
    "HealthCheckTimeout",
    "UnrecoverableEnvironment",
]
