"""Promotion data models."""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from .enums import ReleaseStatus
from .exceptions import ReleaseStateError

# Forward-only state machine; Failed -> RolledBack is owned by the rollback manager
ALLOWED_TRANSITIONS: dict[ReleaseStatus, frozenset[ReleaseStatus]] = {
    ReleaseStatus.PENDING: frozenset({ReleaseStatus.BUILDING, ReleaseStatus.FAILED}),
    ReleaseStatus.BUILDING: frozenset({ReleaseStatus.MIGRATING, ReleaseStatus.FAILED}),
    ReleaseStatus.MIGRATING: frozenset({ReleaseStatus.DEPLOYING, ReleaseStatus.FAILED}),
    ReleaseStatus.DEPLOYING: frozenset({ReleaseStatus.HEALTH_CHECKING, ReleaseStatus.FAILED}),
    ReleaseStatus.HEALTH_CHECKING: frozenset({ReleaseStatus.HEALTHY, ReleaseStatus.FAILED}),
    ReleaseStatus.HEALTHY: frozenset(),
    ReleaseStatus.FAILED: frozenset({ReleaseStatus.ROLLED_BACK}),
    ReleaseStatus.ROLLED_BACK: frozenset(),
}


@dataclass(frozen=True)
class Environment:
    """Static description of a deployment target"""

    name: str
    rank: int
    target_host: str
    health_check_url: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BuildArtifact:
    """Output of the build collaborator"""

    artifact_ref: str
    migration_version: str | None = None


@dataclass(frozen=True)
class MigrationSet:
    """Migration version bound to an environment"""

    environment: str
    target_host: str
    revision_id: str
    version: str


@dataclass(frozen=True)
class PromotionRequest:
    """Request to advance a revision to the next-ranked environment"""

    from_environment: str
    to_environment: str
    revision_id: str


@dataclass(frozen=True)
class TransitionEvent:
    """Structured record of a release status transition"""

    environment: str
    revision_id: str
    release_id: str
    from_state: ReleaseStatus
    to_state: ReleaseStatus
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "environment": self.environment,
            "revision_id": self.revision_id,
            "release_id": self.release_id,
            "from_state": self.from_state.value,
            "to_state": self.to_state.value,
            "timestamp": self.timestamp.isoformat(),
            "reason": self.reason,
        }


@dataclass(frozen=True)
class EnvironmentAlert:
    """Alert raised when an environment needs manual intervention"""

    environment: str
    revision_id: str | None
    message: str
    severity: str = "critical"
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {**asdict(self), "timestamp": self.timestamp.isoformat()}


@dataclass
class Release:
    """A revision moving through the pipeline on one environment"""

    environment: str
    revision_id: str
    source_branch: str = "main"
    release_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: ReleaseStatus = ReleaseStatus.PENDING

    # Stage outputs
    built_artifact_ref: str | None = None
    migration_version: str | None = None
    schema_mutated: bool = False

    # Results
    error: str | None = None
    failed_stage: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    completed_at: datetime | None = None
    transitions: list[TransitionEvent] = field(default_factory=list)

    def transition(self, to_state: ReleaseStatus, reason: str | None = None) -> TransitionEvent:
        """Move to ``to_state`` and return the recorded transition event."""
        if to_state not in ALLOWED_TRANSITIONS[self.status]:
            raise ReleaseStateError(
                f"Illegal transition {self.status.value} -> {to_state.value} "
                f"for release {self.release_id}",
                environment=self.environment,
                revision_id=self.revision_id,
            )

        event = TransitionEvent(
            environment=self.environment,
            revision_id=self.revision_id,
            release_id=self.release_id,
            from_state=self.status,
            to_state=to_state,
            reason=reason,
        )
        self.status = to_state
        self.transitions.append(event)

        if not to_state.is_active:
            self.completed_at = event.timestamp

        return event

    @property
    def visited(self) -> list[ReleaseStatus]:
        """Statuses entered by this release, in order."""
        if not self.transitions:
            return [self.status]
        return [self.transitions[0].from_state] + [t.to_state for t in self.transitions]

    def to_dict(self) -> dict[str, Any]:
        return {
            "release_id": self.release_id,
            "environment": self.environment,
            "revision_id": self.revision_id,
            "source_branch": self.source_branch,
            "status": self.status.value,
            "built_artifact_ref": self.built_artifact_ref,
            "migration_version": self.migration_version,
            "schema_mutated": self.schema_mutated,
            "error": self.error,
            "failed_stage": self.failed_stage,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "transitions": [t.to_dict() for t in self.transitions],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Release":
        transitions = [
            TransitionEvent(
                environment=t["environment"],
                revision_id=t["revision_id"],
                release_id=t["release_id"],
                from_state=ReleaseStatus(t["from_state"]),
                to_state=ReleaseStatus(t["to_state"]),
                timestamp=datetime.fromisoformat(t["timestamp"]),
                reason=t.get("reason"),
            )
            for t in data.get("transitions", [])
        ]
        completed_at = data.get("completed_at")
        return cls(
            environment=data["environment"],
            revision_id=data["revision_id"],
            source_branch=data.get("source_branch", "main"),
            release_id=data["release_id"],
            status=ReleaseStatus(data["status"]),
            built_artifact_ref=data.get("built_artifact_ref"),
            migration_version=data.get("migration_version"),
            schema_mutated=data.get("schema_mutated", False),
            error=data.get("error"),
            failed_stage=data.get("failed_stage"),
            created_at=datetime.fromisoformat(data["created_at"]),
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
            transitions=transitions,
        )


@dataclass
class EnvironmentState:
    """Mutable deployment state of one environment"""

    environment: Environment
    current_release: Release | None = None
    last_known_good: Release | None = None
    halted: bool = False
    halt_reason: str | None = None

    @property
    def name(self) -> str:
        return self.environment.name

    @property
    def is_healthy(self) -> bool:
        return (
            self.current_release is not None
            and self.current_release.status == ReleaseStatus.HEALTHY
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "environment": self.environment.name,
            "current_release": self.current_release.to_dict() if self.current_release else None,
            "last_known_good": self.last_known_good.to_dict() if self.last_known_good else None,
            "halted": self.halted,
            "halt_reason": self.halt_reason,
        }


@dataclass(frozen=True)
class EnvironmentStatus:
    """Immutable view of an environment's deployment state"""

    environment: Environment
    current_revision: str | None
    current_status: ReleaseStatus | None
    last_known_good_revision: str | None
    busy: bool
    halted: bool
    halt_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.environment.to_dict(),
            "current_revision": self.current_revision,
            "current_status": self.current_status.value if self.current_status else None,
            "last_known_good_revision": self.last_known_good_revision,
            "busy": self.busy,
            "halted": self.halted,
            "halt_reason": self.halt_reason,
        }
