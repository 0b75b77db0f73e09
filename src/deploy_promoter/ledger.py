"""
Stage ledger.

Records which pipeline stages completed for a revision on an environment so
that re-invoking a stage with the same revision performs no side effect.
"""

import builtins
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

from .enums import PipelineStage


@dataclass
class StageRecord:
    """Completed stage and the output it produced"""

    environment: str
    revision_id: str
    stage: PipelineStage
    output: builtins.dict[str, Any] = field(default_factory=dict)
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> builtins.dict[str, Any]:
        return {
            **asdict(self),
            "stage": self.stage.value,
            "completed_at": self.completed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: builtins.dict[str, Any]) -> "StageRecord":
        return cls(
            environment=data["environment"],
            revision_id=data["revision_id"],
            stage=PipelineStage(data["stage"]),
            output=data.get("output", {}),
            completed_at=datetime.fromisoformat(data["completed_at"]),
        )


class StageLedger:
    """Completed-stage records keyed by (environment, revision, stage)."""

    def __init__(self):
        self._records: builtins.dict[tuple[str, str, PipelineStage], StageRecord] = {}

    def lookup(self, environment: str, revision_id: str, stage: PipelineStage) -> StageRecord | None:
        return self._records.get((environment, revision_id, stage))

    def record(
        self,
        environment: str,
        revision_id: str,
        stage: PipelineStage,
        output: builtins.dict[str, Any] | None = None,
    ) -> StageRecord:
        record = StageRecord(environment, revision_id, stage, output or {})
        self._records[(environment, revision_id, stage)] = record
        return record

    def purge(self, environment: str, revision_id: str) -> int:
        """Forget every stage of ``revision_id`` on ``environment``."""
        keys = [k for k in self._records if k[0] == environment and k[1] == revision_id]
        for key in keys:
            del self._records[key]
        return len(keys)

    def retain_only(self, environment: str, revision_id: str) -> int:
        """Forget stages of every other revision on ``environment``."""
        keys = [k for k in self._records if k[0] == environment and k[1] != revision_id]
        for key in keys:
            del self._records[key]
        return len(keys)

    def completed_stages(self, environment: str, revision_id: str) -> builtins.list[PipelineStage]:
        return [stage for stage in PipelineStage if self.lookup(environment, revision_id, stage)]

    def to_list(self) -> builtins.list[builtins.dict[str, Any]]:
        return [record.to_dict() for record in self._records.values()]

    @classmethod
    def from_list(cls, data: builtins.list[builtins.dict[str, Any]]) -> "StageLedger":
        ledger = cls()
        for item in data:
            record = StageRecord.from_dict(item)
            ledger._records[(record.environment, record.revision_id, record.stage)] = record
        return ledger

    def __len__(self) -> int:
        return len(self._records)
