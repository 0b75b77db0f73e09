"""
Environment state store.

Holds the mutable state of every registered environment together with the
stage ledger, optionally persisted to a JSON file after each checkpoint.
"""

import builtins
import json
import logging
import os
from pathlib import Path
from typing import Any

from .exceptions import ConfigurationError
from .ledger import StageLedger
from .models import EnvironmentState, Release
from .registry import EnvironmentRegistry

logger = logging.getLogger(__name__)


class StateStore:
    """In-memory environment state with optional JSON persistence."""

    def __init__(self, registry: EnvironmentRegistry, path: Path | None = None):
        self.registry = registry
        self.path = Path(path) if path else None
        self.ledger = StageLedger()
        self._states: builtins.dict[str, EnvironmentState] = {
            env.name: EnvironmentState(environment=env) for env in registry
        }

        if self.path and self.path.exists():
            self._load()

    def get(self, name: str) -> EnvironmentState:
        env = self.registry.get(name)
        return self._states[env.name]

    def all(self) -> builtins.list[EnvironmentState]:
        return [self._states[env.name] for env in self.registry]

    def checkpoint(self) -> None:
        """Persist all state; no-op without a backing file."""
        if not self.path:
            return

        payload = {
            "environments": [state.to_dict() for state in self.all()],
            "ledger": self.ledger.to_list(),
        }
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(payload, f, indent=2)
        os.replace(tmp_path, self.path)

    def _load(self) -> None:
        try:
            with open(self.path) as f:
                payload: builtins.dict[str, Any] = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Failed to read state file {self.path}: {e}", cause=e) from e

        for item in payload.get("environments", []):
            name = item["environment"]
            if name not in self.registry:
                logger.warning(f"Ignoring state for unregistered environment {name}")
                continue

            state = self._states[name]
            current = item.get("current_release")
            known_good = item.get("last_known_good")
            state.current_release = Release.from_dict(current) if current else None
            if known_good and current and known_good["release_id"] == current["release_id"]:
                state.last_known_good = state.current_release
            else:
                state.last_known_good = Release.from_dict(known_good) if known_good else None
            state.halted = item.get("halted", False)
            state.halt_reason = item.get("halt_reason")

        self.ledger = StageLedger.from_list(payload.get("ledger", []))
        logger.info(f"Restored state for {len(self._states)} environments from {self.path}")
