"""Environment registry: read-only lookup of deployment targets."""

from collections.abc import Iterable

from .config import PromoterConfig
from .exceptions import ConfigurationError, UnknownEnvironment
from .models import Environment


class EnvironmentRegistry:
    """Immutable set of environments ordered by promotion rank."""

    def __init__(self, environments: Iterable[Environment]):
        ordered = sorted(environments, key=lambda env: env.rank)
        if not ordered:
            raise ConfigurationError("Environment registry requires at least one environment")

        by_name: dict[str, Environment] = {}
        ranks: set[int] = set()
        for env in ordered:
            if env.name in by_name:
                raise ConfigurationError(f"Duplicate environment name: {env.name}")
            if env.rank in ranks:
                raise ConfigurationError(f"Duplicate environment rank: {env.rank}")
            by_name[env.name] = env
            ranks.add(env.rank)

        self._ordered: tuple[Environment, ...] = tuple(ordered)
        self._by_name = by_name

    @classmethod
    def from_config(cls, config: PromoterConfig) -> "EnvironmentRegistry":
        return cls(
            Environment(
                name=env.name,
                rank=env.rank,
                target_host=env.target_host,
                health_check_url=env.health_check_url,
            )
            for env in config.environments
        )

    def get(self, name: str) -> Environment:
        """Return the environment named ``name`` or raise UnknownEnvironment."""
        try:
            return self._by_name[name]
        except KeyError:
            raise UnknownEnvironment(f"Unknown environment: {name}", environment=name) from None

    def ordered(self) -> tuple[Environment, ...]:
        return self._ordered

    def entry(self) -> Environment:
        """Lowest-ranked environment, where new revisions enter."""
        return self._ordered[0]

    def next_after(self, environment: Environment) -> Environment | None:
        index = self._ordered.index(self.get(environment.name))
        if index + 1 < len(self._ordered):
            return self._ordered[index + 1]
        return None

    def previous_before(self, environment: Environment) -> Environment | None:
        index = self._ordered.index(self.get(environment.name))
        return self._ordered[index - 1] if index > 0 else None

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def __iter__(self):
        return iter(self._ordered)

    def __len__(self) -> int:
        return len(self._ordered)
