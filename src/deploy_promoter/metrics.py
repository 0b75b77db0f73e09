"""Prometheus metrics for promotions and release transitions."""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from .models import TransitionEvent


class PromoterMetrics:
    """Collectors bound to their own registry so instances never collide."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()

        self.transitions = Counter(
            "promoter_release_transitions_total",
            "Release status transitions",
            ["environment", "to_state"],
            registry=self.registry,
        )
        self.promotions = Counter(
            "promoter_promotions_total",
            "Promotion requests by outcome",
            ["environment", "outcome"],
            registry=self.registry,
        )
        self.stage_duration = Histogram(
            "promoter_stage_duration_seconds",
            "Pipeline stage duration",
            ["environment", "stage"],
            registry=self.registry,
        )
        self.halted = Gauge(
            "promoter_environment_halted",
            "1 while an environment awaits manual intervention",
            ["environment"],
            registry=self.registry,
        )

    def record_transition(self, event: TransitionEvent) -> None:
        self.transitions.labels(environment=event.environment, to_state=event.to_state.value).inc()

    def record_promotion(self, environment: str, outcome: str) -> None:
        self.promotions.labels(environment=environment, outcome=outcome).inc()

    def observe_stage(self, environment: str, stage: str, seconds: float) -> None:
        self.stage_duration.labels(environment=environment, stage=stage).observe(seconds)

    def set_halted(self, environment: str, halted: bool) -> None:
        self.halted.labels(environment=environment).set(1 if halted else 0)

    def value(self, name: str, labels: dict[str, str]) -> float | None:
        return self.registry.get_sample_value(name, labels)

    def render(self) -> bytes:
        return generate_latest(self.registry)
