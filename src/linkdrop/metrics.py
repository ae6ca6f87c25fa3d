from __future__ import annotations

from dataclasses import dataclass, field
from prometheus_client import CollectorRegistry, Counter, Histogram


@dataclass(slots=True)
class LinkdropMetrics:
    registry: CollectorRegistry
    events_total: Counter = field(init=False)
    claims_total: Counter = field(init=False)
    deliveries_total: Counter = field(init=False)
    compensations_total: Counter = field(init=False)
    delivery_duration: Histogram = field(init=False)

    def __post_init__(self) -> None:
        self.events_total = Counter(
            "linkdrop_events_total",
            "Inbound events by classified kind",
            labelnames=("kind",),
            registry=self.registry,
        )
        self.claims_total = Counter(
            "linkdrop_claims_total",
            "Ledger claim attempts by outcome",
            labelnames=("status",),
            registry=self.registry,
        )
        self.deliveries_total = Counter(
            "linkdrop_deliveries_total",
            "Delivery attempts by outcome",
            labelnames=("status",),
            registry=self.registry,
        )
        self.compensations_total = Counter(
            "linkdrop_compensations_total",
            "Claims released after a failed delivery",
            registry=self.registry,
        )
        self.delivery_duration = Histogram(
            "linkdrop_delivery_duration_seconds",
            "Delivery gateway latency in seconds",
            registry=self.registry,
            buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
        )

    def record_event(self, kind: str) -> None:
        self.events_total.labels(kind=kind).inc()

    def record_claim(self, status: str) -> None:
        self.claims_total.labels(status=status).inc()

    def record_delivery(self, status: str, duration: float) -> None:
        self.deliveries_total.labels(status=status).inc()
        self.delivery_duration.observe(duration)

    def record_compensation(self) -> None:
        self.compensations_total.inc()
