"""Métricas Prometheus para o motor de cadências e o rate limiter."""

from __future__ import annotations

from prometheus_client import Counter

CADENCE_STEPS_PROCESSED = Counter(
    "cadence_steps_processed_total",
    "Resultado do processamento de cada run vencida",
    labelnames=("result",),
)

RATE_LIMIT_CHECKS = Counter(
    "webhook_rate_limit_checks_total",
    "Decisões do rate limiter dos webhooks públicos",
    labelnames=("function", "outcome"),
)


def inc_step_processed(result: str) -> None:
    CADENCE_STEPS_PROCESSED.labels(result=result).inc()


def inc_rate_limit_check(function: str, outcome: str) -> None:
    RATE_LIMIT_CHECKS.labels(function=function, outcome=outcome).inc()


__all__ = ["inc_step_processed", "inc_rate_limit_check"]
