"""
Rate Limiter dos webhooks públicos (janela fixa de um minuto)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Protocol

import redis
from fastapi.responses import JSONResponse

from core.cadence.metrics import inc_rate_limit_check
from core.config import settings
from core.redis_client import redis_client
from core.telemetry import logger

RETRY_AFTER_SECONDS = 60
DEFAULT_LIMIT_PER_MINUTE = 60


class CounterStoreUnavailable(Exception):
    """O armazenamento dos contadores não respondeu."""


class RateLimitOutcome(str, Enum):
    CHECKED = "checked"
    DEGRADED = "degraded"  # storage indisponível, fail-open


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    current_count: int
    limit: int
    outcome: RateLimitOutcome = RateLimitOutcome.CHECKED

    @classmethod
    def checked(cls, current_count: int, limit: int) -> "RateLimitResult":
        return cls(
            allowed=current_count <= limit,
            current_count=current_count,
            limit=limit,
            outcome=RateLimitOutcome.CHECKED,
        )

    @classmethod
    def degraded(cls, limit: int) -> "RateLimitResult":
        return cls(
            allowed=True,
            current_count=0,
            limit=limit,
            outcome=RateLimitOutcome.DEGRADED,
        )

    @property
    def is_degraded(self) -> bool:
        return self.outcome is RateLimitOutcome.DEGRADED


class CounterStore(Protocol):
    def increment(
        self, function_name: str, identifier: str, window_start: datetime
    ) -> int:
        """Incrementa atomicamente e retorna a contagem pós-incremento."""


class RedisCounterStore:
    """Contadores em Redis: INCR + EXPIRE na mesma transação."""

    KEY_PREFIX = "wrl"

    def __init__(self, client: Optional[redis.Redis] = None, ttl_seconds: int = 120):
        self.client = client if client is not None else redis_client
        self.ttl_seconds = ttl_seconds

    def key_for(
        self, function_name: str, identifier: str, window_start: datetime
    ) -> str:
        return (
            f"{self.KEY_PREFIX}:{function_name}:{identifier}:"
            f"{window_start.strftime('%Y%m%d%H%M')}"
        )

    def increment(
        self, function_name: str, identifier: str, window_start: datetime
    ) -> int:
        key = self.key_for(function_name, identifier, window_start)
        try:
            with self.client.pipeline(transaction=True) as pipe:
                pipe.incr(key, 1)
                pipe.expire(key, self.ttl_seconds)
                result = pipe.execute()
        except redis.RedisError as exc:
            raise CounterStoreUnavailable(str(exc)) from exc
        return int(result[0])

    def current_count(
        self, function_name: str, identifier: str, window_start: datetime
    ) -> int:
        value = self.client.get(self.key_for(function_name, identifier, window_start))
        return int(value) if value else 0


def window_start_for(now: Optional[datetime] = None) -> datetime:
    """Minuto corrente (UTC) com segundos e microssegundos zerados."""

    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).replace(second=0, microsecond=0)


def default_store() -> CounterStore:
    if settings.RATE_LIMIT_BACKEND == "sql":
        from database.rate_limit_repo import SqlCounterStore  # import tardio

        return SqlCounterStore()
    return RedisCounterStore()


def limit_for(function_name: str) -> int:
    limits = settings.webhook_rate_limits
    return limits.get(function_name, limits.get("default", DEFAULT_LIMIT_PER_MINUTE))


def check_and_increment(
    function_name: str,
    identifier: str,
    max_per_minute: int,
    *,
    store: Optional[CounterStore] = None,
    now: Optional[datetime] = None,
) -> RateLimitResult:
    """
    Conta a chamada na janela do minuto corrente e decide se é permitida

    Args:
        function_name: Nome do webhook (ex.: lead-events)
        identifier: Identificador do chamador (hash do token/IP)
        max_per_minute: Máximo de chamadas por minuto
        store: Armazenamento dos contadores (Redis por padrão)
        now: Instante de referência (testes)

    Returns:
        RateLimitResult; ``allowed`` e ``current_count`` vêm da mesma
        leitura pós-incremento. Com o storage fora do ar o resultado é
        DEGRADED com ``allowed=True`` (fail-open).
    """
    counter_store = store or default_store()
    window_start = window_start_for(now)

    try:
        current_count = counter_store.increment(function_name, identifier, window_start)
    except Exception as exc:  # qualquer falha do storage: fail-open
        logger.warning(
            "Rate limit storage unavailable, failing open",
            extra={
                "function": function_name,
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )
        inc_rate_limit_check(function_name, RateLimitOutcome.DEGRADED.value)
        return RateLimitResult.degraded(max_per_minute)

    result = RateLimitResult.checked(current_count, max_per_minute)
    inc_rate_limit_check(
        function_name, "allowed" if result.allowed else "rejected"
    )
    return result


def simple_hash(value: str) -> str:
    """Hash não criptográfico (32 bits, base 36) para agrupar chamadores."""

    acc = 0
    for char in value:
        acc = (acc * 31 + ord(char)) & 0xFFFFFFFF
    if acc >= 0x80000000:
        acc -= 0x100000000
    acc = abs(acc)

    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if acc == 0:
        return "0"
    encoded = []
    while acc:
        acc, remainder = divmod(acc, 36)
        encoded.append(digits[remainder])
    return "".join(reversed(encoded))


def rate_limit_response(headers: Optional[dict] = None) -> JSONResponse:
    """Resposta 429 padrão dos webhooks."""

    return JSONResponse(
        {"error": "Rate limit exceeded", "retryAfter": RETRY_AFTER_SECONDS},
        status_code=429,
        headers={**(headers or {}), "Retry-After": str(RETRY_AFTER_SECONDS)},
    )
