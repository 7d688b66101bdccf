"""Tasks Celery das cadências."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from core.config import settings
from core.telemetry import logger
from database.rate_limit_repo import SqlCounterStore
from services.cadence import CadenceRunner, TriggerSource

from .celery_app import celery_app

# janelas de rate limit mais antigas que isso já não são consultadas
RATE_LIMIT_RETENTION_MINUTES = 60


@celery_app.task(bind=True, max_retries=3)
def run_cadence_tick(self, trigger_source: str = TriggerSource.CRON.value) -> dict:
    """Executa um tick do runner e devolve o resumo."""

    try:
        summary = CadenceRunner().run_tick(TriggerSource(trigger_source))
    except Exception as exc:  # tick inteiro falhou (banco fora)
        logger.error(
            "Cadence tick failed",
            extra={"trigger_source": trigger_source, "error": str(exc)},
        )
        raise self.retry(exc=exc, countdown=settings.CADENCE_TICK_SECONDS)

    return summary.as_dict()


@celery_app.task
def purge_rate_limit_windows(now: Optional[str] = None) -> int:
    """Remove contadores de janelas antigas do backend SQL."""

    if settings.RATE_LIMIT_BACKEND != "sql":
        return 0  # chaves no Redis expiram sozinhas

    moment = datetime.fromisoformat(now) if now else datetime.now(timezone.utc)
    cutoff = moment - timedelta(minutes=RATE_LIMIT_RETENTION_MINUTES)
    return SqlCounterStore.purge_windows_before(cutoff)
