"""Contadores do rate limiter persistidos no banco."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError

from core.cadence.schedule import to_naive_utc
from core.rate_limiter import CounterStoreUnavailable
from core.telemetry import logger
from database.models import WebhookRateLimit
from database.repos import SessionLocal

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class SqlCounterStore:
    """Incremento atômico via INSERT ... ON CONFLICT DO UPDATE ... RETURNING."""

    def increment(
        self, function_name: str, identifier: str, window_start: datetime
    ) -> int:
        try:
            with SessionLocal() as session:
                dialect = session.get_bind().dialect.name
                insert = _INSERT_BY_DIALECT.get(dialect)
                if insert is None:
                    raise CounterStoreUnavailable(
                        f"Dialeto sem upsert atômico: {dialect}"
                    )

                stmt = insert(WebhookRateLimit).values(
                    function_name=function_name,
                    identifier=identifier,
                    window_start=to_naive_utc(window_start),
                    call_count=1,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["function_name", "identifier", "window_start"],
                    set_={"call_count": WebhookRateLimit.call_count + 1},
                ).returning(WebhookRateLimit.call_count)

                count = session.execute(stmt).scalar_one()
                session.commit()
                return int(count)
        except SQLAlchemyError as exc:
            raise CounterStoreUnavailable(str(exc)) from exc

    @staticmethod
    def get_count(function_name: str, identifier: str, window_start: datetime) -> int:
        with SessionLocal() as session:
            row = (
                session.query(WebhookRateLimit)
                .filter(
                    WebhookRateLimit.function_name == function_name,
                    WebhookRateLimit.identifier == identifier,
                    WebhookRateLimit.window_start == to_naive_utc(window_start),
                )
                .first()
            )
            return int(row.call_count) if row else 0

    @staticmethod
    def purge_windows_before(cutoff: datetime) -> int:
        """Remove janelas antigas; retorna quantas linhas saíram."""

        with SessionLocal() as session:
            deleted = (
                session.query(WebhookRateLimit)
                .filter(WebhookRateLimit.window_start < to_naive_utc(cutoff))
                .delete(synchronize_session=False)
            )
            session.commit()
        logger.info("Rate limit windows purged", extra={"deleted": deleted})
        return int(deleted)
