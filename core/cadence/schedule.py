"""Cálculo de horários de execução dos passos de cadência."""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

DEFAULT_BUSINESS_TZ = "America/Sao_Paulo"
DEFAULT_START_HOUR = 9
DEFAULT_END_HOUR = 18


def as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def to_naive_utc(moment: datetime) -> datetime:
    """Formato persistido no banco (UTC sem tzinfo)."""

    return as_utc(moment).replace(tzinfo=None)


def compute_next_run_at(base_time: datetime, offset_minutes: int) -> datetime:
    """Retorna ``base_time + offset_minutes`` minutos, sem arredondamento.

    Offset zero devolve o mesmo instante. Datetimes sem tzinfo são tratados
    como UTC.
    """

    return as_utc(base_time) + timedelta(minutes=offset_minutes)


def is_business_hours(
    moment: datetime,
    *,
    timezone_name: Optional[str] = None,
    start_hour: int = DEFAULT_START_HOUR,
    end_hour: int = DEFAULT_END_HOUR,
) -> bool:
    """Seg-Sex, entre ``start_hour`` e ``end_hour`` no fuso comercial."""

    local = as_utc(moment).astimezone(ZoneInfo(timezone_name or DEFAULT_BUSINESS_TZ))
    return local.weekday() < 5 and start_hour <= local.hour < end_hour


def next_business_slot(
    moment: datetime,
    *,
    timezone_name: Optional[str] = None,
    start_hour: int = DEFAULT_START_HOUR,
    end_hour: int = DEFAULT_END_HOUR,
) -> datetime:
    """Próxima abertura do horário comercial (em UTC).

    Dia útil antes da abertura: hoje. Depois do fechamento ou fim de semana:
    próximo dia útil.
    """

    tz = ZoneInfo(timezone_name or DEFAULT_BUSINESS_TZ)
    local = as_utc(moment).astimezone(tz)

    candidate = local.date()
    if local.weekday() >= 5 or local.hour >= end_hour:
        candidate += timedelta(days=1)
    while candidate.weekday() >= 5:
        candidate += timedelta(days=1)

    opening = datetime.combine(candidate, time(start_hour, 0), tz)
    return opening.astimezone(timezone.utc)
