"""Eventos de auditoria das runs e logs do runner."""

from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import asc

from core.cadence.schedule import to_naive_utc
from database.models import CadenceRunnerLog, LeadCadenceEvent
from database.repos import SessionLocal


class CadenceEventType(str, Enum):
    AGENDADO = "AGENDADO"
    DISPARADO = "DISPARADO"
    PULADO = "PULADO"
    ERRO = "ERRO"
    RESPOSTA_DETECTADA = "RESPOSTA_DETECTADA"
    PAUSADA = "PAUSADA"
    CANCELADA = "CANCELADA"
    CONCLUIDA = "CONCLUIDA"


class CadenceEventRepository:
    @staticmethod
    def record(
        run_id: int,
        tipo_evento: CadenceEventType,
        *,
        step_ordem: int = 0,
        template_codigo: str = "",
        detalhes: Optional[dict] = None,
    ) -> LeadCadenceEvent:
        with SessionLocal() as session:
            event = LeadCadenceEvent(
                lead_cadence_run_id=run_id,
                step_ordem=step_ordem,
                template_codigo=template_codigo or "",
                tipo_evento=CadenceEventType(tipo_evento).value,
                detalhes=json.dumps(detalhes or {}, default=str),
            )
            session.add(event)
            session.commit()
            session.refresh(event)
            return event

    @staticmethod
    def list_events(run_id: int) -> List[LeadCadenceEvent]:
        with SessionLocal() as session:
            return (
                session.query(LeadCadenceEvent)
                .filter(LeadCadenceEvent.lead_cadence_run_id == run_id)
                .order_by(asc(LeadCadenceEvent.id))
                .all()
            )


class CadenceRunnerLogRepository:
    @staticmethod
    def record(
        *,
        executed_at: datetime,
        steps_executed: int,
        errors: int,
        runs_touched: int,
        duration_ms: int,
        trigger_source: str,
        details: dict,
    ) -> CadenceRunnerLog:
        with SessionLocal() as session:
            entry = CadenceRunnerLog(
                executed_at=to_naive_utc(executed_at),
                steps_executed=steps_executed,
                errors=errors,
                runs_touched=runs_touched,
                duration_ms=duration_ms,
                trigger_source=trigger_source,
                details=json.dumps(details, default=str),
            )
            session.add(entry)
            session.commit()
            session.refresh(entry)
            return entry

    @staticmethod
    def latest() -> Optional[CadenceRunnerLog]:
        with SessionLocal() as session:
            return (
                session.query(CadenceRunnerLog)
                .order_by(CadenceRunnerLog.id.desc())
                .first()
            )
