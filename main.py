"""
FastAPI: webhooks públicos e controle das runs de cadência
"""

import re
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from core.config import settings
from core.rate_limiter import (
    check_and_increment,
    limit_for,
    rate_limit_response,
    simple_hash,
)
from core.telemetry import logger
from database.cadence import (
    CadenceEventRepository,
    CadenceEventType,
    CadenceRepository,
    LeadCadenceRunRepository,
    LeadContactRepository,
    RunConflictError,
    RunNotFoundError,
)
from database.models import LeadCadenceRun

app = FastAPI(title="Outreach Engine")


class LeadEventPayload(BaseModel):
    lead_id: str
    cadence_codigo: str
    nome: Optional[str] = None
    primeiro_nome: Optional[str] = None
    email: Optional[str] = None
    telefone: Optional[str] = None
    empresa: Optional[str] = None
    atendimento_manual: Optional[bool] = None


class InboundMessagePayload(BaseModel):
    lead_id: str
    telefone: Optional[str] = None
    texto: Optional[str] = None


def _serialize_run(run: LeadCadenceRun) -> dict:
    return {
        "id": run.id,
        "lead_id": run.lead_id,
        "cadence_id": run.cadence_id,
        "status": run.status,
        "last_step_ordem": run.last_step_ordem,
        "next_step_ordem": run.next_step_ordem,
        "next_run_at": run.next_run_at.isoformat() if run.next_run_at else None,
        "lead_respondeu": bool(run.lead_respondeu),
        "version": run.version,
    }


def _enforce_rate_limit(function_name: str, identifier: str) -> Optional[JSONResponse]:
    """Retorna a resposta 429 se o chamador estourou o limite do minuto."""

    result = check_and_increment(function_name, identifier, limit_for(function_name))
    if result.allowed:
        return None

    logger.warning(
        "Webhook rate limit exceeded",
        extra={
            "function": function_name,
            "identifier": identifier,
            "count": result.current_count,
            "limit": result.limit,
        },
    )
    return rate_limit_response()


async def _read_json(request: Request) -> dict:
    try:
        data = await request.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


@app.post("/webhook/lead-events")
async def lead_events_webhook(request: Request):
    """Recebe lead do CRM e inicia a cadência pedida"""
    caller = (
        request.headers.get("x-webhook-secret")
        or request.headers.get("authorization")
        or "unknown"
    )
    rejected = _enforce_rate_limit("lead-events", simple_hash(caller))
    if rejected is not None:
        return rejected

    try:
        payload = LeadEventPayload(**await _read_json(request))
    except ValidationError as exc:
        return JSONResponse({"error": "Payload inválido", "detail": exc.errors()}, status_code=422)

    cadence = CadenceRepository.get_active_by_codigo(payload.cadence_codigo)
    if not cadence:
        return JSONResponse(
            {"error": f"Cadência {payload.cadence_codigo} não encontrada"},
            status_code=404,
        )

    LeadContactRepository.upsert(
        payload.lead_id,
        nome=payload.nome,
        primeiro_nome=payload.primeiro_nome,
        email=payload.email,
        telefone=payload.telefone,
        empresa=payload.empresa or cadence.empresa,
        atendimento_manual=payload.atendimento_manual,
    )
    run, created = LeadCadenceRunRepository.create_run(payload.lead_id, cadence.id)
    if created:
        CadenceEventRepository.record(
            run.id,
            CadenceEventType.AGENDADO,
            step_ordem=run.next_step_ordem,
            detalhes={"motivo": "Cadência iniciada", "cadence": cadence.codigo},
        )

    return JSONResponse(
        {"ok": True, "created": created, "run": _serialize_run(run)},
        status_code=201 if created else 200,
    )


@app.post("/webhook/inbound-message")
async def inbound_message_webhook(request: Request):
    """Resposta do lead: marca as runs para parar nos passos com parada"""
    data = await _read_json(request)
    digits = re.sub(r"\D", "", str(data.get("telefone") or ""))
    rejected = _enforce_rate_limit(
        "inbound-message", simple_hash(settings.INBOUND_WEBHOOK_SECRET + digits)
    )
    if rejected is not None:
        return rejected

    try:
        payload = InboundMessagePayload(**data)
    except ValidationError as exc:
        return JSONResponse({"error": "Payload inválido", "detail": exc.errors()}, status_code=422)

    touched = LeadCadenceRunRepository.mark_lead_responded(payload.lead_id)
    for run_id in touched:
        CadenceEventRepository.record(
            run_id,
            CadenceEventType.RESPOSTA_DETECTADA,
            detalhes={"preview": (payload.texto or "")[:100]},
        )

    logger.info(
        "Lead reply registered",
        extra={"lead_id": payload.lead_id, "runs": len(touched)},
    )
    return JSONResponse({"ok": True, "runs": touched}, status_code=200)


def _control(run_id: int, operation, event_type: CadenceEventType, motivo: str):
    try:
        run = operation(run_id)
    except RunNotFoundError as exc:
        return JSONResponse({"error": str(exc)}, status_code=404)
    except RunConflictError as exc:
        return JSONResponse({"error": str(exc)}, status_code=409)

    CadenceEventRepository.record(
        run.id,
        event_type,
        step_ordem=run.next_step_ordem or run.last_step_ordem,
        detalhes={"motivo": motivo},
    )
    return JSONResponse({"ok": True, "run": _serialize_run(run)}, status_code=200)


@app.post("/runs/{run_id}/pause")
async def pause_run(run_id: int):
    return _control(
        run_id, LeadCadenceRunRepository.pause, CadenceEventType.PAUSADA, "Pausa manual"
    )


@app.post("/runs/{run_id}/resume")
async def resume_run(run_id: int):
    return _control(
        run_id, LeadCadenceRunRepository.resume, CadenceEventType.AGENDADO, "Retomada manual"
    )


@app.post("/runs/{run_id}/cancel")
async def cancel_run(run_id: int):
    return _control(
        run_id,
        LeadCadenceRunRepository.cancel,
        CadenceEventType.CANCELADA,
        "Cancelamento manual",
    )


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "env": settings.APP_ENV}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)  # nosec B104
