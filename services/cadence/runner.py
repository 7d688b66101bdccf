"""Driver das cadências: processa as runs vencidas a cada tick."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional

from core.cadence import (
    CadenceRunStatus,
    CadenceValidationError,
    RunAction,
    StepAction,
    TemplateContext,
    compute_next_run_at,
    decide_step,
    is_business_hours,
    next_business_slot,
    recipient_for,
    render_template,
    resolve_run_status,
    should_skip_step,
    validate_step_position,
    validate_step_sequence,
)
from core.cadence.metrics import inc_step_processed
from core.config import settings
from core.telemetry import logger
from database.cadence import (
    CadenceEventRepository,
    CadenceEventType,
    CadenceRunnerLogRepository,
    CadenceStepRepository,
    LeadCadenceRunRepository,
    LeadContactRepository,
    MessageTemplateRepository,
)
from database.models import CadenceStep, LeadCadenceRun
from services.cadence.sender import HttpOutboundSender, OutboundSender

MAX_PERSIST_ATTEMPTS = 3


class ProcessStatus(str, Enum):
    DISPARADO = "DISPARADO"
    PULADO = "PULADO"
    CONCLUIDA = "CONCLUIDA"
    PAUSADA = "PAUSADA"
    ERRO = "ERRO"
    SKIPPED = "SKIPPED"


class TriggerSource(str, Enum):
    CRON = "CRON"
    MANUAL = "MANUAL"
    TEST = "TEST"


@dataclass
class ProcessResult:
    run_id: int
    lead_id: str
    step_ordem: int
    status: ProcessStatus
    template_codigo: str = ""
    mensagem: Optional[str] = None
    erro: Optional[str] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass
class RunnerSummary:
    trigger_source: TriggerSource
    duration_ms: int = 0
    results: List[ProcessResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def success(self) -> int:
        return sum(
            1
            for r in self.results
            if r.status in (ProcessStatus.DISPARADO, ProcessStatus.CONCLUIDA)
        )

    @property
    def errors(self) -> int:
        return sum(1 for r in self.results if r.status is ProcessStatus.ERRO)

    @property
    def skipped(self) -> int:
        return sum(
            1
            for r in self.results
            if r.status in (ProcessStatus.SKIPPED, ProcessStatus.PULADO)
        )

    def as_dict(self) -> dict:
        return {
            "total": self.total,
            "success": self.success,
            "errors": self.errors,
            "skipped": self.skipped,
            "duration_ms": self.duration_ms,
            "trigger_source": self.trigger_source.value,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CadenceRunner:
    """Executa um tick: carrega runs vencidas e decide cada uma.

    Cada run é reservada por CAS antes do envio e o resultado é gravado
    com CAS sobre a versão reservada. Se uma pausa/cancelamento chegar no
    meio do tick, o status persistido prevalece (``resolve_run_status``).
    """

    def __init__(
        self,
        sender: Optional[OutboundSender] = None,
        *,
        now_fn: Optional[Callable[[], datetime]] = None,
        business_hours_only: Optional[bool] = None,
    ) -> None:
        self.sender = sender or HttpOutboundSender()
        self.now_fn = now_fn or _utcnow
        self.business_hours_only = (
            settings.CADENCE_BUSINESS_HOURS_ONLY
            if business_hours_only is None
            else business_hours_only
        )

    # ------------------------------------------------------------------ tick
    def run_tick(self, trigger_source: TriggerSource = TriggerSource.CRON) -> RunnerSummary:
        trigger = TriggerSource(trigger_source)
        started_at = self.now_fn()
        started_clock = time.monotonic()
        summary = RunnerSummary(trigger_source=trigger)

        runs = LeadCadenceRunRepository.list_due_runs(
            started_at, limit=settings.CADENCE_BATCH_SIZE
        )
        logger.info("Cadence tick started", extra={"due_runs": len(runs), "trigger": trigger.value})

        for run in runs:
            try:
                summary.results.append(self.process_run(run))
            except Exception as exc:  # run fica para o próximo tick
                logger.exception(
                    "Error processing cadence run",
                    extra={"run_id": run.id, "error": str(exc)},
                )
                inc_step_processed(ProcessStatus.ERRO.value)
                summary.results.append(
                    ProcessResult(
                        run_id=run.id,
                        lead_id=run.lead_id,
                        step_ordem=run.next_step_ordem or 0,
                        status=ProcessStatus.ERRO,
                        erro=str(exc),
                    )
                )

        summary.duration_ms = int((time.monotonic() - started_clock) * 1000)

        CadenceRunnerLogRepository.record(
            executed_at=started_at,
            steps_executed=summary.success,
            errors=summary.errors,
            runs_touched=summary.total,
            duration_ms=summary.duration_ms,
            trigger_source=trigger.value,
            details={
                "results": [r.to_dict() for r in summary.results],
                "started_at": started_at.isoformat(),
                "finished_at": self.now_fn().isoformat(),
            },
        )
        logger.info("Cadence tick finished", extra=summary.as_dict())
        return summary

    # ------------------------------------------------------------------- run
    def process_run(self, run: LeadCadenceRun) -> ProcessResult:
        result = self._process(run)
        inc_step_processed(result.status.value)
        return result

    def _process(self, run: LeadCadenceRun) -> ProcessResult:
        now = self.now_fn()
        step_ordem = run.next_step_ordem or 0

        lease_until = now + timedelta(minutes=settings.CADENCE_CLAIM_LEASE_MINUTES)
        version = LeadCadenceRunRepository.claim(run.id, run.version, lease_until)
        if version is None:
            logger.info("Cadence run claimed elsewhere", extra={"run_id": run.id})
            return self._result(
                run,
                step_ordem,
                ProcessStatus.SKIPPED,
                mensagem="Run em processamento por outra instância",
            )

        steps = CadenceStepRepository.list_steps(run.cadence_id)
        try:
            total_steps = validate_step_sequence(s.ordem for s in steps)
            validate_step_position(step_ordem, total_steps)
        except CadenceValidationError as exc:
            logger.error(
                "Invalid cadence configuration",
                extra={"run_id": run.id, "cadence_id": run.cadence_id, "error": str(exc)},
            )
            CadenceEventRepository.record(
                run.id,
                CadenceEventType.ERRO,
                step_ordem=step_ordem,
                detalhes={"error": str(exc)},
            )
            return self._result(run, step_ordem, ProcessStatus.ERRO, erro=str(exc))

        steps_by_ordem: Dict[int, CadenceStep] = {s.ordem: s for s in steps}
        step = steps_by_ordem.get(step_ordem)
        decision = decide_step(
            step_ordem,
            total_steps,
            bool(run.lead_respondeu),
            bool(step.parar_se_responder) if step else False,
        )

        if decision.action is StepAction.STOP_RESPONDED:
            persisted = self._persist(
                run,
                version,
                RunAction.STOP_RESPONDED,
                last_step_ordem=run.last_step_ordem,
                next_step_ordem=None,
                next_run_at=None,
                step_attempts=0,
            )
            if persisted is None:
                return self._lost_update(run, step_ordem)
            CadenceEventRepository.record(
                run.id,
                CadenceEventType.RESPOSTA_DETECTADA,
                step_ordem=step_ordem,
                template_codigo=step.template_codigo if step else "",
                detalhes={"motivo": "Lead respondeu; cadência encerrada"},
            )
            logger.info("Cadence stopped after lead reply", extra={"run_id": run.id})
            return self._result(
                run,
                step_ordem,
                ProcessStatus.CONCLUIDA,
                mensagem="Cadência encerrada - lead respondeu",
            )

        if step is None:
            persisted = self._persist(
                run,
                version,
                RunAction.COMPLETE,
                last_step_ordem=run.last_step_ordem,
                next_step_ordem=None,
                next_run_at=None,
                step_attempts=0,
            )
            if persisted is None:
                return self._lost_update(run, step_ordem)
            CadenceEventRepository.record(
                run.id,
                CadenceEventType.CONCLUIDA,
                step_ordem=step_ordem,
                detalhes={"motivo": "Sem mais passos"},
            )
            return self._result(
                run,
                step_ordem,
                ProcessStatus.CONCLUIDA,
                mensagem="Cadência concluída - sem mais passos",
            )

        if self.business_hours_only and not self._is_business_hours(now):
            slot = next_business_slot(
                now,
                timezone_name=settings.BUSINESS_TIMEZONE,
                start_hour=settings.BUSINESS_HOUR_START,
                end_hour=settings.BUSINESS_HOUR_END,
            )
            persisted = self._persist(
                run,
                version,
                RunAction.EXECUTE,
                last_step_ordem=run.last_step_ordem,
                next_step_ordem=step.ordem,
                next_run_at=slot,
                step_attempts=run.step_attempts or 0,
            )
            if persisted is None:
                return self._lost_update(run, step.ordem, step.template_codigo)
            CadenceEventRepository.record(
                run.id,
                CadenceEventType.AGENDADO,
                step_ordem=step.ordem,
                template_codigo=step.template_codigo,
                detalhes={"motivo": "Fora de horário comercial", "next_run_at": slot},
            )
            return self._result(
                run,
                step.ordem,
                ProcessStatus.SKIPPED,
                template_codigo=step.template_codigo,
                mensagem="Reagendado para próximo horário comercial",
            )

        contact = LeadContactRepository.get_by_lead(run.lead_id)
        if contact is not None and contact.atendimento_manual:
            persisted = self._persist(
                run,
                version,
                RunAction.PAUSE,
                last_step_ordem=run.last_step_ordem,
                next_step_ordem=step.ordem,
                next_run_at=now,
                step_attempts=run.step_attempts or 0,
            )
            if persisted is None:
                return self._lost_update(run, step.ordem, step.template_codigo)
            CadenceEventRepository.record(
                run.id,
                CadenceEventType.PAUSADA,
                step_ordem=step.ordem,
                template_codigo=step.template_codigo,
                detalhes={"motivo": "Lead em atendimento manual por vendedor"},
            )
            return self._result(
                run,
                step.ordem,
                ProcessStatus.PAUSADA,
                template_codigo=step.template_codigo,
                mensagem="Cadência pausada - lead em atendimento manual",
            )

        if contact is None:
            return self._retry_later(
                run, version, step, now, "Contato do lead não encontrado"
            )

        recipient = recipient_for(step.canal, email=contact.email, telefone=contact.telefone)
        if should_skip_step(step.canal, recipient is not None):
            CadenceEventRepository.record(
                run.id,
                CadenceEventType.PULADO,
                step_ordem=step.ordem,
                template_codigo=step.template_codigo,
                detalhes={"motivo": f"Lead sem contato para {step.canal}"},
            )
            return self._advance(run, version, step, decision, steps_by_ordem, now, ProcessStatus.PULADO)

        template = MessageTemplateRepository.get_active(step.template_codigo)
        if template is None:
            return self._retry_later(
                run,
                version,
                step,
                now,
                f"Template {step.template_codigo} não encontrado ou inativo",
            )

        content = render_template(
            template.conteudo,
            TemplateContext(
                nome=contact.nome,
                primeiro_nome=contact.primeiro_nome,
                email=contact.email,
                empresa=contact.empresa,
            ),
        )
        delivery = self.sender.send(step.canal, recipient, content)

        if not delivery.delivered:
            attempts = (run.step_attempts or 0) + 1
            CadenceEventRepository.record(
                run.id,
                CadenceEventType.ERRO,
                step_ordem=step.ordem,
                template_codigo=step.template_codigo,
                detalhes={"error": delivery.error, "tentativa": attempts},
            )
            logger.error(
                "Cadence step delivery failed",
                extra={"run_id": run.id, "step": step.ordem, "attempt": attempts},
            )
            if attempts < settings.CADENCE_MAX_SEND_ATTEMPTS:
                retry_at = compute_next_run_at(now, settings.CADENCE_SEND_RETRY_MINUTES)
                self._persist(
                    run,
                    version,
                    RunAction.EXECUTE,
                    last_step_ordem=run.last_step_ordem,
                    next_step_ordem=step.ordem,
                    next_run_at=retry_at,
                    step_attempts=attempts,
                )
                return self._result(
                    run,
                    step.ordem,
                    ProcessStatus.ERRO,
                    template_codigo=step.template_codigo,
                    erro=delivery.error,
                )
            return self._advance(
                run,
                version,
                step,
                decision,
                steps_by_ordem,
                now,
                ProcessStatus.ERRO,
                erro=delivery.error,
            )

        CadenceEventRepository.record(
            run.id,
            CadenceEventType.DISPARADO,
            step_ordem=step.ordem,
            template_codigo=step.template_codigo,
            detalhes={
                "canal": step.canal,
                "body_preview": content[:100],
                "message_id": delivery.provider_message_id,
            },
        )
        logger.info(
            "Cadence step dispatched",
            extra={"run_id": run.id, "step": step.ordem, "template": step.template_codigo},
        )
        return self._advance(run, version, step, decision, steps_by_ordem, now, ProcessStatus.DISPARADO)

    # --------------------------------------------------------------- helpers
    def _is_business_hours(self, moment: datetime) -> bool:
        return is_business_hours(
            moment,
            timezone_name=settings.BUSINESS_TIMEZONE,
            start_hour=settings.BUSINESS_HOUR_START,
            end_hour=settings.BUSINESS_HOUR_END,
        )

    def _advance(
        self,
        run: LeadCadenceRun,
        version: int,
        step: CadenceStep,
        decision,
        steps_by_ordem: Dict[int, CadenceStep],
        now: datetime,
        outcome: ProcessStatus,
        *,
        erro: Optional[str] = None,
    ) -> ProcessResult:
        """Consome o passo (enviado, pulado ou esgotado) e agenda o próximo."""

        if decision.action is StepAction.EXECUTE:
            next_step = steps_by_ordem[decision.next_step]
            next_run_at = compute_next_run_at(now, next_step.offset_minutos)
            persisted = self._persist(
                run,
                version,
                RunAction.EXECUTE,
                last_step_ordem=step.ordem,
                next_step_ordem=next_step.ordem,
                next_run_at=next_run_at,
                step_attempts=0,
            )
            if persisted is not None:
                CadenceEventRepository.record(
                    run.id,
                    CadenceEventType.AGENDADO,
                    step_ordem=next_step.ordem,
                    template_codigo=next_step.template_codigo,
                    detalhes={"next_run_at": next_run_at},
                )
            mensagem = f"Passo {step.ordem} processado, próximo: {next_step.ordem}"
        else:
            persisted = self._persist(
                run,
                version,
                RunAction.COMPLETE,
                last_step_ordem=step.ordem,
                next_step_ordem=None,
                next_run_at=None,
                step_attempts=0,
            )
            if persisted is CadenceRunStatus.CONCLUIDA:
                CadenceEventRepository.record(
                    run.id,
                    CadenceEventType.CONCLUIDA,
                    step_ordem=step.ordem,
                    template_codigo=step.template_codigo,
                )
            if outcome is ProcessStatus.DISPARADO:
                outcome = ProcessStatus.CONCLUIDA
            mensagem = "Cadência concluída"

        if persisted is None:
            mensagem = "Run alterada durante o processamento; progresso não gravado"

        return self._result(
            run,
            step.ordem,
            outcome,
            template_codigo=step.template_codigo,
            mensagem=mensagem,
            erro=erro,
        )

    def _retry_later(
        self,
        run: LeadCadenceRun,
        version: int,
        step: CadenceStep,
        now: datetime,
        erro: str,
    ) -> ProcessResult:
        """Dados incompletos: mantém o passo e tenta de novo mais tarde."""

        persisted = self._persist(
            run,
            version,
            RunAction.EXECUTE,
            last_step_ordem=run.last_step_ordem,
            next_step_ordem=step.ordem,
            next_run_at=compute_next_run_at(now, settings.CADENCE_DATA_RETRY_MINUTES),
            step_attempts=run.step_attempts or 0,
        )
        if persisted is None:
            return self._lost_update(run, step.ordem, step.template_codigo)

        CadenceEventRepository.record(
            run.id,
            CadenceEventType.ERRO,
            step_ordem=step.ordem,
            template_codigo=step.template_codigo,
            detalhes={"error": erro},
        )
        logger.warning("Cadence step postponed", extra={"run_id": run.id, "error": erro})
        return self._result(
            run,
            step.ordem,
            ProcessStatus.ERRO,
            template_codigo=step.template_codigo,
            erro=erro,
        )

    def _persist(
        self,
        run: LeadCadenceRun,
        version: int,
        action: RunAction,
        *,
        last_step_ordem: int,
        next_step_ordem: Optional[int],
        next_run_at: Optional[datetime],
        step_attempts: int,
    ) -> Optional[CadenceRunStatus]:
        """Grava a transição com CAS; em conflito relê e reaplica.

        Reaplica só se a run ainda estiver no passo processado. O status vem
        de ``resolve_run_status`` sobre o status persistido, então uma pausa
        ou cancelamento concorrente nunca é sobrescrito por ATIVA.
        """

        executed_step = run.next_step_ordem
        expected_version = version
        current_status = CadenceRunStatus.ATIVA

        for _ in range(MAX_PERSIST_ATTEMPTS):
            status = resolve_run_status(current_status, action)
            if LeadCadenceRunRepository.apply_transition(
                run.id,
                expected_version,
                status=status.value,
                last_step_ordem=last_step_ordem,
                next_step_ordem=next_step_ordem,
                next_run_at=None if status is CadenceRunStatus.CANCELADA else next_run_at,
                step_attempts=step_attempts,
            ):
                return status

            current = LeadCadenceRunRepository.get_run(run.id)
            if (
                current is None
                or current.next_step_ordem != executed_step
                or current.status == CadenceRunStatus.CONCLUIDA.value
            ):
                break
            logger.info(
                "Cadence run changed concurrently, reapplying",
                extra={"run_id": run.id, "status": current.status},
            )
            expected_version = current.version
            current_status = CadenceRunStatus(current.status)

        logger.warning(
            "Cadence run update lost to concurrent writer",
            extra={"run_id": run.id, "step": executed_step},
        )
        return None

    def _lost_update(
        self, run: LeadCadenceRun, step_ordem: int, template_codigo: str = ""
    ) -> ProcessResult:
        """Outro escritor avançou a run; nada é registrado neste tick."""

        return self._result(
            run,
            step_ordem,
            ProcessStatus.SKIPPED,
            template_codigo=template_codigo,
            mensagem="Run alterada durante o processamento; progresso não gravado",
        )

    @staticmethod
    def _result(
        run: LeadCadenceRun,
        step_ordem: int,
        status: ProcessStatus,
        *,
        template_codigo: str = "",
        mensagem: Optional[str] = None,
        erro: Optional[str] = None,
    ) -> ProcessResult:
        return ProcessResult(
            run_id=run.id,
            lead_id=run.lead_id,
            step_ordem=step_ordem,
            status=status,
            template_codigo=template_codigo,
            mensagem=mensagem,
            erro=erro,
        )
