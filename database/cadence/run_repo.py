"""Persistência das runs de cadência com controle de concorrência otimista."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from sqlalchemy import asc

from core.cadence.schedule import to_naive_utc
from core.cadence.state import CadenceRunStatus
from core.telemetry import logger
from database.models import LeadCadenceRun
from database.repos import SessionLocal

ACTIVE = CadenceRunStatus.ATIVA.value
PAUSED = CadenceRunStatus.PAUSADA.value
CANCELLED = CadenceRunStatus.CANCELADA.value
COMPLETED = CadenceRunStatus.CONCLUIDA.value


class RunNotFoundError(LookupError):
    """Run inexistente."""


class RunConflictError(Exception):
    """Transição inválida para o status atual da run."""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeadCadenceRunRepository:
    """Leitura e escrita das runs.

    Toda escrita incrementa ``version``. O runner grava com CAS sobre a
    versão lida; operações de controle (pause/resume/cancel) travam a linha
    e também incrementam a versão, invalidando o CAS de um tick em curso.
    """

    @staticmethod
    def get_run(run_id: int) -> Optional[LeadCadenceRun]:
        with SessionLocal() as session:
            return (
                session.query(LeadCadenceRun).filter(LeadCadenceRun.id == run_id).first()
            )

    @staticmethod
    def get_active_run(lead_id: str, cadence_id: int) -> Optional[LeadCadenceRun]:
        with SessionLocal() as session:
            return (
                session.query(LeadCadenceRun)
                .filter(
                    LeadCadenceRun.lead_id == lead_id,
                    LeadCadenceRun.cadence_id == cadence_id,
                    LeadCadenceRun.status == ACTIVE,
                )
                .first()
            )

    @staticmethod
    def list_runs_for_lead(lead_id: str) -> List[LeadCadenceRun]:
        with SessionLocal() as session:
            return (
                session.query(LeadCadenceRun)
                .filter(LeadCadenceRun.lead_id == lead_id)
                .order_by(asc(LeadCadenceRun.id))
                .all()
            )

    @staticmethod
    def create_run(
        lead_id: str, cadence_id: int, *, now: Optional[datetime] = None
    ) -> Tuple[LeadCadenceRun, bool]:
        """Cria run ATIVA no passo 1; devolve a existente se já houver uma ativa.

        Returns:
            (run, created)
        """
        existing = LeadCadenceRunRepository.get_active_run(lead_id, cadence_id)
        if existing:
            return existing, False

        moment = to_naive_utc(now or _utcnow())
        with SessionLocal() as session:
            run = LeadCadenceRun(
                lead_id=lead_id,
                cadence_id=cadence_id,
                status=ACTIVE,
                last_step_ordem=0,
                next_step_ordem=1,
                next_run_at=moment,
                lead_respondeu=False,
                step_attempts=0,
                version=1,
                started_at=moment,
            )
            session.add(run)
            session.commit()
            session.refresh(run)
            logger.info(
                "Cadence run created",
                extra={"run_id": run.id, "lead_id": lead_id, "cadence_id": cadence_id},
            )
            return run, True

    @staticmethod
    def list_due_runs(now: datetime, limit: int = 100) -> List[LeadCadenceRun]:
        with SessionLocal() as session:
            return (
                session.query(LeadCadenceRun)
                .filter(
                    LeadCadenceRun.status == ACTIVE,
                    LeadCadenceRun.next_run_at.isnot(None),
                    LeadCadenceRun.next_run_at <= to_naive_utc(now),
                )
                .order_by(asc(LeadCadenceRun.next_run_at))
                .limit(limit)
                .all()
            )

    @staticmethod
    def claim(
        run_id: int, expected_version: int, lease_until: datetime
    ) -> Optional[int]:
        """Reserva a run para este tick empurrando ``next_run_at`` para o lease.

        Se o processo cair, a run volta a vencer quando o lease expirar.
        Retorna a nova versão, ou None se outro escritor chegou antes.
        """
        with SessionLocal() as session:
            updated = (
                session.query(LeadCadenceRun)
                .filter(
                    LeadCadenceRun.id == run_id,
                    LeadCadenceRun.version == expected_version,
                    LeadCadenceRun.status == ACTIVE,
                )
                .update(
                    {
                        LeadCadenceRun.next_run_at: to_naive_utc(lease_until),
                        LeadCadenceRun.version: LeadCadenceRun.version + 1,
                    },
                    synchronize_session=False,
                )
            )
            session.commit()
        return expected_version + 1 if updated == 1 else None

    @staticmethod
    def apply_transition(
        run_id: int,
        expected_version: int,
        *,
        status: str,
        last_step_ordem: int,
        next_step_ordem: Optional[int],
        next_run_at: Optional[datetime],
        step_attempts: int,
    ) -> bool:
        """Grava o resultado de um passo num único UPDATE guardado pela versão."""

        values = {
            LeadCadenceRun.status: CadenceRunStatus(status).value,
            LeadCadenceRun.last_step_ordem: last_step_ordem,
            LeadCadenceRun.next_step_ordem: next_step_ordem,
            LeadCadenceRun.next_run_at: (
                to_naive_utc(next_run_at) if next_run_at is not None else None
            ),
            LeadCadenceRun.step_attempts: step_attempts,
            LeadCadenceRun.version: LeadCadenceRun.version + 1,
        }
        with SessionLocal() as session:
            updated = (
                session.query(LeadCadenceRun)
                .filter(
                    LeadCadenceRun.id == run_id,
                    LeadCadenceRun.version == expected_version,
                )
                .update(values, synchronize_session=False)
            )
            session.commit()
        return updated == 1

    @staticmethod
    def _locked_transition(run_id: int, mutate) -> LeadCadenceRun:
        with SessionLocal() as session:
            run = (
                session.query(LeadCadenceRun)
                .filter(LeadCadenceRun.id == run_id)
                .with_for_update()
                .first()
            )
            if not run:
                raise RunNotFoundError(f"Run {run_id} não encontrada")

            if mutate(run):
                run.version = (run.version or 0) + 1
                session.commit()
                session.refresh(run)
            return run

    @staticmethod
    def pause(run_id: int) -> LeadCadenceRun:
        def mutate(run: LeadCadenceRun) -> bool:
            if run.status == PAUSED:
                return False
            if run.status != ACTIVE:
                raise RunConflictError(f"Run {run_id} em {run.status} não pode pausar")
            run.status = PAUSED
            return True

        run = LeadCadenceRunRepository._locked_transition(run_id, mutate)
        logger.info("Cadence run paused", extra={"run_id": run_id})
        return run

    @staticmethod
    def resume(run_id: int, *, now: Optional[datetime] = None) -> LeadCadenceRun:
        """Reativa run pausada; sem próximo passo a run é concluída."""

        moment = to_naive_utc(now or _utcnow())

        def mutate(run: LeadCadenceRun) -> bool:
            if run.status == ACTIVE:
                return False
            if run.status != PAUSED:
                raise RunConflictError(
                    f"Run {run_id} em {run.status} não pode ser retomada"
                )
            if run.next_step_ordem is None:
                run.status = COMPLETED
                run.next_run_at = None
            else:
                run.status = ACTIVE
                run.next_run_at = moment
            return True

        run = LeadCadenceRunRepository._locked_transition(run_id, mutate)
        logger.info(
            "Cadence run resumed", extra={"run_id": run_id, "status": run.status}
        )
        return run

    @staticmethod
    def cancel(run_id: int) -> LeadCadenceRun:
        def mutate(run: LeadCadenceRun) -> bool:
            if run.status == CANCELLED:
                return False
            if run.status == COMPLETED:
                raise RunConflictError(f"Run {run_id} já concluída")
            run.status = CANCELLED
            run.next_run_at = None
            return True

        run = LeadCadenceRunRepository._locked_transition(run_id, mutate)
        logger.info("Cadence run cancelled", extra={"run_id": run_id})
        return run

    @staticmethod
    def mark_lead_responded(lead_id: str) -> List[int]:
        """Marca resposta do lead nas runs ativas/pausadas; retorna os ids."""

        with SessionLocal() as session:
            runs = (
                session.query(LeadCadenceRun)
                .filter(
                    LeadCadenceRun.lead_id == lead_id,
                    LeadCadenceRun.status.in_((ACTIVE, PAUSED)),
                )
                .with_for_update()
                .all()
            )
            touched = []
            for run in runs:
                if not run.lead_respondeu:
                    run.lead_respondeu = True
                    run.version = (run.version or 0) + 1
                    touched.append(run.id)
            session.commit()
        return touched
