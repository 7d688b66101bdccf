"""Máquina de estados das execuções de cadência (runs)."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class CadenceRunStatus(str, Enum):
    """Status persistido de uma run."""

    ATIVA = "ATIVA"
    PAUSADA = "PAUSADA"
    CANCELADA = "CANCELADA"
    CONCLUIDA = "CONCLUIDA"


class StepAction(str, Enum):
    """Decisão tomada para o passo prestes a executar."""

    EXECUTE = "EXECUTE"
    COMPLETE = "COMPLETE"
    STOP_RESPONDED = "STOP_RESPONDED"


class RunAction(str, Enum):
    """Ações aceitas na resolução de status (inclui pausa externa)."""

    EXECUTE = "EXECUTE"
    COMPLETE = "COMPLETE"
    STOP_RESPONDED = "STOP_RESPONDED"
    PAUSE = "PAUSE"


ABSORBING_STATUSES = frozenset({CadenceRunStatus.PAUSADA, CadenceRunStatus.CANCELADA})
TERMINAL_STATUSES = frozenset(
    {CadenceRunStatus.CANCELADA, CadenceRunStatus.CONCLUIDA}
)

_STATUS_BY_ACTION = {
    RunAction.EXECUTE: CadenceRunStatus.ATIVA,
    RunAction.COMPLETE: CadenceRunStatus.CONCLUIDA,
    RunAction.STOP_RESPONDED: CadenceRunStatus.CONCLUIDA,
    RunAction.PAUSE: CadenceRunStatus.PAUSADA,
}


@dataclass(frozen=True)
class StepDecision:
    """Resultado de ``decide_step``."""

    action: StepAction
    next_step: Optional[int] = None


def decide_step(
    current_step: int,
    total_steps: int,
    lead_respondeu: bool,
    parar_se_responder: bool,
) -> StepDecision:
    """Decide o que fazer com o passo ``current_step`` (1-indexado).

    A parada por resposta tem prioridade sobre a conclusão, inclusive no
    último passo. Um ``current_step`` acima de ``total_steps`` (leitura
    defasada) conclui a run, nunca gera EXECUTE fora do intervalo.
    """

    if lead_respondeu and parar_se_responder:
        return StepDecision(StepAction.STOP_RESPONDED, None)

    if current_step >= total_steps:
        return StepDecision(StepAction.COMPLETE, None)

    return StepDecision(StepAction.EXECUTE, current_step + 1)


def resolve_run_status(
    current_status: Union[CadenceRunStatus, str],
    action: Union[RunAction, StepAction, str],
) -> CadenceRunStatus:
    """Resolve o status final da run dada a ação decidida.

    PAUSADA e CANCELADA são absorventes: só saem por resume/cancel explícito.
    Ações desconhecidas mantêm o status atual.
    """

    status = CadenceRunStatus(current_status)
    if status in ABSORBING_STATUSES:
        return status

    try:
        run_action = RunAction(getattr(action, "value", action))
    except ValueError:
        return status

    return _STATUS_BY_ACTION.get(run_action, status)


def is_terminal(status: Union[CadenceRunStatus, str]) -> bool:
    return CadenceRunStatus(status) in TERMINAL_STATUSES


def action_sends_message(action: StepAction) -> bool:
    """EXECUTE e COMPLETE disparam o passo corrente; STOP_RESPONDED não."""

    return action in (StepAction.EXECUTE, StepAction.COMPLETE)
