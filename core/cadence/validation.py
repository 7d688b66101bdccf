"""Validação de entrada antes das funções puras de decisão."""

from __future__ import annotations

from typing import Iterable, Sequence

from .channels import Channel


class CadenceValidationError(ValueError):
    """Dados de passo/run malformados."""


def validate_step_position(current_step: int, total_steps: int) -> None:
    if total_steps < 1:
        raise CadenceValidationError("Cadência sem passos (total_steps < 1).")
    if current_step < 1:
        raise CadenceValidationError(
            f"Passo corrente inválido: {current_step} (esperado >= 1)."
        )


def validate_offset(offset_minutes: int) -> None:
    if offset_minutes is None or offset_minutes < 0:
        raise CadenceValidationError(
            f"offset_minutos inválido: {offset_minutes} (esperado >= 0)."
        )


def validate_channel(canal: str) -> Channel:
    try:
        return Channel(str(canal).upper())
    except ValueError as exc:
        raise CadenceValidationError(f"Canal desconhecido: {canal}") from exc


def validate_step_sequence(ordens: Iterable[int]) -> int:
    """Garante passos numerados 1..N sem lacunas e retorna N."""

    ordered: Sequence[int] = sorted(ordens)
    if not ordered:
        raise CadenceValidationError("Cadência sem passos configurados.")

    expected = list(range(1, len(ordered) + 1))
    if list(ordered) != expected:
        raise CadenceValidationError(
            f"Passos devem ser contíguos a partir de 1; recebido {list(ordered)}."
        )
    return len(ordered)
