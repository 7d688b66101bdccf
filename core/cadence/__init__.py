"""Componentes core do motor de cadências."""

from .channels import Channel, recipient_for, should_skip_step
from .schedule import (
    as_utc,
    compute_next_run_at,
    is_business_hours,
    next_business_slot,
    to_naive_utc,
)
from .state import (
    CadenceRunStatus,
    RunAction,
    StepAction,
    StepDecision,
    action_sends_message,
    decide_step,
    is_terminal,
    resolve_run_status,
)
from .templates import TemplateContext, render_template, split_email_subject
from .validation import (
    CadenceValidationError,
    validate_channel,
    validate_offset,
    validate_step_position,
    validate_step_sequence,
)

__all__ = [
    "Channel",
    "recipient_for",
    "should_skip_step",
    "as_utc",
    "to_naive_utc",
    "compute_next_run_at",
    "is_business_hours",
    "next_business_slot",
    "CadenceRunStatus",
    "RunAction",
    "StepAction",
    "StepDecision",
    "action_sends_message",
    "decide_step",
    "is_terminal",
    "resolve_run_status",
    "TemplateContext",
    "render_template",
    "split_email_subject",
    "CadenceValidationError",
    "validate_channel",
    "validate_offset",
    "validate_step_position",
    "validate_step_sequence",
]
