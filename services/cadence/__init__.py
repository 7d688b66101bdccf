"""
Serviços de cadência
"""

from .runner import (
    CadenceRunner,
    ProcessResult,
    ProcessStatus,
    RunnerSummary,
    TriggerSource,
)
from .sender import HttpOutboundSender, OutboundSender, SendResult

__all__ = [
    "CadenceRunner",
    "ProcessResult",
    "ProcessStatus",
    "RunnerSummary",
    "TriggerSource",
    "HttpOutboundSender",
    "OutboundSender",
    "SendResult",
]
