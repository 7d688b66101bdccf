"""Disponibilidade de canal para os passos de cadência."""

from __future__ import annotations

from enum import Enum
from typing import Optional, Union


class Channel(str, Enum):
    WHATSAPP = "WHATSAPP"
    EMAIL = "EMAIL"
    SMS = "SMS"


PHONE_CHANNELS = frozenset({Channel.WHATSAPP.value, Channel.SMS.value})
EMAIL_CHANNELS = frozenset({Channel.EMAIL.value})


def _channel_name(canal: Union[Channel, str]) -> str:
    return str(getattr(canal, "value", canal)).upper()


def should_skip_step(canal: Union[Channel, str], lead_has_channel: bool) -> bool:
    """True quando o lead não tem o dado de contato exigido pelo canal.

    Não avança a run: o passo pulado é consumido pelo runner como se tivesse
    sido executado.
    """

    name = _channel_name(canal)
    if name in PHONE_CHANNELS and not lead_has_channel:
        return True
    if name in EMAIL_CHANNELS and not lead_has_channel:
        return True
    return False


def recipient_for(
    canal: Union[Channel, str],
    *,
    email: Optional[str],
    telefone: Optional[str],
) -> Optional[str]:
    """Endereço utilizável para o canal, ou None se ausente/vazio."""

    name = _channel_name(canal)
    if name in PHONE_CHANNELS:
        value = telefone
    elif name in EMAIL_CHANNELS:
        value = email
    else:
        return None

    if value is None or not value.strip():
        return None
    return value.strip()
