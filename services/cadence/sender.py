"""Envio das mensagens de cadência para os provedores externos."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx

from core.cadence.channels import Channel
from core.cadence.templates import split_email_subject
from core.config import settings
from core.telemetry import logger


@dataclass(frozen=True)
class SendResult:
    delivered: bool
    provider_message_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, provider_message_id: Optional[str] = None) -> "SendResult":
        return cls(delivered=True, provider_message_id=provider_message_id)

    @classmethod
    def failed(cls, error: str) -> "SendResult":
        return cls(delivered=False, error=error)


class OutboundSender(Protocol):
    def send(self, canal: str, recipient: str, content: str) -> SendResult:
        """Entrega ``content`` para ``recipient`` no canal indicado."""


class HttpOutboundSender:
    """Cliente HTTP dos provedores de WhatsApp e e-mail.

    Falhas de transporte e respostas sem ``success`` viram ``SendResult``
    com ``delivered=False``; nada é levantado para o runner.
    """

    def __init__(
        self,
        *,
        whatsapp_url: Optional[str] = None,
        email_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
        max_retries: int = 3,
        default_subject: str = "Mensagem da nossa equipe",
    ) -> None:
        self.whatsapp_url = whatsapp_url or settings.WHATSAPP_SEND_URL
        self.email_url = email_url or settings.EMAIL_SEND_URL
        self.api_token = api_token if api_token is not None else settings.OUTBOUND_API_TOKEN
        self.timeout = timeout or settings.OUTBOUND_TIMEOUT_SECONDS
        self.transport = transport
        self.max_retries = max(1, max_retries)
        self.default_subject = default_subject

    def send(self, canal: str, recipient: str, content: str) -> SendResult:
        name = str(getattr(canal, "value", canal)).upper()
        if name == Channel.WHATSAPP.value:
            return self._post(
                self.whatsapp_url, {"telefone": recipient, "mensagem": content}
            )
        if name == Channel.EMAIL.value:
            subject, body = split_email_subject(content, self.default_subject)
            return self._post(
                self.email_url,
                {
                    "to": recipient,
                    "subject": subject,
                    "text": body,
                    "html": body.replace("\n", "<br>"),
                },
            )

        logger.warning("Unsupported outbound channel", extra={"canal": name})
        return SendResult.failed(
            f"Canal {name} não suportado. Use WHATSAPP ou EMAIL no passo."
        )

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    def _post(self, url: str, payload: dict) -> SendResult:
        for attempt in range(self.max_retries):
            try:
                with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                    response = client.post(url, json=payload, headers=self._headers())
                data = response.json() if response.content else {}
                if not isinstance(data, dict):
                    data = {}  # corpo fora do formato esperado
            except (httpx.ConnectError, httpx.ReadTimeout) as exc:
                if attempt < self.max_retries - 1:
                    time.sleep(2**attempt)  # Exponential backoff: 1s, 2s, 4s
                    continue
                return SendResult.failed(f"Falha de conexão com provedor: {exc}")
            except (httpx.HTTPError, ValueError) as exc:
                return SendResult.failed(f"Erro ao chamar provedor: {exc}")

            if response.status_code >= 400 or not data.get("success"):
                return SendResult.failed(
                    data.get("error") or f"Provedor respondeu HTTP {response.status_code}"
                )
            return SendResult.ok(data.get("messageId"))

        return SendResult.failed("Provedor indisponível")
