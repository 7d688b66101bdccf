"""Repos para cadências, passos, templates e contatos."""

from __future__ import annotations

from typing import Iterable, List, Optional

from sqlalchemy import asc

from core.cadence.validation import validate_channel, validate_offset
from core.telemetry import logger
from database.models import Cadence, CadenceStep, LeadContact, MessageTemplate
from database.repos import SessionLocal


class CadenceRepository:
    """CRUD básico do molde de cadência."""

    @staticmethod
    def get_by_id(cadence_id: int) -> Optional[Cadence]:
        with SessionLocal() as session:
            return session.query(Cadence).filter(Cadence.id == cadence_id).first()

    @staticmethod
    def get_active_by_codigo(codigo: str) -> Optional[Cadence]:
        with SessionLocal() as session:
            return (
                session.query(Cadence)
                .filter(Cadence.codigo == codigo, Cadence.ativo.is_(True))
                .first()
            )

    @staticmethod
    def create_cadence(
        codigo: str,
        nome: str,
        steps: Iterable[dict],
        *,
        empresa: Optional[str] = None,
    ) -> Cadence:
        """Cria a cadência com passos numerados 1..N na ordem recebida."""

        with SessionLocal() as session:
            cadence = Cadence(codigo=codigo, nome=nome, empresa=empresa, ativo=True)
            session.add(cadence)
            session.flush()

            for ordem, step in enumerate(steps, start=1):
                canal = validate_channel(step["canal"])
                offset = int(step.get("offset_minutos", 0))
                validate_offset(offset)
                session.add(
                    CadenceStep(
                        cadence_id=cadence.id,
                        ordem=ordem,
                        canal=canal.value,
                        offset_minutos=offset,
                        template_codigo=step.get("template_codigo", ""),
                        parar_se_responder=bool(step.get("parar_se_responder", False)),
                    )
                )

            session.commit()
            session.refresh(cadence)
            logger.info(
                "Cadence created",
                extra={"cadence_id": cadence.id, "codigo": codigo},
            )
            return cadence


class CadenceStepRepository:
    """Leitura dos passos sequenciais."""

    @staticmethod
    def list_steps(cadence_id: int) -> List[CadenceStep]:
        with SessionLocal() as session:
            return (
                session.query(CadenceStep)
                .filter(CadenceStep.cadence_id == cadence_id)
                .order_by(asc(CadenceStep.ordem))
                .all()
            )


class MessageTemplateRepository:
    @staticmethod
    def get_active(codigo: str) -> Optional[MessageTemplate]:
        with SessionLocal() as session:
            return (
                session.query(MessageTemplate)
                .filter(
                    MessageTemplate.codigo == codigo,
                    MessageTemplate.ativo.is_(True),
                )
                .first()
            )

    @staticmethod
    def create_template(codigo: str, canal: str, conteudo: str) -> MessageTemplate:
        with SessionLocal() as session:
            template = MessageTemplate(
                codigo=codigo,
                canal=validate_channel(canal).value,
                conteudo=conteudo,
                ativo=True,
            )
            session.add(template)
            session.commit()
            session.refresh(template)
            return template


class LeadContactRepository:
    """Contatos dos leads (telefone/e-mail usados pelos canais)."""

    _FIELDS = (
        "empresa",
        "nome",
        "primeiro_nome",
        "email",
        "telefone",
        "atendimento_manual",
    )

    @staticmethod
    def get_by_lead(lead_id: str) -> Optional[LeadContact]:
        with SessionLocal() as session:
            return (
                session.query(LeadContact).filter(LeadContact.lead_id == lead_id).first()
            )

    @staticmethod
    def upsert(lead_id: str, **fields) -> LeadContact:
        """Cria ou atualiza; campos None não sobrescrevem valores existentes."""

        with SessionLocal() as session:
            contact = (
                session.query(LeadContact)
                .filter(LeadContact.lead_id == lead_id)
                .with_for_update()
                .first()
            )
            if not contact:
                contact = LeadContact(lead_id=lead_id, atendimento_manual=False)
                session.add(contact)

            for key in LeadContactRepository._FIELDS:
                value = fields.get(key)
                if value is not None:
                    setattr(contact, key, value)

            session.commit()
            session.refresh(contact)
            return contact

    @staticmethod
    def set_manual_attendance(lead_id: str, enabled: bool) -> None:
        with SessionLocal() as session:
            session.query(LeadContact).filter(LeadContact.lead_id == lead_id).update(
                {LeadContact.atendimento_manual: enabled}
            )
            session.commit()
