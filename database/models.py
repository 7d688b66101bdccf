"""
SQLAlchemy Models
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Cadence(Base):
    """Molde de cadência (sequência ordenada de passos)"""

    __tablename__ = "cadences"

    id = Column(Integer, primary_key=True)
    codigo = Column(String(64), unique=True, nullable=False)
    nome = Column(String(128))
    empresa = Column(String(32))
    ativo = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())


class CadenceStep(Base):
    """Passo de uma cadência"""

    __tablename__ = "cadence_steps"

    id = Column(Integer, primary_key=True)
    cadence_id = Column(
        Integer, ForeignKey("cadences.id", ondelete="CASCADE"), nullable=False
    )
    ordem = Column(Integer, nullable=False)
    canal = Column(String(16), nullable=False)  # WHATSAPP, EMAIL, SMS
    offset_minutos = Column(Integer, nullable=False, default=0)
    template_codigo = Column(String(64), nullable=False, default="")
    parar_se_responder = Column(Boolean, default=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    __table_args__ = (
        Index("idx_cadence_step_order", "cadence_id", "ordem", unique=True),
    )


class MessageTemplate(Base):
    """Template de mensagem referenciado pelos passos"""

    __tablename__ = "message_templates"

    id = Column(Integer, primary_key=True)
    codigo = Column(String(64), unique=True, nullable=False)
    canal = Column(String(16), nullable=False)
    conteudo = Column(Text, nullable=False)
    ativo = Column(Boolean, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())


class LeadContact(Base):
    """Dados de contato de um lead"""

    __tablename__ = "lead_contacts"

    id = Column(Integer, primary_key=True)
    lead_id = Column(String(64), unique=True, nullable=False)
    empresa = Column(String(32))
    nome = Column(String(128))
    primeiro_nome = Column(String(64))
    email = Column(String(256))
    telefone = Column(String(32))
    atendimento_manual = Column(Boolean, default=False)  # vendedor assumiu
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())


class LeadCadenceRun(Base):
    """Execução de uma cadência para um lead"""

    __tablename__ = "lead_cadence_runs"

    id = Column(Integer, primary_key=True)
    lead_id = Column(String(64), nullable=False, index=True)
    cadence_id = Column(
        Integer, ForeignKey("cadences.id", ondelete="CASCADE"), nullable=False
    )
    status = Column(String(16), nullable=False, default="ATIVA")
    last_step_ordem = Column(Integer, nullable=False, default=0)
    next_step_ordem = Column(Integer, nullable=True)
    next_run_at = Column(DateTime, nullable=True)  # UTC
    lead_respondeu = Column(Boolean, nullable=False, default=False)
    step_attempts = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)  # controle otimista
    started_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, onupdate=func.now())

    __table_args__ = (
        Index("idx_cadence_run_due", "status", "next_run_at"),
        Index("idx_cadence_run_lead", "lead_id", "cadence_id", "status"),
    )


class LeadCadenceEvent(Base):
    """Log de eventos de uma run (auditoria)"""

    __tablename__ = "lead_cadence_events"

    id = Column(Integer, primary_key=True)
    lead_cadence_run_id = Column(
        Integer,
        ForeignKey("lead_cadence_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_ordem = Column(Integer, nullable=False, default=0)
    template_codigo = Column(String(64), default="")
    tipo_evento = Column(String(32), nullable=False)
    detalhes = Column(Text)  # JSON
    created_at = Column(DateTime, server_default=func.now(), index=True)


class CadenceRunnerLog(Base):
    """Resumo de cada tick do runner"""

    __tablename__ = "cadence_runner_logs"

    id = Column(Integer, primary_key=True)
    executed_at = Column(DateTime, nullable=False)
    steps_executed = Column(Integer, default=0)
    errors = Column(Integer, default=0)
    runs_touched = Column(Integer, default=0)
    duration_ms = Column(Integer, default=0)
    trigger_source = Column(String(16), nullable=False)  # CRON, MANUAL, TEST
    details = Column(Text)  # JSON


class WebhookRateLimit(Base):
    """Contador por janela de um minuto dos webhooks públicos"""

    __tablename__ = "webhook_rate_limits"

    id = Column(Integer, primary_key=True)
    function_name = Column(String(64), nullable=False)
    identifier = Column(String(128), nullable=False)
    window_start = Column(DateTime, nullable=False)  # UTC, truncado ao minuto
    call_count = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "function_name",
            "identifier",
            "window_start",
            name="uq_webhook_rate_limit_window",
        ),
        Index("idx_webhook_rate_limit_window", "window_start"),
    )
