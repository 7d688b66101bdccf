"""
Configuração global do pytest
"""

from contextlib import ExitStack
from datetime import datetime, timezone
from typing import Generator, List, Optional, Tuple
from unittest.mock import patch

import pytest
from fakeredis import FakeRedis
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from database.cadence import (
    CadenceRepository,
    LeadContactRepository,
    MessageTemplateRepository,
)
from database.models import Base
from services.cadence import SendResult

# Módulos que importam SessionLocal diretamente
SESSION_FACTORY_TARGETS = (
    "database.repos.SessionLocal",
    "database.cadence.cadence_repo.SessionLocal",
    "database.cadence.run_repo.SessionLocal",
    "database.cadence.event_repo.SessionLocal",
    "database.rate_limit_repo.SessionLocal",
)

# Quarta-feira, 10h em São Paulo
BUSINESS_NOW = datetime(2026, 3, 4, 13, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="function")
def db_engine():
    """Cria engine de teste (sqlite em memória compartilhado entre threads)"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    """Aponta os repositórios para o banco de teste"""
    factory = sessionmaker(bind=db_engine, expire_on_commit=False)
    with ExitStack() as stack:
        for target in SESSION_FACTORY_TARGETS:
            stack.enter_context(patch(target, factory))
        yield factory


@pytest.fixture(scope="function")
def db_session(session_factory) -> Generator[Session, None, None]:
    """Sessão avulsa para inspecionar o banco nos asserts"""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(scope="function")
def fake_redis():
    """Cria instância fake do Redis para testes"""
    redis = FakeRedis(decode_responses=True)
    yield redis
    redis.flushall()


@pytest.fixture(scope="function")
def mock_redis_client(fake_redis):
    """Substitui o cliente Redis global pelo FakeRedis"""
    with patch("core.redis_client.redis_client", fake_redis), patch(
        "core.rate_limiter.redis_client", fake_redis
    ):
        yield fake_redis


class RecordingSender:
    """Sender fake: registra os envios e devolve respostas pré-definidas"""

    def __init__(self, results: Optional[List[SendResult]] = None):
        self.calls: List[Tuple[str, str, str]] = []
        self._results = list(results or [])

    def send(self, canal, recipient, content) -> SendResult:
        self.calls.append((canal, recipient, content))
        if self._results:
            return self._results.pop(0)
        return SendResult.ok(f"msg-{len(self.calls)}")


@pytest.fixture
def sender_factory():
    return RecordingSender


@pytest.fixture
def recording_sender():
    return RecordingSender()


@pytest.fixture
def business_now():
    return BUSINESS_NOW


@pytest.fixture
def three_step_cadence(session_factory):
    """WhatsApp -> e-mail (para se responder) -> WhatsApp"""
    MessageTemplateRepository.create_template(
        "WPP_1", "WHATSAPP", "Oi {{primeiro_nome}}, tudo bem?"
    )
    MessageTemplateRepository.create_template(
        "EMAIL_2", "EMAIL", "Assunto: Proposta {{empresa}}\nOlá {{nome}}"
    )
    MessageTemplateRepository.create_template(
        "WPP_3", "WHATSAPP", "Última mensagem, {{primeiro_nome}}"
    )
    return CadenceRepository.create_cadence(
        "INBOUND_LEAD",
        "Lead inbound",
        [
            {"canal": "WHATSAPP", "offset_minutos": 0, "template_codigo": "WPP_1"},
            {
                "canal": "EMAIL",
                "offset_minutos": 60,
                "template_codigo": "EMAIL_2",
                "parar_se_responder": True,
            },
            {"canal": "WHATSAPP", "offset_minutos": 1440, "template_codigo": "WPP_3"},
        ],
        empresa="TOKENIZA",
    )


@pytest.fixture
def lead_contact(session_factory):
    return LeadContactRepository.upsert(
        "lead-1",
        nome="Maria Souza",
        email="maria@example.com",
        telefone="+5511999990000",
        empresa="TOKENIZA",
    )
