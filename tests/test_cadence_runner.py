"""
Testes do runner de cadências (sqlite em memória + sender fake)
"""
import json
from datetime import datetime, timedelta, timezone

import pytest

from database.cadence import (
    CadenceEventRepository,
    CadenceStepRepository,
    CadenceRunnerLogRepository,
    LeadCadenceRunRepository,
    LeadContactRepository,
)
from services.cadence import CadenceRunner, ProcessStatus, SendResult, TriggerSource


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock(business_now):
    return Clock(business_now)


@pytest.fixture
def run(three_step_cadence, lead_contact, clock):
    created, _ = LeadCadenceRunRepository.create_run(
        "lead-1", three_step_cadence.id, now=clock.now
    )
    return created


def make_runner(sender, clock, business_hours_only=False):
    return CadenceRunner(sender, now_fn=clock, business_hours_only=business_hours_only)


def naive(moment):
    return moment.replace(tzinfo=None)


def event_types(run_id):
    return [e.tipo_evento for e in CadenceEventRepository.list_events(run_id)]


def test_full_cadence_progression(run, clock, recording_sender):
    runner = make_runner(recording_sender, clock)

    summary = runner.run_tick(TriggerSource.TEST)
    assert (summary.total, summary.success, summary.errors) == (1, 1, 0)
    assert recording_sender.calls[0] == (
        "WHATSAPP",
        "+5511999990000",
        "Oi Maria, tudo bem?",
    )
    current = LeadCadenceRunRepository.get_run(run.id)
    assert (current.last_step_ordem, current.next_step_ordem) == (1, 2)
    assert current.next_run_at == naive(clock.now + timedelta(minutes=60))

    clock.advance(minutes=30)
    assert runner.run_tick(TriggerSource.TEST).total == 0

    clock.advance(minutes=30)
    runner.run_tick(TriggerSource.TEST)
    assert recording_sender.calls[1] == (
        "EMAIL",
        "maria@example.com",
        "Assunto: Proposta Tokeniza\nOlá Maria Souza",
    )
    current = LeadCadenceRunRepository.get_run(run.id)
    assert current.next_step_ordem == 3
    assert current.next_run_at == naive(clock.now + timedelta(minutes=1440))

    clock.advance(minutes=1440)
    summary = runner.run_tick(TriggerSource.TEST)
    assert summary.results[0].status is ProcessStatus.CONCLUIDA

    current = LeadCadenceRunRepository.get_run(run.id)
    assert current.status == "CONCLUIDA"
    assert current.last_step_ordem == 3
    assert current.next_step_ordem is None
    assert current.next_run_at is None
    assert len(recording_sender.calls) == 3
    assert event_types(run.id) == [
        "DISPARADO",
        "AGENDADO",
        "DISPARADO",
        "AGENDADO",
        "DISPARADO",
        "CONCLUIDA",
    ]

    # run concluída nunca volta a ser processada
    clock.advance(days=30)
    assert runner.run_tick(TriggerSource.TEST).total == 0


def test_reply_stops_on_flagged_step(run, clock, recording_sender):
    runner = make_runner(recording_sender, clock)
    runner.run_tick(TriggerSource.TEST)

    LeadCadenceRunRepository.mark_lead_responded("lead-1")
    clock.advance(minutes=60)
    summary = runner.run_tick(TriggerSource.TEST)

    assert summary.results[0].status is ProcessStatus.CONCLUIDA
    assert len(recording_sender.calls) == 1
    current = LeadCadenceRunRepository.get_run(run.id)
    assert current.status == "CONCLUIDA"
    assert current.last_step_ordem == 1
    assert current.next_step_ordem is None
    assert event_types(run.id)[-1] == "RESPOSTA_DETECTADA"


def test_reply_on_unflagged_step_still_sends(run, clock, recording_sender):
    LeadCadenceRunRepository.mark_lead_responded("lead-1")
    make_runner(recording_sender, clock).run_tick(TriggerSource.TEST)

    assert len(recording_sender.calls) == 1
    assert LeadCadenceRunRepository.get_run(run.id).next_step_ordem == 2


def test_missing_channel_skips_and_consumes_step(run, clock, recording_sender):
    runner = make_runner(recording_sender, clock)
    runner.run_tick(TriggerSource.TEST)

    LeadContactRepository.upsert("lead-1", email="   ")
    clock.advance(minutes=60)
    summary = runner.run_tick(TriggerSource.TEST)

    assert summary.results[0].status is ProcessStatus.PULADO
    assert len(recording_sender.calls) == 1
    current = LeadCadenceRunRepository.get_run(run.id)
    assert current.last_step_ordem == 2
    assert current.next_step_ordem == 3
    assert "PULADO" in event_types(run.id)


def test_send_failure_retries_then_consumes_step(run, clock, sender_factory):
    sender = sender_factory([SendResult.failed("provider down")] * 3)
    runner = make_runner(sender, clock)

    summary = runner.run_tick(TriggerSource.TEST)
    assert summary.errors == 1
    current = LeadCadenceRunRepository.get_run(run.id)
    assert current.status == "ATIVA"
    assert current.next_step_ordem == 1
    assert current.step_attempts == 1
    assert current.next_run_at == naive(clock.now + timedelta(minutes=15))

    clock.advance(minutes=15)
    runner.run_tick(TriggerSource.TEST)
    assert LeadCadenceRunRepository.get_run(run.id).step_attempts == 2

    clock.advance(minutes=15)
    summary = runner.run_tick(TriggerSource.TEST)
    assert summary.results[0].status is ProcessStatus.ERRO

    current = LeadCadenceRunRepository.get_run(run.id)
    assert current.status == "ATIVA"
    assert current.last_step_ordem == 1
    assert current.next_step_ordem == 2
    assert current.step_attempts == 0
    assert current.next_run_at == naive(clock.now + timedelta(minutes=60))
    assert len(sender.calls) == 3


def test_outside_business_hours_defers_without_sending(run, recording_sender):
    saturday = Clock(datetime(2026, 3, 7, 13, 0, tzinfo=timezone.utc))
    summary = make_runner(recording_sender, saturday, business_hours_only=True).run_tick(
        TriggerSource.TEST
    )

    assert summary.results[0].status is ProcessStatus.SKIPPED
    assert recording_sender.calls == []
    current = LeadCadenceRunRepository.get_run(run.id)
    assert current.next_step_ordem == 1
    assert current.last_step_ordem == 0
    assert current.next_run_at == datetime(2026, 3, 9, 12, 0)


def test_pause_during_tick_is_preserved(run, clock, sender_factory):
    class PausingSender(sender_factory):
        def send(self, canal, recipient, content):
            LeadCadenceRunRepository.pause(run.id)
            return super().send(canal, recipient, content)

    sender = PausingSender()
    make_runner(sender, clock).run_tick(TriggerSource.TEST)

    current = LeadCadenceRunRepository.get_run(run.id)
    assert current.status == "PAUSADA"
    assert current.last_step_ordem == 1
    assert current.next_step_ordem == 2

    clock.advance(minutes=60)
    assert make_runner(sender, clock).run_tick(TriggerSource.TEST).total == 0
    assert len(sender.calls) == 1


def test_cancel_during_tick_is_preserved(run, clock, sender_factory):
    class CancellingSender(sender_factory):
        def send(self, canal, recipient, content):
            LeadCadenceRunRepository.cancel(run.id)
            return super().send(canal, recipient, content)

    sender = CancellingSender()
    make_runner(sender, clock).run_tick(TriggerSource.TEST)

    current = LeadCadenceRunRepository.get_run(run.id)
    assert current.status == "CANCELADA"
    assert current.next_run_at is None
    assert current.last_step_ordem == 1
    assert current.next_step_ordem == 2

    clock.advance(days=2)
    assert make_runner(sender, clock).run_tick(TriggerSource.TEST).total == 0
    assert len(sender.calls) == 1


def test_stale_run_is_not_processed_twice(run, clock, recording_sender):
    runner = make_runner(recording_sender, clock)
    first = runner.process_run(run)
    second = runner.process_run(run)  # mesma versão lida por outro worker

    assert first.status is ProcessStatus.DISPARADO
    assert second.status is ProcessStatus.SKIPPED
    assert len(recording_sender.calls) == 1


def test_manual_attendance_pauses_run(run, clock, recording_sender):
    LeadContactRepository.set_manual_attendance("lead-1", True)
    summary = make_runner(recording_sender, clock).run_tick(TriggerSource.TEST)

    assert summary.results[0].status is ProcessStatus.PAUSADA
    assert recording_sender.calls == []
    assert LeadCadenceRunRepository.get_run(run.id).status == "PAUSADA"


def test_missing_template_retries_later(three_step_cadence, clock, recording_sender):
    LeadContactRepository.upsert("lead-2", nome="João", telefone="+5511888")
    run, _ = LeadCadenceRunRepository.create_run("lead-2", three_step_cadence.id, now=clock.now)

    from database.models import MessageTemplate
    from database.repos import SessionLocal

    with SessionLocal() as session:
        session.query(MessageTemplate).filter(MessageTemplate.codigo == "WPP_1").update(
            {MessageTemplate.ativo: False}
        )
        session.commit()

    summary = make_runner(recording_sender, clock).run_tick(TriggerSource.TEST)
    assert summary.results[0].status is ProcessStatus.ERRO
    assert recording_sender.calls == []

    current = LeadCadenceRunRepository.get_run(run.id)
    assert current.next_step_ordem == 1
    assert current.next_run_at == naive(clock.now + timedelta(minutes=30))


def test_missing_contact_retries_later(three_step_cadence, clock, recording_sender):
    run, _ = LeadCadenceRunRepository.create_run("sem-contato", three_step_cadence.id, now=clock.now)
    summary = make_runner(recording_sender, clock).run_tick(TriggerSource.TEST)

    assert summary.results[0].status is ProcessStatus.ERRO
    assert LeadCadenceRunRepository.get_run(run.id).next_step_ordem == 1


def test_tick_writes_runner_log(run, clock, recording_sender):
    make_runner(recording_sender, clock).run_tick(TriggerSource.TEST)

    entry = CadenceRunnerLogRepository.latest()
    assert entry.trigger_source == "TEST"
    assert entry.runs_touched == 1
    assert entry.steps_executed == 1
    assert entry.errors == 0
    details = json.loads(entry.details)
    assert details["results"][0]["status"] == "DISPARADO"


def finish_concurrently(run_id):
    """Outro worker conclui a run entre a reserva e a gravação"""
    current = LeadCadenceRunRepository.get_run(run_id)
    LeadCadenceRunRepository.apply_transition(
        run_id,
        current.version,
        status="CONCLUIDA",
        last_step_ordem=current.next_step_ordem,
        next_step_ordem=None,
        next_run_at=None,
        step_attempts=0,
    )


def test_reply_stop_lost_to_other_writer_records_nothing(
    run, clock, recording_sender, monkeypatch
):
    runner = make_runner(recording_sender, clock)
    runner.run_tick(TriggerSource.TEST)
    LeadCadenceRunRepository.mark_lead_responded("lead-1")
    clock.advance(minutes=60)

    original_list_steps = CadenceStepRepository.list_steps

    def list_steps_then_finish(cadence_id):
        steps = original_list_steps(cadence_id)
        finish_concurrently(run.id)
        return steps

    monkeypatch.setattr(
        CadenceStepRepository, "list_steps", staticmethod(list_steps_then_finish)
    )
    summary = runner.run_tick(TriggerSource.TEST)

    assert summary.results[0].status is ProcessStatus.SKIPPED
    assert "RESPOSTA_DETECTADA" not in event_types(run.id)


def test_retry_later_lost_to_other_writer_records_nothing(
    three_step_cadence, clock, recording_sender, monkeypatch
):
    run, _ = LeadCadenceRunRepository.create_run("sem-contato", three_step_cadence.id, now=clock.now)

    def get_by_lead_after_finish(lead_id):
        finish_concurrently(run.id)
        return None

    monkeypatch.setattr(
        LeadContactRepository, "get_by_lead", staticmethod(get_by_lead_after_finish)
    )
    summary = make_runner(recording_sender, clock).run_tick(TriggerSource.TEST)

    assert summary.results[0].status is ProcessStatus.SKIPPED
    assert "ERRO" not in event_types(run.id)
    assert LeadCadenceRunRepository.get_run(run.id).status == "CONCLUIDA"


def test_business_hours_checked_before_manual_attendance(run, recording_sender):
    LeadContactRepository.set_manual_attendance("lead-1", True)
    saturday = Clock(datetime(2026, 3, 7, 13, 0, tzinfo=timezone.utc))

    summary = make_runner(recording_sender, saturday, business_hours_only=True).run_tick(
        TriggerSource.TEST
    )

    assert summary.results[0].status is ProcessStatus.SKIPPED
    current = LeadCadenceRunRepository.get_run(run.id)
    assert current.status == "ATIVA"
    assert current.next_run_at == datetime(2026, 3, 9, 12, 0)
