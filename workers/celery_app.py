"""
Configuração do Celery para o runner de cadências
"""

from celery import Celery

from core.config import settings

celery_app = Celery(
    "outreach_workers",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,  # confirma após processar
    worker_prefetch_multiplier=1,  # um tick por vez
    task_track_started=True,
    task_time_limit=300,  # timeout de 5 minutos
    task_soft_time_limit=240,  # aviso aos 4 minutos
)

celery_app.conf.task_routes = {
    "workers.cadence_tasks.*": {"queue": "cadence"},
}

# Configurar tarefas periódicas (Celery Beat)
celery_app.conf.beat_schedule = {
    "cadence-runner-tick": {
        "task": "workers.cadence_tasks.run_cadence_tick",
        "schedule": float(settings.CADENCE_TICK_SECONDS),
        "kwargs": {"trigger_source": "CRON"},
    },
    "purge-rate-limit-windows": {
        "task": "workers.cadence_tasks.purge_rate_limit_windows",
        "schedule": 3600.0,  # 1 hora
    },
}

# Importar tasks explicitamente
from workers import cadence_tasks  # noqa: F401, E402
