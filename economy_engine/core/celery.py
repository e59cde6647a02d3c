# economy_engine/core/celery.py
from celery import Celery
from celery.schedules import crontab

from economy_engine.core.config import settings

celery_app = Celery(
    "economy_tasks",
    broker=settings.RABBITMQ_URL,
    backend=settings.REDIS_URL,
    include=[
        "economy_engine.tasks.withdrawal_processor",
    ],
)


def init_celery():
    celery_app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        worker_proc_alive_timeout=30,
        worker_send_task_events=True,
        broker_connection_retry_on_startup=True,
        task_track_started=True,
    )


async def check_connection() -> bool:
    try:
        with celery_app.connection_or_acquire() as conn:
            conn.heartbeat_check()
            return True
    except Exception:
        return False


celery_app.conf.beat_schedule = {
    "sweep-processing-withdrawals": {
        "task": "economy_engine.tasks.withdrawal_processor.sweep_processing_withdrawals",
        "schedule": crontab(minute="*/5"),
    },
}
