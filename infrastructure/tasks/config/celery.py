"""Celery 应用：承接提交后失败的钱包步骤与定时清理"""
from __future__ import annotations

from celery import Celery
from celery.signals import setup_logging
from kombu import Queue

from core.config import settings
from core.logging_config import configure_logging, get_logger
from .beat import CELERY_BEAT_SCHEDULE


logger = get_logger(__name__)

TASK_PACKAGES = ("infrastructure.tasks.tasks",)

# 钱包补偿直接影响用户余额，优先于清理类任务
TASK_ROUTES = {
    "wallet.*": {"queue": "high"},
    "idempotency.*": {"queue": "low"},
}


def _broker_url() -> str | None:
    return settings.celery.broker_url or settings.redis.url


celery_app = Celery("billing_service")

celery_app.conf.update(
    broker_url=_broker_url(),
    result_backend=settings.celery.result_backend or _broker_url(),
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # 任务执行完才 ack，worker 崩溃时任务回到队列
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    result_expires=settings.celery.result_expires,
    task_default_queue="default",
    task_default_retry_delay=settings.celery.retry_delay_seconds,
    task_queues=(Queue("high"), Queue("default"), Queue("low")),
    task_routes=TASK_ROUTES,
    task_always_eager=settings.celery.always_eager,
    beat_schedule=CELERY_BEAT_SCHEDULE,
    imports=TASK_PACKAGES,
)

celery_app.autodiscover_tasks(packages=TASK_PACKAGES)


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    # 接管 worker 日志，输出格式与 API 进程一致
    configure_logging()


@celery_app.on_after_configure.connect
def _log_configuration(sender, **kwargs):
    logger.info(
        "celery_configured",
        broker=sender.conf.broker_url,
        eager=sender.conf.task_always_eager,
        routes=sorted(TASK_ROUTES),
    )
