"""定时任务"""
from __future__ import annotations

from core.config import settings


CELERY_BEAT_SCHEDULE = {
    # 过期幂等记录只影响存储，不影响正确性（读取时已按 expires_at 过滤）
    "purge-expired-idempotency-records": {
        "task": "idempotency.purge_expired",
        "schedule": settings.celery.idempotency_purge_interval,
    },
}
