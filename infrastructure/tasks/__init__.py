"""Celery 任务：钱包补偿重试（wallet.*）与幂等记录清理（idempotency.*）

应用层只依赖 TaskDispatcherPort，按任务名投递，不直接导入 Celery。
"""
from .config.celery import celery_app
from .utils.dispatcher import TaskDispatcher

__all__ = ["celery_app", "TaskDispatcher"]
