from .celery import TASK_ROUTES, celery_app

__all__ = ["celery_app", "TASK_ROUTES"]
