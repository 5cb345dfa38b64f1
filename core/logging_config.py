"""
Structlog 日志配置

API 进程在 main.py 入口调用 configure_logging()，Celery worker 通过
setup_logging 信号调用；模块导入时不修改 root logger。
"""
import json
import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Any, Iterator, List, Optional

import structlog
from structlog.contextvars import bound_contextvars, merge_contextvars
from structlog.dev import ConsoleRenderer
from structlog.processors import JSONRenderer, TimeStamper, add_log_level
from structlog.stdlib import ProcessorFormatter

from core.config import settings

_NOISY_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "httpx", "confluent_kafka", "stripe", "celery.app.trace")


def _json_default(obj: Any) -> Any:
    return str(obj)


def _money_as_string(_, __, event_dict: dict) -> dict:
    # 金额字段保持两位小数原样输出，不转 float
    for key, value in event_dict.items():
        if isinstance(value, Decimal):
            event_dict[key] = str(value)
    return event_dict


def _add_service(_, __, event_dict: dict) -> dict:
    event_dict.setdefault("service", settings.PROJECT_NAME)
    event_dict.setdefault("env", settings.ENVIRONMENT)
    return event_dict


def get_renderer(json_output: Optional[bool] = None) -> Any:
    """DEBUG 下彩色控制台输出，其余环境 JSON（可用 LOG_JSON 强制）"""
    if json_output is None:
        json_output = settings.LOG_JSON if settings.LOG_JSON is not None else not settings.DEBUG
    if not json_output:
        return ConsoleRenderer(colors=True)

    # structlog 会传入 default/sort_keys 等参数
    def _dumps(obj, default=None, **kwargs):
        return json.dumps(obj, ensure_ascii=False, default=default or _json_default, **kwargs)
    return JSONRenderer(serializer=_dumps)


def configure_logging(json_output: Optional[bool] = None) -> None:
    """配置 structlog 并把标准库 logging 接入同一处理链"""
    shared_pre_chain: List[Any] = [
        merge_contextvars,
        add_log_level,
        TimeStamper(fmt="iso"),
        _add_service,
        _money_as_string,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    structlog.configure(
        processors=[*shared_pre_chain, ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = ProcessorFormatter(
        foreign_pre_chain=shared_pre_chain,
        processors=[ProcessorFormatter.remove_processors_meta, get_renderer(json_output)],
    )
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    level = settings.LOG_LEVEL or ("DEBUG" if settings.DEBUG else "INFO")
    root.setLevel(level.upper())
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def order_log_context(order_id: Optional[str], **extra: Any) -> Iterator[None]:
    """在当前上下文内为所有日志附加 order_id（以及租户、任务等字段）"""
    fields = {k: v for k, v in {"order_id": order_id, **extra}.items() if v is not None}
    with bound_contextvars(**fields):
        yield
