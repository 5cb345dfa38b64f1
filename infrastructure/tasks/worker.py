"""本地启动 worker（内嵌 beat）：python -m infrastructure.tasks.worker

生产环境按队列拆分 worker，例如钱包补偿单独跑 high 队列：
    celery -A infrastructure.tasks worker -Q high -c 4
"""
from __future__ import annotations

from .config.celery import celery_app


def main() -> None:
    celery_app.worker_main(
        [
            "worker",
            "--hostname=billing@%h",
            "--queues=high,default,low",
            "--beat",
            "--loglevel=INFO",
        ]
    )


if __name__ == "__main__":
    main()
