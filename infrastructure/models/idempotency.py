"""
幂等记录数据库模型
"""

from sqlalchemy import Column, DateTime, Integer, JSON, String, UniqueConstraint

from .base import Base, utcnow


class IdempotencyRecordModel(Base):
    __tablename__ = "idempotency_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(255), nullable=False)
    user_id = Column(String(64), nullable=False)
    endpoint = Column(String(255), nullable=False, comment="METHOD path")
    response = Column(JSON, nullable=False, comment="首次请求的完整响应体")
    status_code = Column(Integer, nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("key", "user_id", "endpoint", name="uq_idempotency_key_user_endpoint"),
    )
