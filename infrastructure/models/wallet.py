"""
钱包与钱包流水数据库模型
"""

from sqlalchemy import (
    CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, JSON, String,
)

from .base import Base, Money, utcnow


class WalletModel(Base):
    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), unique=True, nullable=False, comment="每个用户一个钱包")
    balance = Column(Money, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="INR")
    status = Column(String(20), nullable=False, default="active", comment="active/frozen")
    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
    )

    def __repr__(self):
        return f"<WalletModel(id={self.id}, user_id='{self.user_id}', balance={self.balance}, status='{self.status}')>"


class WalletTransactionModel(Base):
    """
    钱包流水（只追加）

    idempotency_key 唯一：同一订单同一类型最多一条 pending/completed 流水；
    回滚后的兑换流水会清空该列，允许重新兑换。
    """
    __tablename__ = "wallet_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=False, index=True)
    user_id = Column(String(64), nullable=False, index=True)
    type = Column(String(20), nullable=False, comment="cashback/redemption/refund")
    amount = Column(Money, nullable=False, comment="正数入账，负数出账")
    order_id = Column(String(64), nullable=False, index=True)
    balance_before = Column(Money, nullable=False)
    balance_after = Column(Money, nullable=False)
    status = Column(String(20), nullable=False, default="completed")
    idempotency_key = Column(String(128), nullable=True, unique=True)
    # 使用 extra_metadata 避免与 SQLAlchemy 的 metadata 冲突
    extra_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_wallet_tx_user_created", "user_id", "created_at"),
        Index("ix_wallet_tx_order_type", "order_id", "type", "status"),
    )

    def __repr__(self):
        return (
            f"<WalletTransactionModel(id={self.id}, order_id='{self.order_id}', type='{self.type}', "
            f"amount={self.amount}, status='{self.status}')>"
        )
