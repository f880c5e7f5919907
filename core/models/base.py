# =============================================================================
# ORM 基础模型与通用混入类模块
# =============================================================================
# 本模块定义了 PaperPulse 中所有 SQLAlchemy ORM 模型的基类和时间戳混入。
#   - Base：声明式基类，Base.metadata 用于 init_db 建表
#   - TimestampMixin：created_at + updated_at，用于可变记录（Journal、Paper 等）
#   - CreatedAtMixin：仅 created_at，用于只追加不修改的记录
#     （FetchLog、Summary、TagSummary、TrendSummary）
# 时间戳统一在 Python 层以 UTC 生成。
# =============================================================================

"""Base models and mixins for PaperPulse."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""

    pass


class CreatedAtMixin:
    """Mixin for append-only rows: a single creation timestamp."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )


class TimestampMixin(CreatedAtMixin):
    """Mixin providing ``created_at`` and ``updated_at`` timestamps.

    ``updated_at`` is refreshed automatically on update operations.
    """

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )


# 带时区信息的日期时间类型别名
DateTimeTZ = Annotated[datetime, mapped_column(DateTime(timezone=True))]
