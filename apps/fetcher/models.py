"""Fetch audit log model."""

from __future__ import annotations

import enum

from sqlalchemy import BigInteger, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.models.base import Base, CreatedAtMixin


class FetchStatus(str, enum.Enum):
    SUCCESS = "success"
    ERROR = "error"
    PARTIAL = "partial"


class FetchLog(Base, CreatedAtMixin):
    """One row per journal fetch attempt. Rows are never updated."""

    __tablename__ = "fetch_logs"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    # 论文誌被删除后保留日志，journal_id 置空
    journal_id: Mapped[str | None] = mapped_column(
        String(64),
        ForeignKey("journals.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    papers_fetched: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    new_papers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    execution_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return (
            f"<FetchLog(journal={self.journal_id}, status={self.status}, "
            f"fetched={self.papers_fetched}, new={self.new_papers})>"
        )
