# =============================================================================
# 模块: apps/journals/models.py
# 功能: 论文誌（Journal）与 AI 生成 Feed 配置（GeneratedFeed）数据模型
# 架构角色: 抓取调度的数据源定义。FetchOrchestrator 遍历 is_active 的 Journal，
#           按 source_type 决定走 RSS 解析还是交给 GeneratedFeedSource。
# 设计决策:
#   1. Journal 主键使用字符串 slug（如 "ijaied"），便于命令行按 id 指定
#   2. 停用使用 is_active 软删除；硬删除时级联删除论文
#   3. 每个 ai_generated 类型的 Journal 恰好对应一条 GeneratedFeed，RSS 类型没有
#   4. 用户体系不在本项目范围内，user_id 仅作为归属标识，不建外键
# =============================================================================

"""Journal models for PaperPulse."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, List

from sqlalchemy import BigInteger, Boolean, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from apps.papers.models import Paper

SOURCE_TYPE_RSS = "rss"
SOURCE_TYPE_AI_GENERATED = "ai_generated"


class Journal(Base, TimestampMixin):
    """A journal whose feed is fetched on schedule."""

    __tablename__ = "journals"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    # ai_generated 类型时保存的是源网页 URL
    rss_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    source_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=SOURCE_TYPE_RSS,
        comment="rss | ai_generated",
    )
    color: Mapped[str] = mapped_column(String(50), nullable=False, default="bg-gray-500")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    last_fetched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    papers: Mapped[List["Paper"]] = relationship(
        back_populates="journal",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    generated_feed: Mapped["GeneratedFeed | None"] = relationship(
        back_populates="journal",
        cascade="all, delete-orphan",
        uselist=False,
    )

    @property
    def is_ai_generated(self) -> bool:
        return self.source_type == SOURCE_TYPE_AI_GENERATED

    def __repr__(self) -> str:
        return f"<Journal(id={self.id}, name={self.name})>"


class GeneratedFeed(Base, TimestampMixin):
    """Generation state for an ``ai_generated`` journal."""

    __tablename__ = "generated_feeds"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    journal_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("journals.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    source_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    # pending / success / error
    generation_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    last_generated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    journal: Mapped[Journal] = relationship(back_populates="generated_feed")

    def mark_success(self, when: datetime) -> None:
        self.generation_status = "success"
        self.last_generated_at = when
        self.error_message = None

    def mark_error(self, message: str) -> None:
        self.generation_status = "error"
        self.error_message = message
