# =============================================================================
# 模块: apps/papers/models.py
# 功能: 论文（Paper）及标签（Tag / PaperTag）数据模型
# 架构角色: 抓取流水线的落库目标。PaperStore 负责插入与更新，
#           FullTextService 回写全文字段，SummaryEngine 只读。
# 去重机制:
#   唯一约束 (journal_id, title_prefix)，title_prefix 为标题前 255 个字符。
#   同一论文誌内前 255 字符相同的两个标题会合并为一条记录，这是有意为之的有损去重。
#   external_id（DOI > GUID > link）另建普通索引，供可选的 external_id 去重模式使用。
# =============================================================================

"""Paper and tag models for PaperPulse."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import TYPE_CHECKING, List

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.models.base import Base, CreatedAtMixin, TimestampMixin, utcnow

if TYPE_CHECKING:
    from apps.journals.models import Journal

TITLE_PREFIX_LENGTH = 255


def title_prefix(title: str, length: int = TITLE_PREFIX_LENGTH) -> str:
    """Return the dedup key portion of a title (first ``length`` characters)."""
    return (title or "")[:length]


class FullTextSource(str, enum.Enum):
    """Where a paper's full text came from."""

    NONE = "none"
    UNPAYWALL = "unpaywall"
    PDF_EXTRACTED = "pdf_extracted"
    HTML_SCRAPE = "html_scrape"


class Paper(Base, TimestampMixin):
    """A stored paper belonging to one journal."""

    __tablename__ = "papers"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    journal_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("journals.id", ondelete="CASCADE"),
        nullable=False,
    )
    external_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    title_prefix: Mapped[str] = mapped_column(String(TITLE_PREFIX_LENGTH), nullable=False)
    authors: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    abstract: Mapped[str | None] = mapped_column(Text, nullable=True)
    url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    doi: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    # YYYY-MM-DD
    published_date: Mapped[str | None] = mapped_column(String(10), nullable=True, index=True)

    # ---- 全文字段 ----
    full_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    full_text_source: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=FullTextSource.NONE.value,
    )
    pdf_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    pdf_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    # 成功与失败都会写入，作为"已尝试过"的标记；仅 --retry 会再次扫描
    full_text_fetched_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    fetched_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    journal: Mapped["Journal"] = relationship(back_populates="papers")
    tags: Mapped[List["Tag"]] = relationship(
        secondary="paper_tags",
        back_populates="papers",
    )

    __table_args__ = (
        UniqueConstraint("journal_id", "title_prefix", name="uq_papers_journal_title_prefix"),
        Index("ix_papers_journal_external", "journal_id", "external_id"),
    )

    @property
    def text_for_summary(self) -> str:
        """Full text when available, else the abstract."""
        return self.full_text or self.abstract or ""

    def __repr__(self) -> str:
        return f"<Paper(id={self.id}, title={self.title[:30]}...)>"


class Tag(Base, TimestampMixin):
    """A user-defined label grouping papers for digests."""

    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[str] = mapped_column(String(50), nullable=False, default="bg-gray-500")

    papers: Mapped[List[Paper]] = relationship(
        secondary="paper_tags",
        back_populates="tags",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "name", name="uq_tags_user_name"),
    )


class PaperTag(Base, CreatedAtMixin):
    """Association row between a paper and a tag."""

    __tablename__ = "paper_tags"

    paper_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("papers.id", ondelete="CASCADE"),
        primary_key=True,
    )
    tag_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("tags.id", ondelete="CASCADE"),
        primary_key=True,
    )
