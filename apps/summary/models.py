# =============================================================================
# 模块: apps/summary/models.py
# 功能: LLM 生成结果的持久化模型
#   - Summary：单篇论文摘要
#   - TagSummary：按标签聚合的观点摘要
#   - TrendSummary：按时间段（可选标签/论文誌过滤）的趋势报告
#   - SummaryMessage：针对某条论文摘要的追问对话（user / assistant 交替）
# 设计决策:
#   三类记录都只追加不更新，同一对象可保留多次生成的历史。
#   五个结构化字段与 token / 耗时指标由 StructuredFieldsMixin 统一定义。
# =============================================================================

"""Summary models for PaperPulse."""

from __future__ import annotations

from sqlalchemy import JSON, BigInteger, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from core.models.base import Base, CreatedAtMixin


class StructuredFieldsMixin:
    """The five-field structured summary plus generation metrics."""

    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    model: Mapped[str] = mapped_column(String(100), nullable=False)
    summary_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    purpose: Mapped[str | None] = mapped_column(Text, nullable=True)
    methodology: Mapped[str | None] = mapped_column(Text, nullable=True)
    findings: Mapped[str | None] = mapped_column(Text, nullable=True)
    implications: Mapped[str | None] = mapped_column(Text, nullable=True)
    tokens_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    generation_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def apply_structured(self, result) -> None:
        """Copy fields from a ``StructuredSummary``."""
        self.provider = result.provider
        self.model = result.model
        self.summary_text = result.summary_text
        self.purpose = result.purpose
        self.methodology = result.methodology
        self.findings = result.findings
        self.implications = result.implications
        self.tokens_used = result.tokens_used
        self.generation_time_ms = result.generation_time_ms


class Summary(Base, CreatedAtMixin, StructuredFieldsMixin):
    """A generated summary of a single paper."""

    __tablename__ = "summaries"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    paper_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("papers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class TagSummary(Base, CreatedAtMixin, StructuredFieldsMixin):
    """A digest over the papers carrying one tag, from a given perspective."""

    __tablename__ = "tag_summaries"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    tag_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("tags.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    perspective_prompt: Mapped[str] = mapped_column(Text, nullable=False)
    paper_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class TrendSummary(Base, CreatedAtMixin, StructuredFieldsMixin):
    """A trend report over a date window."""

    __tablename__ = "trend_summaries"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    # day / week / month / halfyear / custom
    period: Mapped[str] = mapped_column(String(20), nullable=False)
    date_from: Mapped[str] = mapped_column(String(10), nullable=False)
    date_to: Mapped[str] = mapped_column(String(10), nullable=False)
    tag_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)
    journal_ids: Mapped[list | None] = mapped_column(JSON, nullable=True)
    paper_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class SummaryMessage(Base, CreatedAtMixin):
    """One turn of a follow-up conversation about a paper summary."""

    __tablename__ = "summary_messages"
    __table_args__ = (Index("ix_summary_messages_summary_created", "summary_id", "created_at"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    summary_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("summaries.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    # user / assistant
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    # 仅 assistant 消息记录 Provider、模型与 token 用量
    provider: Mapped[str | None] = mapped_column(String(32), nullable=True)
    model: Mapped[str | None] = mapped_column(String(100), nullable=True)
    tokens_used: Mapped[int | None] = mapped_column(Integer, nullable=True)
