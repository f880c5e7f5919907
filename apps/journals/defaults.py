# =============================================================================
# 模块: apps/journals/defaults.py
# 功能: 默认论文誌定义与初始化写入
# 配置格式:
#   内置 IJAIED 始终存在；环境变量 DEFAULT_JOURNALS 追加更多条目，
#   格式为 "NAME|RSS_URL,NAME2|RSS_URL2"，id 由名称去掉非字母数字并转小写得到。
# =============================================================================

"""Default journal definitions and seeding."""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from apps.journals.models import SOURCE_TYPE_RSS, Journal
from core.database import session_scope

logger = logging.getLogger(__name__)

BUILTIN_JOURNALS: List[Dict[str, Any]] = [
    {
        "id": "ijaied",
        "name": "IJAIED",
        "full_name": "International Journal of Artificial Intelligence in Education",
        "rss_url": "https://link.springer.com/search.rss?facet-content-type=Article&facet-journal-id=40593",
        "color": "bg-blue-500",
    },
]

_NON_ALNUM = re.compile(r"[^a-zA-Z0-9]")


def slugify_journal_id(name: str) -> str:
    return _NON_ALNUM.sub("", name).lower()


def parse_default_journals(value: str) -> List[Dict[str, Any]]:
    """Parse a ``NAME|RSS_URL,NAME2|RSS_URL2`` string.

    Malformed entries (no ``|``, empty name or URL) are ignored.
    """
    journals: List[Dict[str, Any]] = []
    for entry in (value or "").split(","):
        entry = entry.strip()
        if not entry or "|" not in entry:
            continue
        name, url = (part.strip() for part in entry.split("|", 1))
        journal_id = slugify_journal_id(name)
        if not journal_id or not url:
            logger.warning(f"Ignoring malformed DEFAULT_JOURNALS entry: {entry!r}")
            continue
        journals.append({
            "id": journal_id,
            "name": name,
            "full_name": name,
            "rss_url": url,
            "color": "bg-gray-500",
        })
    return journals


def get_default_journals(extra: Optional[str] = None) -> List[Dict[str, Any]]:
    """Built-in journals followed by those configured via ``DEFAULT_JOURNALS``."""
    if extra is None:
        from settings import settings

        extra = settings.default_journals

    journals = [dict(j) for j in BUILTIN_JOURNALS]
    seen = {j["id"] for j in journals}
    for journal in parse_default_journals(extra):
        if journal["id"] in seen:
            continue
        seen.add(journal["id"])
        journals.append(journal)
    return journals


async def seed_default_journals(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    journals: Optional[List[Dict[str, Any]]] = None,
    user_id: Optional[int] = None,
) -> int:
    """Insert default journals that do not exist yet.

    Existing rows are left untouched, so a journal the operator deactivated
    stays deactivated across restarts.

    Returns:
        int: Number of journals created.
    """
    if journals is None:
        journals = get_default_journals()

    created = 0
    async with session_scope(session_factory) as session:
        existing = set(
            (await session.execute(select(Journal.id))).scalars().all()
        )
        for data in journals:
            if data["id"] in existing:
                continue
            session.add(Journal(
                id=data["id"],
                name=data["name"],
                full_name=data.get("full_name", data["name"]),
                rss_url=data["rss_url"],
                source_type=SOURCE_TYPE_RSS,
                color=data.get("color", "bg-gray-500"),
                is_active=True,
                user_id=user_id,
            ))
            existing.add(data["id"])
            created += 1

    if created:
        logger.info(f"Seeded {created} default journal(s)")
    return created
