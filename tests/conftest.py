"""Shared test fixtures for PaperPulse tests."""

from __future__ import annotations

import os
import sys
from typing import AsyncGenerator, Callable, Iterable, List, Optional
from xml.sax.saxutils import escape

import pytest
import pytest_asyncio
from sqlalchemy import BigInteger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Ensure the project root is on sys.path so bare imports work
_PROJECT_ROOT = os.path.join(os.path.dirname(__file__), os.pardir)
if _PROJECT_ROOT not in sys.path:
    sys.path.insert(0, os.path.abspath(_PROJECT_ROOT))

# Use in-memory SQLite for tests (faster, no external dependencies)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# settings 在导入时读取环境变量，必须在导入任何项目模块之前设置
os.environ.setdefault("DATABASE_URL", TEST_DATABASE_URL)
os.environ.setdefault("FETCH_MIN_INTERVAL_MS", "0")
os.environ.setdefault("FULLTEXT_REQUEST_INTERVAL", "0")


# Fix BigInteger autoincrement on SQLite: BigInteger maps to BIGINT which
# doesn't support autoincrement in SQLite.  Only the exact type name INTEGER
# gets the special ROWID alias behaviour.  We register a compilation hook so
# that BigInteger renders as INTEGER on the sqlite dialect.
from sqlalchemy.ext.compiler import compiles as _compiles  # noqa: E402

@_compiles(BigInteger, "sqlite")
def _compile_big_int_sqlite(type_, compiler, **kw):
    return "INTEGER"


@pytest_asyncio.fixture
async def test_engine():
    """Create an async in-memory engine with all tables.

    每个测试使用独立的内存数据库，测试结束后释放。
    """
    from core.database import import_models
    from core.models.base import Base

    import_models()
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        # Use StaticPool so every session shares the same in-memory database
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the per-test engine.

    注入给 PaperStore / FetchOrchestrator / SummaryService 使用。
    """
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def fk_session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Session factory over a database that enforces foreign keys.

    SQLite 默认不检查外键，需要在每个连接上开启 PRAGMA foreign_keys。
    """
    from sqlalchemy import event

    from core.database import import_models
    from core.models.base import Base

    import_models()
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for direct assertions."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def journal(session_factory):
    """Create and return an active RSS journal ``j1``."""
    from apps.journals.models import Journal

    async with session_factory() as session:
        j = Journal(
            id="j1",
            name="Journal One",
            full_name="Journal One",
            rss_url="https://feeds.example.org/j1.rss",
        )
        session.add(j)
        await session.commit()
    return j


def _render_item(item: dict) -> str:
    parts = ["<item>"]
    if item.get("title") is not None:
        parts.append(f"<title>{escape(item['title'])}</title>")
    if item.get("link"):
        parts.append(f"<link>{escape(item['link'])}</link>")
    if item.get("guid"):
        parts.append(f"<guid isPermaLink=\"false\">{escape(item['guid'])}</guid>")
    if item.get("description"):
        parts.append(f"<description>{escape(item['description'])}</description>")
    if item.get("content"):
        parts.append(f"<content:encoded>{escape(item['content'])}</content:encoded>")
    for creator in item.get("creators", []):
        parts.append(f"<dc:creator>{escape(creator)}</dc:creator>")
    if item.get("pub_date"):
        parts.append(f"<pubDate>{item['pub_date']}</pubDate>")
    if item.get("dc_date"):
        parts.append(f"<dc:date>{item['dc_date']}</dc:date>")
    parts.append("</item>")
    return "".join(parts)


def build_rss(items: Iterable[dict], title: str = "Test Journal") -> bytes:
    body = "".join(_render_item(item) for item in items)
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0" '
        'xmlns:dc="http://purl.org/dc/elements/1.1/" '
        'xmlns:content="http://purl.org/rss/1.0/modules/content/">'
        f"<channel><title>{escape(title)}</title>"
        "<link>https://example.org</link><description>Test feed</description>"
        f"{body}</channel></rss>"
    ).encode("utf-8")


@pytest.fixture
def rss_feed() -> Callable[..., bytes]:
    """Build an RSS 2.0 document from item dicts.

    Keys: title, link, guid, description, content, creators, pub_date, dc_date.
    """
    return build_rss


@pytest.fixture
def paper_items() -> Callable[[int], List[dict]]:
    """Generate ``n`` distinct feed items with DOIs in their links."""

    def _make(n: int, prefix: str = "Paper") -> List[dict]:
        return [
            {
                "title": f"{prefix} {i}: Learning analytics at scale",
                "link": f"https://link.example.org/article/10.1007/s40593-025-{i:05d}-x",
                "description": f"Abstract of paper {i} on adaptive tutoring systems.",
                "creators": [f"Author {i}A", f"Author {i}B"],
                "pub_date": "Mon, 06 Jan 2025 10:00:00 GMT",
            }
            for i in range(1, n + 1)
        ]

    return _make


class FakeResponseRouter:
    """Maps URLs to ``httpx.Response`` factories for ``httpx.MockTransport``.

    Routes match the full URL first, then the URL without its query string.
    Unknown URLs answer 404. Every request is recorded in ``calls`` and
    ``requests``.
    """

    def __init__(self):
        self.routes = {}
        self.calls: List[str] = []
        self.requests: list = []

    def add(self, url: str, status: int = 200, content: bytes = b"",
            headers: Optional[dict] = None, json: Optional[dict] = None) -> None:
        self.routes[url] = (status, content, headers or {}, json)

    def __call__(self, request):
        import httpx

        url = str(request.url)
        self.calls.append(url)
        self.requests.append(request)
        key = url if url in self.routes else url.split("?", 1)[0]
        if key not in self.routes:
            return httpx.Response(404, content=b"not found")
        status, content, headers, json = self.routes[key]
        if json is not None:
            return httpx.Response(status, json=json, headers=headers)
        return httpx.Response(status, content=content, headers=headers)


@pytest.fixture
def http_router() -> FakeResponseRouter:
    return FakeResponseRouter()


@pytest_asyncio.fixture
async def mock_client(http_router):
    """``httpx.AsyncClient`` answering from ``http_router``."""
    import httpx

    async with httpx.AsyncClient(transport=httpx.MockTransport(http_router)) as client:
        yield client
