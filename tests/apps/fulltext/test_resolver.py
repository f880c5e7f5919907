"""Tests for apps.fulltext.resolver — open-access full-text resolution.

开放获取全文解析的测试。
"""

from __future__ import annotations

import types

import pytest

from apps.fulltext import resolver as resolver_module
from apps.fulltext.resolver import (
    TRUNCATION_MARKER,
    FullTextResolver,
    clean_extracted_text,
    extract_main_content,
    truncate_text,
)

DOI = "10.1007/s40593-025-00001-x"
UNPAYWALL_URL = f"https://api.unpaywall.org/v2/{DOI}"
PAPER_URL = "https://link.example.org/article/" + DOI
OA_PDF_URL = "https://repository.example.edu/oa/paper.pdf"

LONG_PARAGRAPH = "Adaptive tutoring systems personalise instruction for each learner. " * 20


def _paper(doi=DOI, url=PAPER_URL):
    return types.SimpleNamespace(doi=doi, url=url)


def _html_page(body_text: str) -> bytes:
    return (
        "<html><head><script>var x = 1;</script><style>p {}</style></head><body>"
        "<nav>Home | Journals | Login</nav>"
        f"<article><h1>Title</h1><p>{body_text}</p></article>"
        "<footer>Copyright</footer></body></html>"
    ).encode("utf-8")


@pytest.fixture
def make_resolver(mock_client, tmp_path):
    def _make(**overrides) -> FullTextResolver:
        options = {
            "client": mock_client,
            "email": "research@example.org",
            "timeout": 5,
            "max_bytes": 1_000_000,
            "max_text_length": 100_000,
            "max_pdf_pages": 10,
            "min_text_length": 100,
            "pdf_dir": tmp_path / "pdfs",
        }
        options.update(overrides)
        return FullTextResolver(**options)

    return _make


@pytest.fixture
def fake_pdf_text(monkeypatch):
    """Replace pypdf extraction with a fixed body."""
    monkeypatch.setattr(resolver_module, "extract_pdf_text", lambda content, max_pages: LONG_PARAGRAPH)


class TestTextHelpers:
    """Cleaning, truncation and HTML main-content heuristics.

    文本清洗、截断与正文提取启发式。
    """

    def test_clean_extracted_text(self):
        raw = "Line one   with\tspaces  \r\n\r\n\r\n\r\n  Line two &amp; more\x00"
        assert clean_extracted_text(raw) == "Line one with spaces\n\nLine two & more"

    def test_truncate_short_text_unchanged(self):
        assert truncate_text("short", 100) == "short"

    def test_truncate_at_late_paragraph_break(self):
        text = "a" * 90 + "\n\n" + "b" * 50
        assert truncate_text(text, 100) == "a" * 90

    def test_truncate_hard_cut_adds_marker(self):
        text = "a" * 10 + "\n\n" + "b" * 200
        result = truncate_text(text, 100)
        assert result == text[:100] + TRUNCATION_MARKER

    def test_main_content_prefers_article(self):
        text = extract_main_content(_html_page(LONG_PARAGRAPH))
        assert "Adaptive tutoring" in text
        assert "Home | Journals" not in text
        assert "var x" not in text
        assert "Copyright" not in text

    def test_main_content_uses_content_div(self):
        page = (
            "<html><body><article>Too short</article>"
            f'<div class="c-article-body"><p>{LONG_PARAGRAPH}</p></div></body></html>'
        )
        text = extract_main_content(page)
        assert text.startswith("Adaptive tutoring")
        assert "Too short" not in text

    def test_main_content_falls_back_to_body(self):
        text = extract_main_content("<html><body><p>Just a tiny page</p></body></html>")
        assert text == "Just a tiny page"


class TestResolve:
    """End-to-end resolution against mocked endpoints.

    使用模拟端点验证完整解析流程。
    """

    @pytest.mark.asyncio
    async def test_no_doi_and_no_url_makes_no_request(self, make_resolver, http_router):
        result = await make_resolver().resolve(_paper(doi=None, url=None))

        assert result.success is False
        assert result.error == "No DOI or accessible URL available"
        assert http_router.calls == []

    @pytest.mark.asyncio
    async def test_unpaywall_pdf(self, make_resolver, http_router, fake_pdf_text, tmp_path):
        http_router.add(UNPAYWALL_URL, json={"best_oa_location": {"url_for_pdf": OA_PDF_URL}})
        http_router.add(OA_PDF_URL, content=b"%PDF-1.4 fake body",
                        headers={"Content-Type": "application/pdf"})

        result = await make_resolver().resolve(_paper())

        assert result.success is True
        assert result.source == "unpaywall"
        assert result.pdf_url == OA_PDF_URL
        assert result.text.startswith("Adaptive tutoring")
        assert result.pdf_path is not None
        assert result.pdf_path.startswith(str(tmp_path / "pdfs"))
        assert "email=" in http_router.calls[0]

    @pytest.mark.asyncio
    async def test_unpaywall_oa_locations_pdf(self, make_resolver, http_router, fake_pdf_text):
        http_router.add(UNPAYWALL_URL, json={
            "best_oa_location": {"url": "https://landing.example.org/1"},
            "oa_locations": [None, {"url": "x"}, {"url_for_pdf": OA_PDF_URL}],
        })
        http_router.add(OA_PDF_URL, content=b"%PDF-1.4 fake body")

        result = await make_resolver().resolve(_paper())

        assert result.success is True
        assert result.pdf_url == OA_PDF_URL
        assert "https://landing.example.org/1" not in http_router.calls

    @pytest.mark.asyncio
    async def test_unpaywall_landing_page_html(self, make_resolver, http_router):
        landing = "https://landing.example.org/1"
        http_router.add(UNPAYWALL_URL, json={"best_oa_location": {"url": landing}})
        http_router.add(landing, content=_html_page(LONG_PARAGRAPH),
                        headers={"Content-Type": "text/html; charset=utf-8"})

        result = await make_resolver().resolve(_paper())

        assert result.success is True
        assert result.source == "unpaywall"
        assert result.pdf_url is None

    @pytest.mark.asyncio
    async def test_falls_back_to_paper_url_html(self, make_resolver, http_router):
        http_router.add(UNPAYWALL_URL, status=404, json={"error": True})
        http_router.add(PAPER_URL, content=_html_page(LONG_PARAGRAPH),
                        headers={"Content-Type": "text/html"})

        result = await make_resolver().resolve(_paper())

        assert result.success is True
        assert result.source == "html_scrape"
        assert http_router.calls[-1] == PAPER_URL

    @pytest.mark.asyncio
    async def test_paper_url_pdf(self, make_resolver, http_router, fake_pdf_text):
        pdf_link = "https://example.org/paper.pdf"
        http_router.add(pdf_link, content=b"%PDF-1.7 fake", headers={"Content-Type": "application/octet-stream"})

        result = await make_resolver().resolve(_paper(doi=None, url=pdf_link))

        assert result.success is True
        assert result.source == "pdf_extracted"
        assert result.pdf_url == pdf_link

    @pytest.mark.asyncio
    async def test_without_email_skips_unpaywall(self, make_resolver, http_router):
        http_router.add(PAPER_URL, content=_html_page(LONG_PARAGRAPH), headers={"Content-Type": "text/html"})

        result = await make_resolver(email="").resolve(_paper())

        assert result.success is True
        assert all("unpaywall" not in url for url in http_router.calls)

    @pytest.mark.asyncio
    async def test_all_methods_failed(self, make_resolver, http_router):
        http_router.add(UNPAYWALL_URL, json={"best_oa_location": None, "oa_locations": []})
        http_router.add(PAPER_URL, status=403)

        result = await make_resolver().resolve(_paper())

        assert result.success is False
        assert result.error == "All extraction methods failed"

    @pytest.mark.asyncio
    async def test_url_only_failure_reports_stage_error(self, make_resolver, http_router):
        http_router.add(PAPER_URL, status=403)

        result = await make_resolver().resolve(_paper(doi=None))

        assert result.success is False
        assert "403" in result.error

    @pytest.mark.asyncio
    async def test_size_limit_aborts_download(self, make_resolver, http_router):
        http_router.add(PAPER_URL, content=b"x" * 5000, headers={"Content-Type": "text/html"})

        result = await make_resolver(max_bytes=1000).resolve(_paper(doi=None))

        assert result.success is False
        assert "exceeded 1000 bytes" in result.error

    @pytest.mark.asyncio
    async def test_short_html_is_rejected(self, make_resolver, http_router):
        http_router.add(PAPER_URL, content=b"<html><body>Paywall</body></html>",
                        headers={"Content-Type": "text/html"})

        result = await make_resolver().resolve(_paper(doi=None))

        assert result.success is False
        assert result.error == "Extracted content too short"

    @pytest.mark.asyncio
    async def test_unsupported_content_type(self, make_resolver, http_router):
        http_router.add(PAPER_URL, content=b"\x89PNG....", headers={"Content-Type": "image/png"})

        result = await make_resolver().resolve(_paper(doi=None))

        assert result.success is False
        assert "Unsupported content type" in result.error

    @pytest.mark.asyncio
    async def test_unwritable_pdf_dir_keeps_extracted_text(
        self, make_resolver, http_router, fake_pdf_text, tmp_path,
    ):
        blocked = tmp_path / "pdfs"
        blocked.write_text("not a directory", encoding="utf-8")
        http_router.add(PAPER_URL, content=b"%PDF-1.4 body", headers={"Content-Type": "application/pdf"})

        result = await make_resolver(pdf_dir=blocked).resolve(_paper(doi=None))

        assert result.success is True
        assert result.source == "pdf_extracted"
        assert result.text.startswith("Adaptive tutoring")
        assert result.pdf_url == PAPER_URL
        assert result.pdf_path is None

    @pytest.mark.asyncio
    async def test_corrupt_pdf(self, make_resolver, http_router, monkeypatch):
        def _broken(content, max_pages):
            raise ValueError("EOF marker not found")

        monkeypatch.setattr(resolver_module, "extract_pdf_text", _broken)
        http_router.add(PAPER_URL, content=b"%PDF-garbage", headers={"Content-Type": "application/pdf"})

        result = await make_resolver().resolve(_paper(doi=None))

        assert result.success is False
        assert result.error.startswith("PDF parsing error")

    @pytest.mark.asyncio
    async def test_long_text_is_truncated(self, make_resolver, http_router, fake_pdf_text):
        http_router.add(PAPER_URL, content=b"%PDF-1.4", headers={"Content-Type": "application/pdf"})

        result = await make_resolver(max_text_length=200).resolve(_paper(doi=None))

        assert result.success is True
        assert result.text.endswith(TRUNCATION_MARKER)
        assert len(result.text) == 200 + len(TRUNCATION_MARKER)
