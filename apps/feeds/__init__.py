# =============================================================================
# 模块: apps/feeds/__init__.py
# 功能: Feed 解析模块包入口
# =============================================================================

"""Feed parsing for PaperPulse.

Usage:
    from apps.feeds import FeedParser

    parser = FeedParser(timeout=30)
    raw = await parser.fetch(journal.rss_url)
    for candidate in parser.parse(raw, journal):
        ...
"""

from apps.feeds.parser import CandidatePaper, FeedFetchError, FeedParser

__all__ = ["CandidatePaper", "FeedFetchError", "FeedParser"]
