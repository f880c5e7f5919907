"""Open-access full-text resolution."""

from apps.fulltext.resolver import FullTextResolver, FullTextResult
from apps.fulltext.service import FullTextService

__all__ = ["FullTextResolver", "FullTextResult", "FullTextService"]
