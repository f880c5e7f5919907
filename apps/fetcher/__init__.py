"""Scheduled journal fetching."""

from apps.fetcher.orchestrator import FetchOrchestrator, FetchResult, RunAllResult

__all__ = ["FetchOrchestrator", "FetchResult", "RunAllResult"]
