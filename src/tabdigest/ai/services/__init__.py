"""AI service helpers."""

from .summarizer import SummaryExecutor, extract_summary

__all__ = ["SummaryExecutor", "extract_summary"]
