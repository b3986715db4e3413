"""Tab-scoped post summaries through a local OpenAI-compatible endpoint."""

__version__ = "0.1.0"
