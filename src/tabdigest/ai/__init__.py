"""Inference client, prompts and the summarization job executor."""
