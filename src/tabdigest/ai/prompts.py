"""Prompt text for post summaries."""

from __future__ import annotations

from typing import Dict, List

SUMMARY_SYSTEM_PROMPT = (
    "You are a concise assistant. Summarize the following Reddit post clearly and briefly. "
    "Cover the main topic, key points, and any important context."
)


def build_summary_messages(text: str, *, system_prompt: str = SUMMARY_SYSTEM_PROMPT) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": text},
    ]


def join_post_text(title: str | None, body: str | None) -> str:
    """Combine the non-empty title and body separated by a blank line."""

    return "\n\n".join(part for part in (title, body) if part)


__all__ = ["SUMMARY_SYSTEM_PROMPT", "build_summary_messages", "join_post_text"]
