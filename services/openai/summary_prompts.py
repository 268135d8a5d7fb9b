"""Prompt helpers for thread summarization."""

from __future__ import annotations

from typing import Iterable

from models.job_models import ConversationLine


def summary_system_prompt() -> str:
    """Return the summarizer system prompt."""
    return (
        "You are an AI assistant helping a team keep up with its conversations. "
        "Summarize faithfully, never invent decisions, and keep the output concise."
    )


def conversation_block(messages: Iterable[ConversationLine]) -> str:
    lines = [f"{line.author}: {line.text}" for line in messages]
    return "\n".join(lines)


def summary_user_prompt(conversation: str, channel_name: str, team_name: str) -> str:
    """Return the user prompt grounding the model in one thread."""
    return (
        f'Summarize the following conversation from the "{channel_name}" channel '
        f"in the {team_name} team.\n\n"
        f"Conversation:\n{conversation}\n\n"
        "Cover key discussion points, decisions, action items, insights, and the main participants. "
        "Format the answer as short Markdown sections. If the conversation is brief, keep the summary brief."
    )
