"""Thread summary generator built on the OpenAI Responses API."""

from __future__ import annotations

import logging
import time
from typing import Sequence

from openai import AsyncOpenAI

from models.job_models import ConversationLine
from services.openai.response_parser import extract_text, extract_usage
from services.openai.summary_prompts import (
    conversation_block,
    summary_system_prompt,
    summary_user_prompt,
)
from utils.errors import SummarizationError

LOGGER = logging.getLogger(__name__)


class ThreadSummarizer:
    """Turn an ordered list of thread messages into one Markdown summary."""

    def __init__(self, client: AsyncOpenAI, model: str = "gpt-4o-mini", max_tokens: int = 1000) -> None:
        if client is None:
            raise ValueError("AsyncOpenAI client is required.")
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    async def summarize(
        self,
        messages: Sequence[ConversationLine],
        channel_name: str,
        team_name: str,
    ) -> str:
        """Return the summary text.

        Raises:
            SummarizationError: if the API call fails or returns no text.
        """
        if not messages:
            raise SummarizationError("Cannot summarize an empty conversation.")
        start = time.time()
        prompt = summary_user_prompt(conversation_block(messages), channel_name, team_name)
        try:
            response = await self.client.responses.create(
                model=self.model,
                input=[
                    {"type": "message", "role": "system", "content": [{"type": "input_text", "text": summary_system_prompt()}]},
                    {"type": "message", "role": "user", "content": [{"type": "input_text", "text": prompt}]},
                ],
                max_output_tokens=self.max_tokens,
            )
        except Exception as exc:
            LOGGER.error("OpenAI Responses API error: %s", exc)
            raise SummarizationError(f"Summarization request failed: {exc}") from exc

        text = extract_text(response).strip()
        if not text:
            raise SummarizationError("Summarizer returned no text.")
        usage = extract_usage(response)
        LOGGER.info(
            "Thread summary generated in %.3fs (input_tokens=%s, output_tokens=%s)",
            time.time() - start,
            usage["input_tokens"],
            usage["output_tokens"],
        )
        return text
