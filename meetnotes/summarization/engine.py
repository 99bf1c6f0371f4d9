"""Meeting summaries from an OpenAI-compatible chat completions API."""

import asyncio
import logging
import time
from typing import Callable, Optional

import aiohttp
from pydantic import ValidationError

from ..errors import SummarizationError
from ..models.summary import MeetingSummary, placeholder_summary
from .parsing import extract_json_object

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = ("You are a meeting analyst. Output ONLY valid JSON with no markdown formatting, "
                 "no code blocks, no extra text. Just pure JSON.")

SUMMARY_PROMPT = """You are an expert meeting analyst. Analyze the following meeting transcript and provide a comprehensive summary.

Return your response as a valid JSON object with the following structure:
{
  "title": "A concise, descriptive title for the meeting",
  "sections": [
    {
      "heading": "Section heading",
      "points": [
        {"text": "The main point text", "references": []}
      ]
    }
  ],
  "actionItems": [
    {
      "task": "Description of the task",
      "assignee": "Name of person assigned (if mentioned)",
      "dueDate": "Due date if mentioned",
      "priority": "high/medium/low"
    }
  ]
}

Guidelines:
- Create logical sections based on the meeting content
- Each point should be a complete, standalone statement
- Extract specific, actionable items from the discussion
- The title should capture the essence of the meeting
- Return ONLY valid JSON, no markdown or other formatting

Meeting Transcript:
"""

MIN_TRANSCRIPT_CHARS = 20


class ChatAPIError(Exception):
    """Non-success response from the chat completions endpoint."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class SummarizationEngine:
    """Turns a transcript into a MeetingSummary."""

    def __init__(self,
                 api_key: Optional[str],
                 base_url: str = "https://api.groq.com/openai/v1",
                 model: str = "llama-3.3-70b-versatile",
                 temperature: float = 0.3,
                 max_tokens: int = 4000,
                 max_attempts: int = 3,
                 backoff_seconds: float = 1.5,
                 rate_limit_backoff_seconds: float = 3.0,
                 request_timeout: float = 120.0,
                 sleep: Callable[[float], None] = time.sleep):
        """Initialize the summarization engine.

        Args:
            api_key: Bearer token for the chat API
            base_url: API root, without the ``/chat/completions`` suffix
            model: Chat model name
            temperature: Sampling temperature
            max_tokens: Maximum tokens in the reply
            max_attempts: Requests before falling back to a placeholder summary
            backoff_seconds: Wait after failed attempt ``n`` is this times ``n``
            rate_limit_backoff_seconds: Extra wait per attempt after a 429
            request_timeout: Total timeout per HTTP request in seconds
            sleep: Injected for tests
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.rate_limit_backoff_seconds = rate_limit_backoff_seconds
        self.request_timeout = request_timeout
        self.sleep = sleep

        logger.info(f"SummarizationEngine initialized with model: {model}")

    @classmethod
    def from_config(cls, config) -> "SummarizationEngine":
        return cls(
            api_key=config.get_summary_api_key(),
            base_url=config.get('summary.base_url'),
            model=config.get('summary.model', 'llama-3.3-70b-versatile'),
            temperature=config.get('summary.temperature', 0.3),
            max_tokens=config.get('summary.max_tokens', 4000),
            max_attempts=config.get('summary.max_attempts', 3),
            backoff_seconds=config.get('summary.backoff_seconds', 1.5),
            rate_limit_backoff_seconds=config.get('summary.rate_limit_backoff_seconds', 3.0),
        )

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def generate_summary(self, transcript: str) -> MeetingSummary:
        """Summarize ``transcript``.

        Returns the placeholder summary when every attempt failed.

        Raises:
            SummarizationError: If no API key is configured or the
                transcript is too short to summarize
        """
        if not self.api_key:
            raise SummarizationError("Summary API key not configured")
        if not transcript or len(transcript.strip()) < MIN_TRANSCRIPT_CHARS:
            raise SummarizationError("Transcript too short to summarize")

        logger.info(f"Generating summary with {self.model}...")
        for attempt in range(1, self.max_attempts + 1):
            try:
                logger.info(f"Summary attempt {attempt}/{self.max_attempts}...")
                content = asyncio.run(self.send_prompt(SUMMARY_PROMPT + transcript))
                summary = MeetingSummary.model_validate(extract_json_object(content))
                logger.info(f"Summary parsed successfully: {summary.title}")
                return summary
            except (ChatAPIError, ValueError, ValidationError) as e:
                logger.error(f"Summary attempt {attempt} failed: {e}")
                if attempt < self.max_attempts:
                    if getattr(e, "status", None) == 429:
                        self.sleep(self.rate_limit_backoff_seconds * attempt)
                    else:
                        self.sleep(self.backoff_seconds * attempt)

        logger.warning("Creating fallback summary...")
        return placeholder_summary()

    async def send_prompt(self, prompt: str) -> str:
        """Send one chat completion request and return the reply text.

        Raises:
            ChatAPIError: On a non-200 response, a connection failure or an empty reply
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        data = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

        timeout = aiohttp.ClientTimeout(total=self.request_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.endpoint, headers=headers, json=data) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        raise ChatAPIError(f"Chat API error: {response.status} - {error_text[:300]}",
                                           response.status)
                    result = await response.json()
        except aiohttp.ClientError as e:
            raise ChatAPIError(f"Chat API connection error: {e}") from e
        except asyncio.TimeoutError as e:
            raise ChatAPIError(f"Chat API timed out after {self.request_timeout}s") from e

        choices = result.get("choices") or []
        content = choices[0].get("message", {}).get("content") if choices else None
        if not content:
            raise ChatAPIError("No response from chat model")
        return content.strip()
