"""Email categorization through the Gemini API (google-genai)."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from google import genai

from inbox_ingestor.core.exceptions import ClassificationError
from inbox_ingestor.core.models import Category

logger = logging.getLogger(__name__)

CATEGORIZE_PROMPT = """\
You are an email assistant. Categorize the following email content into one of these categories:
{labels}

Respond with only the category name (no explanations).

---

Email Content:
{text}
"""


def build_prompt(text: str) -> str:
    labels = "\n".join(f"- {category.value}" for category in Category)
    return CATEGORIZE_PROMPT.format(labels=labels, text=text)


def parse_category(output: str | None) -> Category:
    """Map raw model output onto the closed label set.

    Matching is case-insensitive and ignores surrounding whitespace; anything
    else is rejected.

    Raises:
        ClassificationError: On empty or unrecognised output.
    """
    if not output or not output.strip():
        raise ClassificationError(f"No category response from model: {output!r}")

    normalized = output.strip().lower()
    for category in Category:
        if category.value.lower() == normalized:
            return category

    raise ClassificationError(f"Unexpected category response: {output!r}")


class GeminiCategorizer:
    """Classify email text into a Category with a Gemini model."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        *,
        timeout_seconds: float = 30.0,
        client: Any | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._timeout = timeout_seconds
        self._client = client

    def _get_client(self) -> Any:
        """Create the Gemini client on first use."""
        if self._client is None:
            if not self._api_key:
                raise ClassificationError("Gemini API key is not set (INBOX_GEMINI_API_KEY)")
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def classify(self, text: str) -> Category:
        """Categorize ``text``.

        Raises:
            ClassificationError: If the model is unavailable, times out, or
                answers with something outside the label set.
        """
        client = self._get_client()
        try:
            response = await asyncio.wait_for(
                client.aio.models.generate_content(
                    model=self._model,
                    contents=build_prompt(text),
                ),
                timeout=self._timeout,
            )
        except TimeoutError as e:
            raise ClassificationError(
                f"Categorization timed out after {self._timeout:.0f}s"
            ) from e
        except Exception as e:
            raise ClassificationError(f"Failed to categorize email: {e}") from e

        category = parse_category(response.text)
        logger.debug("Model answered %r -> %s", response.text, category)
        return category
