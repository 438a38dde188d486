"""HTML to plain text extraction using trafilatura."""

from __future__ import annotations

import logging

import trafilatura

logger = logging.getLogger(__name__)


class TextExtractor:
    """Derive the indexable plain text of an email body."""

    def extract(self, plain_text: str | None, html: str | None) -> str:
        """Return the best plain-text rendition of a body.

        Strategy:
        1. Prefer the text/plain part when it has content.
        2. Otherwise extract from HTML via trafilatura (favor_recall=True for email layouts).
        3. Fall back to an empty string.

        Args:
            plain_text: Decoded text/plain part, if any.
            html: Decoded text/html part, if any.

        Returns:
            Plain text, possibly empty.
        """
        if plain_text and plain_text.strip():
            return plain_text

        if html:
            try:
                result = trafilatura.extract(
                    html,
                    output_format="txt",
                    favor_recall=True,
                    include_links=False,
                    include_tables=True,
                )
            except Exception as e:
                logger.warning("Trafilatura extraction failed: %s", e)
                result = None
            if result:
                return result

        return plain_text or ""
