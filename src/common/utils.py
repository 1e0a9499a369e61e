"""Utility functions for common operations across the application."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from uuid import uuid4

logger = logging.getLogger(__name__)


class StringUtils:
    """String manipulation utility functions."""

    @staticmethod
    def normalize_text(text: Optional[str]) -> str:
        """
        Normalize recognized speech for comparison and dispatch.

        Args:
            text: Raw recognizer output

        Returns:
            Trimmed text, or empty string if input is None

        Example:
            >>> StringUtils.normalize_text("  hello there ")
            'hello there'
        """
        return text.strip() if text else ""

    @staticmethod
    def truncate_for_logging(text: str, max_length: int = 60) -> str:
        """
        Shorten text for log lines.

        Args:
            text: Text to shorten
            max_length: Maximum characters kept before the ellipsis

        Returns:
            Original text, or its prefix followed by "..."
        """
        if len(text) <= max_length:
            return text
        return text[:max_length] + "..."


class JobIdUtils:
    """Identifier generation utility functions."""

    @staticmethod
    def generate_correlation_id() -> str:
        """
        Generate a correlation id for a translation dispatch.

        Returns:
            UUID4 string

        Example:
            >>> len(JobIdUtils.generate_correlation_id()) == 36
            True
        """
        return str(uuid4())


class DateTimeUtils:
    """Date and time utility functions."""

    @staticmethod
    def get_current_utc_datetime() -> datetime:
        """
        Get the current UTC datetime.

        Returns:
            Current datetime in UTC timezone
        """
        return datetime.now(timezone.utc)

    @staticmethod
    def get_date_string_for_log_file() -> str:
        """
        Get a date string suitable for log file names.

        Returns:
            Date string in YYYYMMDD format
        """
        return datetime.now().strftime("%Y%m%d")


class ResultUtils:
    """Extraction of artifact URLs from provider result payloads."""

    @staticmethod
    def _urls_from_items(items: Any) -> List[str]:
        if not isinstance(items, list):
            return []
        urls = []
        for item in items:
            if isinstance(item, dict) and isinstance(item.get("url"), str):
                urls.append(item["url"])
            elif isinstance(item, str):
                urls.append(item)
        return urls

    @staticmethod
    def extract_artifact_urls(
        explicit_urls: Optional[Iterable[str]], raw: Optional[Dict[str, Any]]
    ) -> List[str]:
        """
        Collect the artifact URLs of a completed job.

        Explicit URLs win. Otherwise the raw payload is searched in the
        shapes providers are known to use: ``images[].url``, ``image_url``,
        ``data.images[].url``, ``video.url`` and ``video_url``.

        Args:
            explicit_urls: URLs the client already extracted, if any
            raw: Raw provider result payload

        Returns:
            De-duplicated list of non-empty URLs, in order of appearance

        Example:
            >>> ResultUtils.extract_artifact_urls(None, {"images": [{"url": "a"}]})
            ['a']
        """
        urls = [url for url in (explicit_urls or []) if url]

        if not urls and isinstance(raw, dict):
            urls = ResultUtils._urls_from_items(raw.get("images"))
            if not urls and isinstance(raw.get("image_url"), str):
                urls = [raw["image_url"]]
            if not urls and isinstance(raw.get("data"), dict):
                urls = ResultUtils._urls_from_items(raw["data"].get("images"))
            if not urls and isinstance(raw.get("video"), dict):
                video_url = raw["video"].get("url")
                if isinstance(video_url, str):
                    urls = [video_url]
            if not urls and isinstance(raw.get("video_url"), str):
                urls = [raw["video_url"]]

        seen = set()
        unique = []
        for url in urls:
            if url and url not in seen:
                seen.add(url)
                unique.append(url)
        return unique
