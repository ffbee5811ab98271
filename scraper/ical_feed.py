"""HTTP client for remote iCalendar feeds."""
import logging
import time

import requests

from processor.models import CalendarSourceConfig

logger = logging.getLogger(__name__)


class IcalFeedClient:
    """Fetches raw iCalendar text for a configured calendar source."""

    USER_AGENT = "calendar-board/1.0"

    def __init__(self, timeout: int = 20, max_retries: int = 2, base_delay: float = 1):
        """
        Initialize the feed client.

        Args:
            timeout: HTTP request timeout in seconds (default: 20)
            max_retries: Number of attempts before giving up (default: 2)
            base_delay: Initial backoff delay in seconds (default: 1)
        """
        self.timeout = timeout
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay

    def fetch(self, source: CalendarSourceConfig) -> str:
        """
        Fetch the iCalendar document for a source with retry logic.

        Args:
            source: Calendar source to fetch

        Returns:
            Raw iCalendar text

        Raises:
            requests.RequestException: If all retry attempts fail
        """
        for attempt in range(self.max_retries):
            try:
                logger.info(
                    f"Fetching calendar '{source.name}' "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                response = requests.get(
                    source.url,
                    headers={'User-Agent': self.USER_AGENT},
                    timeout=self.timeout
                )
                response.raise_for_status()
                return response.text

            except requests.RequestException as e:
                if attempt < self.max_retries - 1:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(
                        f"Request for '{source.name}' failed "
                        f"(attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_retries} attempts for '{source.name}' "
                        f"failed. Last error: {e}"
                    )
                    raise
