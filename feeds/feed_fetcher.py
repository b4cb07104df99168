"""HTTP fetcher for partner iCal feeds."""
import logging
import time

import requests

from processor.errors import FetchError

logger = logging.getLogger(__name__)


class FeedFetcher:
    """Fetches raw calendar feeds over HTTP with retries."""

    USER_AGENT = 'RentalCalendar/1.0'

    def __init__(self, timeout: int = 30, max_retries: int = 3, base_delay: float = 1):
        """
        Initialize the feed fetcher.

        Args:
            timeout: HTTP request timeout in seconds (default: 30)
            max_retries: Number of attempts before giving up (default: 3)
            base_delay: Initial backoff delay in seconds (default: 1)
        """
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.session = requests.Session()
        self.session.headers.update({'User-Agent': self.USER_AGENT})

    def fetch(self, url: str) -> str:
        """
        Fetch a feed with exponential backoff between attempts.

        Args:
            url: Feed URL

        Returns:
            Feed body as text

        Raises:
            FetchError: If every attempt fails or the body is empty
        """
        last_error = None

        for attempt in range(self.max_retries):
            try:
                logger.info(f"Fetching feed (attempt {attempt + 1}/{self.max_retries})")
                response = self.session.get(
                    url,
                    timeout=self.timeout,
                    allow_redirects=True
                )
                response.raise_for_status()
                break

            except requests.RequestException as e:
                last_error = e
                if attempt < self.max_retries - 1:
                    delay = self.base_delay * (2 ** attempt)
                    logger.warning(
                        f"Feed request failed (attempt {attempt + 1}/{self.max_retries}): {e}. "
                        f"Retrying in {delay} seconds..."
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        f"All {self.max_retries} retry attempts failed. Last error: {e}"
                    )
        else:
            raise FetchError(url, str(last_error)) from last_error

        if not response.text.strip():
            raise FetchError(url, 'empty response body')

        return response.text
