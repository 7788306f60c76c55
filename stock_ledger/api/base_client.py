"""httpx client wrapper with tenacity retries."""

import httpx
from typing import Optional, Dict, Tuple, Type
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    wait_none,
    retry_if_exception_type
)

from ..utils.config import get_config
from ..utils.logger import get_api_logger

# Safe to repeat whether or not the server saw the request.
IDEMPOTENT_RETRY_ERRORS: Tuple[Type[Exception], ...] = (httpx.TimeoutException, httpx.NetworkError)
# The request never reached the server, so even a POST can be resent.
UNSENT_RETRY_ERRORS: Tuple[Type[Exception], ...] = (httpx.ConnectError, httpx.ConnectTimeout)


class BaseClient:
    """Shared transport, headers and retry policy for the ledger API."""

    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.BaseTransport] = None
    ):
        """
        Args:
            base_url: API root
            headers: Headers sent with every request
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.base_url = base_url.rstrip("/")
        self.config = get_config()
        self.logger = get_api_logger()

        default_headers = {
            "Content-Type": "application/json",
            "User-Agent": "Stock-Ledger-Client/1.0"
        }

        if headers:
            default_headers.update(headers)

        self.client = httpx.Client(
            base_url=self.base_url,
            headers=default_headers,
            timeout=self.config.api.timeout,
            follow_redirects=True,
            transport=transport
        )

    def _wait_strategy(self):
        if self.config.api.exponential_backoff:
            return wait_exponential(multiplier=self.config.api.retry_delay)
        return wait_none()

    def _make_request_with_retry(
        self,
        method: str,
        url: str,
        retry_on: Tuple[Type[Exception], ...] = IDEMPOTENT_RETRY_ERRORS,
        **kwargs
    ) -> httpx.Response:
        """
        Send a request, retrying the transport errors in ``retry_on``.

        HTTP error statuses are returned to the caller, never retried here.

        Raises:
            httpx.TransportError: If all retry attempts fail, or on an error
                outside ``retry_on``
        """
        @retry(
            stop=stop_after_attempt(self.config.api.max_retries),
            wait=self._wait_strategy(),
            retry=retry_if_exception_type(retry_on),
            reraise=True
        )
        def _request():
            self.logger.debug(f"{method} {url}")
            response = self.client.request(method, url, **kwargs)
            self.logger.debug(f"Response: {response.status_code}")
            return response

        return _request()

    def get(self, endpoint: str, **kwargs) -> httpx.Response:
        return self._make_request_with_retry("GET", endpoint, **kwargs)

    def post(self, endpoint: str, **kwargs) -> httpx.Response:
        """POST is not idempotent: a read timeout may mean the server already
        applied it, so only connection failures are retried."""
        return self._make_request_with_retry("POST", endpoint, retry_on=UNSENT_RETRY_ERRORS, **kwargs)

    def patch(self, endpoint: str, **kwargs) -> httpx.Response:
        return self._make_request_with_retry("PATCH", endpoint, **kwargs)

    def delete(self, endpoint: str, **kwargs) -> httpx.Response:
        return self._make_request_with_retry("DELETE", endpoint, **kwargs)

    def close(self):
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
