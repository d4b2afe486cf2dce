"""
Authenticated JSON client for the Mantis REST API.

Every failure is normalized into MantisApiError:

    HTTP error (4xx/5xx)      -> kind API, status_code = HTTP status, response = body
    No response (DNS, refused
    connection, timeout)      -> kind TRANSPORT, status_code = 0
    Request could not be
    built (bad URL, ...)      -> kind VALIDATION, status_code = None
"""

import logging
from typing import Any, Optional

import requests

from .errors import MantisApiError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT_SECONDS = 10


def decode_body(response: requests.Response) -> Any:
    """Parsed JSON body, raw text when the body is not JSON, None when empty."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def translate_request_error(e: requests.exceptions.RequestException, method: str, url: str) -> MantisApiError:
    """Map a requests exception raised before any response arrived."""
    # ConnectTimeout is both a ConnectionError and a Timeout
    if isinstance(e, (requests.exceptions.ConnectionError, requests.exceptions.Timeout)):
        logger.error(f"No API response received: {method} {url} - {type(e).__name__}: {e}")
        return MantisApiError.transport("No API response received")

    logger.error(f"Request error: {method} {url} - {type(e).__name__}: {e}")
    return MantisApiError.validation(f"Request error: {e}")


class MantisHttpClient:
    """Thin wrapper around a requests.Session bound to the Mantis REST base URL."""

    def __init__(self, base_url: str, api_key: Optional[str] = None,
                 session: Optional[requests.Session] = None,
                 timeout: float = REQUEST_TIMEOUT_SECONDS):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if api_key:
            # Mantis expects the bare token, no "Bearer" prefix
            self.session.headers.update({"Authorization": api_key})

        logger.info(f"Mantis API client initialized: base_url={self.base_url}, "
                    f"timeout={self.timeout}s, has_api_key={bool(api_key)}")

    def get(self, path: str, params: Optional[dict] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, json: Any = None) -> Any:
        return self.request("POST", path, json=json)

    def patch(self, path: str, json: Any = None) -> Any:
        return self.request("PATCH", path, json=json)

    def request(self, method: str, path: str, **kwargs) -> Any:
        """
        Send one request and return its decoded body.

        Args:
            method: HTTP method
            path: endpoint path relative to the base URL, e.g. '/issues/42'
            **kwargs: passed through to requests (params, json)

        Returns:
            Decoded response body (see decode_body)

        Raises:
            MantisApiError: on any HTTP, transport or request-construction failure
        """
        url = f"{self.base_url}{path}"
        logger.info(f"API Request: {method} {path}")
        if kwargs.get("params"):
            logger.debug(f"Request params: {kwargs['params']}")

        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise translate_request_error(e, method, url) from e

        logger.info(f"API Response: {method} {path} - Status {response.status_code}")

        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            body = decode_body(response)
            message = f"API error: {response.status_code} {response.reason or ''}".rstrip()
            logger.error(f"{message}: {method} {path} - {str(body)[:500]}")
            raise MantisApiError.api(message, response.status_code, body) from e

        return decode_body(response)
