"""Shared HTTP plumbing for the network-backed classifier adapters."""
import logging
from typing import Any, Optional

import requests

from plantdx.domain.errors import ProviderCallError
from plantdx.domain.models import ProviderConfig


logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {408, 425, 429}

# raised by parsers when a field has the wrong type or is missing
MALFORMED_PAYLOAD_ERRORS = (TypeError, ValueError, AttributeError, KeyError, IndexError)


def is_retryable_status(status: int) -> bool:
    return status >= 500 or status in RETRYABLE_STATUS


def _error_message(resp: requests.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        err = payload.get("error")
        if isinstance(err, dict):
            err = err.get("message") or err.get("code")
        msg = err or payload.get("message") or payload.get("detail")
        if msg:
            return f"HTTP {resp.status_code}: {msg}"
    # Never include secrets, just a short body snippet.
    snippet = (resp.text or "").strip().replace("\n", " ")
    return f"HTTP {resp.status_code}: {snippet[:200]}" if snippet else f"HTTP {resp.status_code}"


class ProviderHttpClient:
    """Issues one request with the provider's timeout and maps failures.

    Timeouts, connection errors, 5xx and rate-limit responses are retryable;
    other 4xx responses and undecodable bodies are not.
    """

    def __init__(self, provider: str, config: ProviderConfig, session: Optional[requests.Session] = None):
        self.provider = provider
        self.config = config
        self.session = session or requests.Session()

    def request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        kwargs.setdefault("timeout", self.config.timeout_s)
        try:
            resp = self.session.request(method, url, **kwargs)
        except requests.Timeout as exc:
            raise ProviderCallError(self.provider, "request timed out", retryable=True) from exc
        except requests.ConnectionError as exc:
            raise ProviderCallError(self.provider, f"connection failed: {exc.__class__.__name__}",
                                    retryable=True) from exc
        except requests.RequestException as exc:
            raise ProviderCallError(self.provider, f"request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise ProviderCallError(
                self.provider,
                _error_message(resp),
                retryable=is_retryable_status(resp.status_code),
                status_code=resp.status_code,
            )
        try:
            return resp.json()
        except ValueError as exc:
            raise ProviderCallError(self.provider, "malformed JSON response",
                                    status_code=resp.status_code) from exc

    def post_json(self, url: str, **kwargs: Any) -> Any:
        return self.request_json("POST", url, **kwargs)

    def get_json(self, url: str, **kwargs: Any) -> Any:
        return self.request_json("GET", url, **kwargs)
