"""
Search-Data Provider Client

Issues single authenticated POST calls to the provider's versioned endpoints
and classifies every failure as transient (retryable) or permanent.
"""

import logging
from typing import Any, Dict, Optional

import requests
from pydantic import ValidationError
from requests.auth import HTTPBasicAuth

from keyword_gateway.errors import PermanentProviderError, TransientProviderError
from keyword_gateway.provider.types import ProviderCredentials, ProviderPage, ProviderResponse

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.dataforseo.com/v3"

# Envelope status codes that signal provider-side throttling
PROVIDER_RATE_LIMIT_CODES = {40202}


def is_transient_status(status_code: int) -> bool:
    """HTTP status codes worth retrying: 429 and 5xx."""
    return status_code == 429 or 500 <= status_code < 600


def is_transient_envelope_code(status_code: int) -> bool:
    """Provider envelope codes worth retrying: throttling and 5xxxx internal errors."""
    return status_code in PROVIDER_RATE_LIMIT_CODES or 50000 <= status_code < 60000


class ProviderClient:
    """
    Thin HTTP client for the provider.

    One call fetches one page: the body is sent as a single-task array with
    `limit` and `offset` merged in.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Args:
            base_url: Provider API root including the version segment
            timeout: Per-request timeout in seconds
            session: requests.Session to reuse (created if omitted)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def build_url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def fetch_page(
        self,
        path: str,
        body: Dict[str, Any],
        credentials: ProviderCredentials,
        limit: int,
        offset: int = 0,
    ) -> ProviderPage:
        """
        Fetch one page of results.

        Args:
            path: Endpoint path below the versioned root (e.g. "dataforseo_labs/google/ranked_keywords/live")
            body: Task body ({keywords|target, location_code, language_code, ...})
            credentials: Provider credentials
            limit: Page size
            offset: Offset of the first result

        Returns:
            ProviderPage

        Raises:
            TransientProviderError: 429, 5xx, network failure or provider throttling
            PermanentProviderError: Other 4xx, malformed response or provider-side task error
        """
        url = self.build_url(path)
        payload = [{**body, "limit": limit, "offset": offset}]

        try:
            response = self.session.post(
                url,
                json=payload,
                auth=HTTPBasicAuth(credentials.login, credentials.password),
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientProviderError(f"Network error calling provider {path}: {e}") from e
        except requests.RequestException as e:
            raise PermanentProviderError(f"Request to provider {path} failed: {e}") from e

        status = response.status_code

        if status == 402:
            raise PermanentProviderError(
                "Provider API credits exhausted. Add credits to the provider account.",
                status_code=402,
            )

        if is_transient_status(status):
            raise TransientProviderError(f"Provider error: HTTP {status} {response.reason}", status_code=status)

        if not 200 <= status < 300:
            raise PermanentProviderError(f"Provider error: HTTP {status} {response.reason}", status_code=status)

        try:
            envelope = ProviderResponse.model_validate(response.json())
        except ValueError as e:
            # ValidationError is a ValueError subclass; so is JSONDecodeError
            kind = "invalid envelope" if isinstance(e, ValidationError) else "non-JSON body"
            raise PermanentProviderError(f"Malformed provider response ({kind}) from {path}", status_code=status) from e

        self._raise_for_envelope(envelope.status_code, envelope.status_message, path, status)

        if envelope.tasks:
            task = envelope.tasks[0]
            self._raise_for_envelope(task.status_code, task.status_message, path, status)

        results = envelope.first_task_results()
        return ProviderPage(
            results=results,
            offset=offset,
            next_offset=offset + limit,
            cost=envelope.cost,
            status_code=envelope.status_code,
        )

    @staticmethod
    def _raise_for_envelope(code: int, message: str, path: str, http_status: int) -> None:
        if code == 20000:
            return

        msg = f"Provider error {code} on {path}: {message or 'unknown error'}"
        if is_transient_envelope_code(code):
            # Provider throttling is reported as 429 so callers see one rate-limit signal
            raise TransientProviderError(msg, status_code=429 if code in PROVIDER_RATE_LIMIT_CODES else 503)
        raise PermanentProviderError(msg, status_code=http_status)
