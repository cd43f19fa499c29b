"""
HTTP Retry Client for JSON APIs.

This module executes requests against envelope-style JSON APIs (Cloudflare
v4: {success, result, errors[]}) with a shared retry policy. Responses are
classified by status code:

- 530: authentication failure, fatal, never retried
- 403: authorization failure, never retried
- 429: retried after the Retry-After delay (or the base delay)
- 5xx: retried with exponential backoff
- other non-2xx: fail fast

Transport errors and timeouts are retried with backoff. A 2xx payload
carrying success=false is a failure reporting its first error message.
"""

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from .enums import LogLevel, RetryDecision
from .exceptions import (
    APIError,
    AuthenticationError,
    AuthorizationError,
    NetworkError,
    ProtocolError,
    RateLimitError,
    ServerError,
    SyncError,
)
from .retry_manager import Attempt, RetryManager
from .sync_logger import StructuredLogger


@dataclass(frozen=True)
class StatusPolicy:
    """How a non-2xx status is surfaced and retried."""

    decision: RetryDecision
    error_type: type
    message: Optional[str] = None


STATUS_POLICIES: dict[int, StatusPolicy] = {
    530: StatusPolicy(
        RetryDecision.NEVER,
        AuthenticationError,
        "Authentication failed. Please check your API token.",
    ),
    403: StatusPolicy(
        RetryDecision.NEVER,
        AuthorizationError,
        "Access denied. Please check your API token permissions.",
    ),
    429: StatusPolicy(RetryDecision.RETRY_AFTER, RateLimitError),
}

SERVER_ERROR_POLICY = StatusPolicy(RetryDecision.BACKOFF, ServerError)
CLIENT_ERROR_POLICY = StatusPolicy(RetryDecision.NEVER, APIError)


def policy_for_status(status_code: int) -> StatusPolicy:
    """Look up the retry policy for a non-2xx status code."""
    if status_code in STATUS_POLICIES:
        return STATUS_POLICIES[status_code]
    if status_code >= 500:
        return SERVER_ERROR_POLICY
    return CLIENT_ERROR_POLICY


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header given in seconds."""
    if not value:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


def error_body(response: httpx.Response) -> Any:
    """Parse an error body as JSON, wrapping raw text when it is not JSON."""
    try:
        return response.json()
    except ValueError:
        return {"raw": response.text}


def first_error_message(payload: Any) -> Optional[str]:
    """Return errors[0].message from an API envelope, if present."""
    if not isinstance(payload, dict):
        return None
    errors = payload.get("errors") or []
    if errors and isinstance(errors[0], dict):
        return errors[0].get("message")
    return None


class RetryingHTTPClient:
    """
    Async HTTP client that applies the shared retry policy to every call.

    execute() returns the parsed success payload or raises a SyncError
    subclass carrying the last error.
    """

    COMPONENT = "HTTPClient"

    def __init__(
        self,
        headers: Optional[dict[str, str]] = None,
        timeout: float = 10.0,
        retry_manager: Optional[RetryManager] = None,
        logger: Optional[StructuredLogger] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            headers: Headers sent with every request (auth, content type)
            timeout: Per-request deadline in seconds
            retry_manager: Retry policy; defaults to 3 attempts, 1 s base, 10 s cap
            logger: Optional logger
            client: Optional pre-built httpx.AsyncClient (e.g. with a mock transport)
        """
        self._headers = dict(headers or {})
        self._timeout = timeout
        self._retry_manager = retry_manager or RetryManager()
        self._logger = logger
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "RetryingHTTPClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=True,
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
            )
        return self._client

    async def execute(
        self,
        method: str,
        url: str,
        context: str,
        json: Optional[Any] = None,
        params: Optional[dict[str, Any]] = None,
    ) -> Any:
        """
        Execute a request with retry.

        Args:
            method: HTTP method
            url: Absolute request URL
            context: Human-readable description used in logs and errors
            json: Optional JSON body
            params: Optional query parameters

        Returns:
            The parsed JSON payload of the successful response

        Raises:
            SyncError: The last error once the retry budget is spent or a
                       fatal status was received
        """

        async def attempt_once(attempt: int) -> Attempt[Any]:
            self._log(LogLevel.DEBUG, f"Making request to {url}", {
                "context": context,
                "attempt": attempt + 1,
                "method": method,
            })
            try:
                response = await self._get_client().request(
                    method,
                    url,
                    headers=self._headers,
                    json=json,
                    params=params,
                    timeout=self._timeout,
                )
            except httpx.HTTPError as e:
                self._log(LogLevel.WARN, "Network error", {
                    "context": context,
                    "attempt": attempt + 1,
                    "error": str(e) or type(e).__name__,
                })
                return Attempt.fail(NetworkError(
                    code="network_error",
                    message=f"{context} failed: {str(e) or type(e).__name__}",
                    details={"url": url},
                ))

            return self._classify(response, context, attempt)

        result = await self._retry_manager.execute(
            attempt_once, on_retry=self._on_retry(context)
        )
        if result.success:
            return result.result

        error = result.last_error
        if isinstance(error, SyncError):
            raise error
        raise NetworkError(
            code="retries_exhausted",
            message=f"{context} failed after {result.attempts} attempts",
        )

    def _classify(
        self, response: httpx.Response, context: str, attempt: int
    ) -> Attempt[Any]:
        status = response.status_code
        self._log(LogLevel.DEBUG, "Received response", {
            "context": context,
            "status": status,
            "reason": response.reason_phrase,
        })

        if not response.is_success:
            body = error_body(response)
            message = first_error_message(body) or response.reason_phrase
            policy = policy_for_status(status)
            retry_after = None

            self._log(LogLevel.ERROR, "Request failed", {
                "context": context,
                "status": status,
                "error_message": message,
                "error_data": body,
                "attempt": attempt + 1,
            })

            if policy.error_type is RateLimitError:
                retry_after = parse_retry_after(response.headers.get("Retry-After"))
                error = RateLimitError(
                    code="rate_limited",
                    message=f"{context} failed: {message}",
                    status_code=status,
                    retry_after=retry_after,
                    details={"response": body},
                )
            else:
                error = policy.error_type(
                    code=f"http_{status}",
                    message=policy.message or f"{context} failed: {message}",
                    status_code=status,
                    details={"response": body},
                )
            return Attempt.fail(error, policy.decision, retry_after)

        try:
            payload = response.json()
        except ValueError as e:
            return Attempt.fail(
                ProtocolError(
                    code="parse_error",
                    message=f"{context} failed: response is not JSON ({e})",
                ),
                RetryDecision.NEVER,
            )

        if isinstance(payload, dict) and payload.get("success") is False:
            message = first_error_message(payload) or "Unknown error"
            return Attempt.fail(
                APIError(
                    code="api_error",
                    message=f"{context} failed: {message}",
                    status_code=status,
                    details={"response": payload},
                ),
                RetryDecision.NEVER,
            )

        result = payload.get("result") if isinstance(payload, dict) else None
        self._log(LogLevel.DEBUG, "Request successful", {
            "context": context,
            "result_count": len(result) if isinstance(result, list) else 1,
        })
        return Attempt.ok(payload)

    def _on_retry(self, context: str):
        def hook(attempt: int, error: Exception, delay: float) -> None:
            if isinstance(error, RateLimitError):
                message = f"Rate limited. Waiting {delay}s before retry..."
            elif isinstance(error, ServerError):
                message = f"Server error {error.status_code}. Retrying in {delay}s..."
            else:
                message = f"Network error. Retrying in {delay}s..."
            self._log(LogLevel.WARN, message, {
                "context": context,
                "attempt": attempt + 1,
            })

        return hook

    def _log(self, level: LogLevel, message: str, data: dict) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
