"""
Retrying metadata client: the system under test.

MetadataClient issues metadata requests to a single broker over a
FaultTransport and retries them internally until the caller's deadline:

    attempt -> (timeout after socket_timeout_ms) -> backoff retry_backoff_ms
            -> attempt -> ... -> success or deadline

After socket_max_fails consecutive timeouts the connection is torn down
and reopened, which sends a new connection through the admission gate.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from faultline.clock import Clock, now_ms
from faultline.exceptions import MetadataError
from faultline.models import ClientConfig, Metadata
from faultline.retry import (
    ErrorCode,
    FatalClassifier,
    call_with_deadline,
    classify_exception,
)
from faultline.transport import FaultTransport

logger = logging.getLogger(__name__)


class MetadataClient:
    """
    Metadata client with per-attempt timeouts and fixed backoff.

    Args:
        config: Timeouts, backoff and connection policy.
        transport: Transport carrying the single broker connection.
        is_fatal: Classifier called as is_fatal(code, reason) on every
            failure; True stops retrying. Defaults to treating only invalid
            requests as fatal.
        clock: Monotonic millisecond clock.

    Usage:
        with MetadataClient(config, transport, is_fatal=connectivity_errors_nonfatal) as client:
            md = client.metadata(timeout_ms=2000)
    """

    def __init__(
        self,
        config: ClientConfig,
        transport: FaultTransport,
        *,
        is_fatal: Optional[FatalClassifier] = None,
        clock: Clock = now_ms,
    ) -> None:
        self._config = config
        self._transport = transport
        self._is_fatal = is_fatal
        self._clock = clock
        headers = {}
        if config.token:
            headers["authorization"] = f"Bearer {config.token}"
        self._http = httpx.Client(
            transport=transport, base_url=config.bootstrap_url, headers=headers
        )
        self._consecutive_timeouts = 0
        self.api_versions: Optional[Dict[str, Any]] = None
        # Attempts made by the most recent metadata() call.
        self.attempts = 0

    @property
    def config(self) -> ClientConfig:
        return self._config

    def start(self) -> None:
        """
        Connect to the bootstrap broker.

        Raises:
            MetadataError: The connection was refused, or the handshake failed.
        """
        try:
            self._transport.connect(httpx.URL(self._config.bootstrap_url))
            if self._config.api_version_request:
                response = self._get("/handshake", None, self._config.socket_timeout_ms)
                self.api_versions = response.json().get("api_versions")
        except httpx.HTTPError as e:
            code, reason = classify_exception(e)
            raise MetadataError(
                f"Failed to connect: {reason}", error_code=code.value, reason=reason
            ) from e
        logger.info("Connected to %s", self._config.bootstrap_url)

    def metadata(self, timeout_ms: float, topic: Optional[str] = None) -> Metadata:
        """
        Request cluster metadata, retrying until timeout_ms has elapsed.

        Raises:
            MetadataError: Fatal error, or the deadline passed without a
                successful attempt.
        """
        params = {"topic": topic} if topic else None
        deadline = self._clock() + timeout_ms
        self.attempts = 0

        def attempt(left_ms: float) -> Metadata:
            self.attempts += 1
            attempt_timeout = max(1.0, min(self._config.socket_timeout_ms, left_ms))
            response = self._get("/metadata", params, attempt_timeout)
            self._consecutive_timeouts = 0
            return Metadata.model_validate(response.json())

        return call_with_deadline(
            attempt,
            deadline_ms=deadline,
            backoff_ms=self._config.retry_backoff_ms,
            is_fatal=self._is_fatal,
            on_failure=self._on_failure,
            clock=self._clock,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "MetadataClient":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _get(
        self, path: str, params: Optional[Dict[str, str]], timeout_ms: float
    ) -> httpx.Response:
        response = self._http.get(path, params=params, timeout=timeout_ms / 1000.0)
        response.raise_for_status()
        return response

    def _on_failure(self, code: ErrorCode, exc: Exception) -> None:
        if code is not ErrorCode.TIMED_OUT:
            return
        self._consecutive_timeouts += 1
        max_fails = self._config.socket_max_fails
        if max_fails and self._consecutive_timeouts >= max_fails:
            logger.info(
                "%d consecutive request timeouts, reconnecting",
                self._consecutive_timeouts,
            )
            self._consecutive_timeouts = 0
            self._transport.drop_connection()
