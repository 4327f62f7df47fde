"""
Idea store adapter for the Idea Board client.

Wraps the store's narrow HTTP+JSON contract:
- GET  /ideas             list all ideas (newest first, store order)
- POST /post/idea         submit a new idea
- POST /ideas/{id}/like   increment an idea's like counter
- POST /post/create       register interest in building an idea

Every failure is raised as an IdeaStoreError subclass so callers can keep the
classification for logging while showing a single message to the user.
Create and like are not idempotent on the store side, so nothing here retries.
"""

from __future__ import annotations

import logging
import os
import time
from typing import List, Optional

import pydantic
import requests
from dotenv import load_dotenv

from monitoring import monitor
from ..models import CreateRequest, Idea, IdeaSubmission

load_dotenv()

logger = logging.getLogger(__name__)

# User-facing messages
CONFIG_MISSING_MESSAGE = (
    "API URLが設定されていません。.envファイルでIDEA_BOARD_API_URLを設定してください。"
)
TRANSPORT_ERROR_MESSAGE = "サーバーに接続できませんでした。ネットワーク接続を確認してください。"
NON_JSON_MESSAGE = (
    "APIからJSONではないレスポンスが返されました。"
    "サーバーが正常に動作していることを確認してください。"
)
INVALID_PAYLOAD_MESSAGE = "APIのレスポンス形式が正しくありません。"


class IdeaStoreError(Exception):
    """Base exception for idea store errors."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class ConfigurationError(IdeaStoreError):
    """Raised when the store base URL is not configured."""
    pass


class TransportError(IdeaStoreError):
    """Raised when the request could not complete (DNS, refused, timeout)."""
    pass


class HttpError(IdeaStoreError):
    """Raised when the store answers with a non-2xx status."""
    def __init__(self, message: str, status_code: int = None, response_text: str = None):
        super().__init__(message)
        self.status_code = status_code
        self.response_text = response_text


class FormatError(IdeaStoreError):
    """Raised when a success response is not the JSON we expect."""
    def __init__(self, message: str, response_text: str = None):
        super().__init__(message)
        self.response_text = response_text


def _is_success(status_code: int) -> bool:
    return 200 <= status_code < 300


class IdeaStoreClient:
    """
    Client for the remote idea store.

    Calls are blocking (requests); the views run them off the event loop.

    Usage:
        client = IdeaStoreClient()  # Uses IDEA_BOARD_API_URL env var
        ideas = client.list_ideas()
        client.increment_like(ideas[0].idea_id)
    """

    JSON_HEADERS = {"Content-Type": "application/json"}

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        """
        Initialize the store client.

        Args:
            base_url: Store base URL (or set IDEA_BOARD_API_URL env var)
            timeout: Request timeout in seconds (or set IDEA_BOARD_TIMEOUT).
                None means requests wait indefinitely.
        """
        base_url = base_url or os.environ.get("IDEA_BOARD_API_URL") or ""
        self.base_url = base_url.rstrip("/") or None

        if timeout is None:
            timeout = self._timeout_from_env()
        self.timeout = timeout

        if not self.base_url:
            logger.warning("No IDEA_BOARD_API_URL provided - store calls will fail")

    @property
    def is_configured(self) -> bool:
        """Check if the client has a base URL."""
        return self.base_url is not None

    @staticmethod
    def _timeout_from_env() -> Optional[float]:
        timeout_env = os.environ.get("IDEA_BOARD_TIMEOUT")
        if not timeout_env:
            return None
        try:
            return float(timeout_env)
        except ValueError:
            logger.warning(f"Ignoring invalid IDEA_BOARD_TIMEOUT={timeout_env!r}, requests will not time out")
            return None

    def _url(self, operation: str, path: str) -> str:
        if not self.is_configured:
            error = ConfigurationError(CONFIG_MISSING_MESSAGE)
            self._record(operation, time.time(), error)
            raise error
        return f"{self.base_url}{path}"

    def _record(self, operation: str, started: float, error: Optional[IdeaStoreError] = None) -> None:
        latency_ms = (time.time() - started) * 1000
        monitor.metrics.record_store_call(operation, latency_ms, error.kind if error else None)

    def _post(self, operation: str, path: str, payload: Optional[dict] = None) -> None:
        """POST to the store; raise on anything but a 2xx answer."""
        url = self._url(operation, path)
        started = time.time()
        try:
            response = requests.post(
                url,
                headers=self.JSON_HEADERS,
                json=payload,
                timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            error = TransportError(TRANSPORT_ERROR_MESSAGE)
            logger.error(f"{operation} request failed ({error.kind}): {e}")
            self._record(operation, started, error)
            raise error from e

        if not _is_success(response.status_code):
            error = HttpError(
                f"Idea store error: {response.status_code}",
                status_code=response.status_code,
                response_text=response.text
            )
            logger.error(f"{operation} error ({error.kind} {response.status_code}): {response.text}")
            self._record(operation, started, error)
            raise error

        self._record(operation, started)

    def list_ideas(self) -> List[Idea]:
        """
        Fetch every idea in store order.

        Returns:
            List of Idea objects, exactly as ordered by the store

        Raises:
            ConfigurationError: If no base URL is configured
            TransportError: If the request could not complete
            HttpError: If the store answers with a non-2xx status
            FormatError: If the answer is not a JSON array of ideas
        """
        operation = "list_ideas"
        url = self._url(operation, "/ideas")
        logger.info(f"Fetching from: {url}")

        started = time.time()
        try:
            response = requests.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            error = TransportError(TRANSPORT_ERROR_MESSAGE)
            logger.error(f"Fetch failed ({error.kind}): {e}")
            self._record(operation, started, error)
            raise error from e

        if not _is_success(response.status_code):
            error_text = response.text
            error = HttpError(
                f"データの取得に失敗しました。ステータス: {response.status_code}, 詳細: {error_text}",
                status_code=response.status_code,
                response_text=error_text
            )
            logger.error(f"Response error ({error.kind} {response.status_code}): {error_text}")
            self._record(operation, started, error)
            raise error

        content_type = response.headers.get("content-type") or ""
        if "application/json" not in content_type:
            error = FormatError(NON_JSON_MESSAGE, response_text=response.text)
            logger.error(f"Non-JSON response ({content_type or 'no content-type'}): {response.text}")
            self._record(operation, started, error)
            raise error

        try:
            data = response.json()
            if not isinstance(data, list):
                raise ValueError(f"expected a JSON array, got {type(data).__name__}")
            ideas = [Idea.model_validate(item) for item in data]
        except (ValueError, pydantic.ValidationError) as e:
            error = FormatError(INVALID_PAYLOAD_MESSAGE, response_text=response.text)
            logger.error(f"Unparseable ideas payload ({error.kind}): {e}")
            self._record(operation, started, error)
            raise error from e

        self._record(operation, started)
        logger.info(f"Fetched {len(ideas)} ideas")
        return ideas

    def create_idea(self, submission: IdeaSubmission) -> None:
        """
        Submit a new idea.

        Raises:
            ConfigurationError, TransportError, HttpError
        """
        self._post("create_idea", "/post/idea", submission.to_payload())
        logger.info(f"Posted idea for {submission.username!r}")

    def increment_like(self, idea_id: int) -> None:
        """
        Add one like to an idea. Not idempotent: every call counts.

        Raises:
            ConfigurationError, TransportError, HttpError
        """
        self._post("increment_like", f"/ideas/{idea_id}/like")
        logger.debug(f"Like sent for idea {idea_id}")

    def request_create(self, idea_id: int, username: str) -> None:
        """
        Register that `username` wants to build idea `idea_id`.

        Raises:
            ConfigurationError, TransportError, HttpError
        """
        request = CreateRequest(idea_id=idea_id, username=username)
        self._post("request_create", "/post/create", request.to_payload())
        logger.info("Create request successful")


__all__ = [
    "IdeaStoreClient",
    "IdeaStoreError",
    "ConfigurationError",
    "TransportError",
    "HttpError",
    "FormatError",
    "Idea",
    "IdeaSubmission",
    "CONFIG_MISSING_MESSAGE",
    "TRANSPORT_ERROR_MESSAGE",
    "NON_JSON_MESSAGE",
    "INVALID_PAYLOAD_MESSAGE",
]
