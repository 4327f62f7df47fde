"""
Core view-models for the Idea Board client.
- FeedView: the idea feed (fetch on mount and on refresh signal, likes)
- CompositionView: the new-idea form
- ConfirmationDialog: confirm-before-create modal
- AppShell: couples a successful post to a feed re-fetch

Concurrency:
- Everything runs on one asyncio event loop
- Blocking store calls run in worker threads via asyncio.to_thread;
  state is only mutated back on the loop
- Fetches are never cancelled while mounted: the last one to resolve wins
- Writes are fire-and-forget tasks that record a WriteOutcome
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from adapter.models import Idea, IdeaSubmission
from adapter.store import HttpError, IdeaStoreClient, IdeaStoreError
from monitoring import monitor, EventType

logger = logging.getLogger(__name__)


# Placeholder identity for the single implicit user
DEFAULT_USERNAME = "user"

# Input limits (hard truncation at the input layer)
USERNAME_MAX_LENGTH = 30
CONTENT_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 2000
DESCRIPTION_WARNING_LENGTH = 1800

# How long unmount waits for in-flight store calls
SHUTDOWN_GRACE_SECONDS = 5.0

# Display strings
FEED_TITLE = "みんなのアイデア"
LOADING_MESSAGE = "読み込み中..."
SHOW_DESCRIPTION_LABEL = "詳細を追加"
HIDE_DESCRIPTION_LABEL = "詳細を隠す"
DIALOG_TITLE = "作成確認"
DIALOG_PROMPT = "このアイデアを作成しますか？"

# Composition errors
USERNAME_REQUIRED_MESSAGE = "ユーザー名を入力してください。"
CONTENT_REQUIRED_MESSAGE = "アイデアを入力してください。"
POST_FAILED_MESSAGE = "ツイートの投稿に失敗しました。"


class ValidationError(Exception):
    """Raised when a draft is not ready to submit. Never reaches the network."""
    pass


# ============================================================================
# Shared helpers
# ============================================================================

class WriteOutcome(BaseModel):
    """Result of a fire-and-forget write (like, confirmation create)."""
    operation: str = Field(description="Store operation name")
    idea_id: Optional[int] = Field(default=None)
    ok: bool
    error_kind: Optional[str] = Field(default=None, description="Error class name on failure")
    error: Optional[str] = Field(default=None)
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


def _spawn(tasks: Set[asyncio.Task], coro: Awaitable) -> asyncio.Task:
    """Schedule a coroutine on the running loop and keep a reference until it finishes."""
    task = asyncio.create_task(coro)
    tasks.add(task)
    task.add_done_callback(tasks.discard)
    return task


async def _send_write(operation: str, idea_id: int, call: Callable[[], None]) -> WriteOutcome:
    """Run a blocking store write and turn any store error into a logged outcome."""
    try:
        await asyncio.to_thread(call)
    except IdeaStoreError as e:
        logger.error(f"{operation} failed for idea {idea_id} ({e.kind}): {e}")
        return WriteOutcome(
            operation=operation,
            idea_id=idea_id,
            ok=False,
            error_kind=e.kind,
            error=str(e)
        )
    return WriteOutcome(operation=operation, idea_id=idea_id, ok=True)


def avatar_initial(username: str) -> str:
    """First character of a username, used as the avatar."""
    return username[:1]


def format_timestamp(value: str) -> str:
    """
    Render a store timestamp the way the ja-JP locale does (2024/6/15 9:05:03).

    Aware timestamps are shown in local time. Unparsable values are returned
    unchanged.
    """
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return value
    if dt.tzinfo is not None:
        dt = dt.astimezone()
    return f"{dt.year}/{dt.month}/{dt.day} {dt.hour}:{dt.minute:02d}:{dt.second:02d}"


# ============================================================================
# Feed
# ============================================================================

class FeedStatus(str, Enum):
    """Where the feed is in its fetch cycle."""
    IDLE = "idle"
    LOADING = "loading"
    POPULATED = "populated"
    FAILED = "failed"


class FeedState(BaseModel):
    """State owned by FeedView."""
    ideas: List[Idea] = Field(default_factory=list, description="Ideas in store order")
    loading: bool = Field(default=False)
    error: Optional[str] = Field(default=None)
    status: FeedStatus = Field(default=FeedStatus.IDLE)


class FeedView:
    """
    The idea feed.

    Fetches the full list on mount and whenever the refresh signal it observes
    changes. A failed fetch keeps the ideas already on screen.

    Likes bump the local counter immediately and then send the request in the
    background. There is no rollback: a failed like keeps its local +1.

    Usage:
        feed = FeedView(client)
        await feed.mount(refresh_signal=0)
        feed.like(3)
        await feed.wait_idle()
    """

    def __init__(self, client: IdeaStoreClient, state: Optional[FeedState] = None):
        self.client = client
        self.state = state or FeedState()
        self.fetch_count = 0
        self.like_outcomes: List[WriteOutcome] = []

        # ideaId -> position in state.ideas, rebuilt whenever the list is replaced
        self._positions: Dict[int, int] = {}
        self._rebuild_positions()
        self._observed_signal: Optional[int] = None
        self._mounted = False

        self._fetches: Set[asyncio.Task] = set()
        self._writes: Set[asyncio.Task] = set()

    @property
    def ideas(self) -> List[Idea]:
        return self.state.ideas

    @property
    def is_busy(self) -> bool:
        return bool(self._fetches or self._writes)

    def mount(self, refresh_signal: int = 0) -> asyncio.Task:
        """First render: always fetches."""
        self._mounted = True
        self._observed_signal = refresh_signal
        return self.refresh()

    def observe_refresh_signal(self, refresh_signal: int) -> Optional[asyncio.Task]:
        """
        React to the host's refresh signal.

        Returns:
            The fetch task if the value changed since it was last observed,
            None otherwise
        """
        if self._mounted and refresh_signal == self._observed_signal:
            return None
        return self.mount(refresh_signal)

    def refresh(self) -> asyncio.Task:
        """Enter Loading and start a fetch. Must be called on the running loop."""
        self.state.error = None
        self.state.loading = True
        self.state.status = FeedStatus.LOADING
        self.fetch_count += 1
        return _spawn(self._fetches, self._fetch())

    async def _fetch(self) -> None:
        try:
            ideas = await asyncio.to_thread(self.client.list_ideas)
        except IdeaStoreError as e:
            self.state.error = str(e)
            self.state.status = FeedStatus.FAILED
            logger.error(f"Fetch error ({e.kind}): {e}")
            monitor.activity.add_event(
                EventType.FEED_FETCH_FAILED,
                error_kind=e.kind,
                error=str(e)
            )
        else:
            self.state.ideas = list(ideas)
            self._rebuild_positions()
            self.state.status = FeedStatus.POPULATED
            monitor.activity.add_event(EventType.FEED_FETCHED, ideas=len(ideas))
        finally:
            self.state.loading = False

    def _rebuild_positions(self) -> None:
        self._positions = {idea.idea_id: i for i, idea in enumerate(self.state.ideas)}

    def position_of(self, idea_id: int) -> Optional[int]:
        """Position of an idea in the current list, or None."""
        return self._positions.get(idea_id)

    def like(self, idea_id: int) -> asyncio.Task:
        """
        Like an idea: +1 locally now, request in the background.

        Every call sends its own request; repeated clicks are not coalesced.

        Returns:
            Task resolving to the WriteOutcome of the request
        """
        position = self.position_of(idea_id)
        if position is None:
            logger.warning(f"Idea {idea_id} not in current feed, sending like without local update")
        else:
            self.state.ideas[position].likes += 1

        return _spawn(self._writes, self._send_like(idea_id))

    async def _send_like(self, idea_id: int) -> WriteOutcome:
        outcome = await _send_write(
            "increment_like",
            idea_id,
            lambda: self.client.increment_like(idea_id)
        )
        self.like_outcomes.append(outcome)
        monitor.activity.add_event(
            EventType.LIKE_SENT if outcome.ok else EventType.LIKE_FAILED,
            idea_id=idea_id,
            error_kind=outcome.error_kind
        )
        return outcome

    async def wait_idle(self) -> None:
        """Wait for every in-flight fetch and write, including ones started meanwhile."""
        while self._fetches or self._writes:
            await asyncio.gather(*self._fetches, *self._writes)


# ============================================================================
# Composition
# ============================================================================

class Draft(BaseModel):
    """The unsaved new-idea input."""
    username: str = Field(default=DEFAULT_USERNAME)
    content: str = Field(default="", description="Main idea text")
    description: str = Field(default="")
    description_visible: bool = Field(default=False)


class CompositionView:
    """
    The new-idea form.

    Setters truncate to the input limits. Submission validates first; a
    rejected draft never reaches the network. On success content and
    description are cleared (username is kept) and the host is notified.
    On failure every field stays as typed so the user can retry.
    """

    def __init__(
        self,
        client: IdeaStoreClient,
        on_success: Optional[Callable[[], None]] = None,
        draft: Optional[Draft] = None
    ):
        self.client = client
        self.on_success = on_success
        self.draft = draft or Draft()
        self.error: Optional[str] = None

    def set_username(self, value: str) -> None:
        self.draft.username = value[:USERNAME_MAX_LENGTH]

    def set_content(self, value: str) -> None:
        self.draft.content = value[:CONTENT_MAX_LENGTH]

    def set_description(self, value: str) -> None:
        self.draft.description = value[:DESCRIPTION_MAX_LENGTH]

    def toggle_description(self) -> bool:
        self.draft.description_visible = not self.draft.description_visible
        return self.draft.description_visible

    @property
    def toggle_label(self) -> str:
        return HIDE_DESCRIPTION_LABEL if self.draft.description_visible else SHOW_DESCRIPTION_LABEL

    @property
    def content_count(self) -> str:
        return f"{len(self.draft.content)}/{CONTENT_MAX_LENGTH}"

    @property
    def description_count(self) -> str:
        return f"{len(self.draft.description)}/{DESCRIPTION_MAX_LENGTH}"

    @property
    def description_near_limit(self) -> bool:
        return len(self.draft.description) > DESCRIPTION_WARNING_LENGTH

    def validate(self) -> IdeaSubmission:
        """
        Check the draft and build the store payload.

        Raises:
            ValidationError: With the single message to show
        """
        if not self.draft.username.strip():
            raise ValidationError(USERNAME_REQUIRED_MESSAGE)
        if not self.draft.content.strip():
            raise ValidationError(CONTENT_REQUIRED_MESSAGE)

        return IdeaSubmission(
            username=self.draft.username,
            explanation_a=self.draft.content,
            description=self.draft.description,
        )

    async def submit(self) -> bool:
        """
        Validate and post the draft.

        Returns:
            True if the store accepted the idea
        """
        self.error = None

        try:
            submission = self.validate()
        except ValidationError as e:
            self.error = str(e)
            logger.debug(f"Draft rejected: {e}")
            monitor.activity.add_event(EventType.VALIDATION_FAILED, reason=str(e))
            return False

        try:
            await asyncio.to_thread(self.client.create_idea, submission)
        except IdeaStoreError as e:
            self.error = POST_FAILED_MESSAGE if isinstance(e, HttpError) else str(e)
            logger.warning(f"Post failed ({e.kind}): {e}")
            monitor.activity.add_event(EventType.POST_FAILED, error_kind=e.kind, error=str(e))
            return False

        self.draft.content = ""
        self.draft.description = ""
        self.error = None
        monitor.activity.add_event(EventType.IDEA_POSTED, username=submission.username)

        if self.on_success:
            self.on_success()
        return True


# ============================================================================
# Confirmation dialog
# ============================================================================

class ScrollLock:
    """
    Process-wide "background scroll suspended" flag.

    A plain flag, not a counter: one release always re-enables scrolling.
    """

    def __init__(self):
        self.suspended = False

    def suspend(self) -> None:
        self.suspended = True

    def restore(self) -> None:
        self.suspended = False


# Global lock shared by every modal
scroll_lock = ScrollLock()


class ConfirmationDialog:
    """
    Confirm-before-create modal for a selected idea.

    Escape, backdrop click, the close button and cancel all dismiss.
    Confirm sends the create request, fires on_confirm, then closes no matter
    what. A failed create is logged and recorded in `outcomes`, never shown.
    """

    title = DIALOG_TITLE
    prompt = DIALOG_PROMPT

    def __init__(
        self,
        client: IdeaStoreClient,
        lock: Optional[ScrollLock] = None,
        on_close: Optional[Callable[[], None]] = None,
        on_confirm: Optional[Callable[[], None]] = None,
        username: str = DEFAULT_USERNAME
    ):
        self.client = client
        self.lock = lock or scroll_lock
        self.on_close = on_close
        self.on_confirm = on_confirm
        self.username = username

        self.is_open = False
        self.selected_idea_id: Optional[int] = None
        self.outcomes: List[WriteOutcome] = []

    def open(self, idea_id: Optional[int]) -> None:
        self.selected_idea_id = idea_id
        self._set_open(True)

    def _set_open(self, is_open: bool) -> None:
        self.is_open = is_open
        if is_open:
            self.lock.suspend()
        else:
            self.lock.restore()

    def dismiss(self) -> None:
        """Close the dialog (shared by escape, backdrop, close and cancel)."""
        self._set_open(False)
        if self.on_close:
            self.on_close()

    def handle_key(self, key: str) -> bool:
        """Returns True if the key dismissed the dialog."""
        if key == "Escape" and self.is_open:
            self.dismiss()
            return True
        return False

    def handle_backdrop_click(self, on_overlay: bool) -> bool:
        """Only clicks on the overlay itself dismiss, not clicks inside the content."""
        if on_overlay and self.is_open:
            self.dismiss()
            return True
        return False

    async def confirm(self) -> Optional[WriteOutcome]:
        """
        Send the create request for the selected idea, then close.

        Does nothing once the dialog has been closed.

        Returns:
            The write outcome, or None if closed or nothing was selected
        """
        if not self.is_open:
            logger.debug("Confirm ignored, dialog is closed")
            return None

        outcome = None
        try:
            if self.selected_idea_id is not None:
                idea_id = self.selected_idea_id
                outcome = await _send_write(
                    "request_create",
                    idea_id,
                    lambda: self.client.request_create(idea_id, self.username)
                )
                self.outcomes.append(outcome)
                monitor.activity.add_event(
                    EventType.CREATE_CONFIRMED if outcome.ok else EventType.CREATE_FAILED,
                    idea_id=idea_id,
                    error_kind=outcome.error_kind
                )
                if self.on_confirm:
                    self.on_confirm()
        finally:
            self.dismiss()
        return outcome

    def unmount(self) -> None:
        self.lock.restore()


# ============================================================================
# App shell
# ============================================================================

class AppShell:
    """
    Top-level page: feed and composition side by side, plus the dialog.

    Owns the refresh signal. A successful post bumps it and the feed re-fetches.

    Usage:
        shell = AppShell(IdeaStoreClient())
        await shell.mount()
        shell.composer.set_content("Solar powered umbrella")
        await shell.composer.submit()   # bumps refresh_signal, feed re-fetches
        await shell.wait_idle()
    """

    def __init__(self, client: IdeaStoreClient, lock: Optional[ScrollLock] = None):
        self.client = client
        self.refresh_signal = 0

        self.feed = FeedView(client)
        self.composer = CompositionView(client, on_success=self.handle_post_success)
        self.dialog = ConfirmationDialog(client, lock=lock)

    def mount(self) -> asyncio.Task:
        return self.feed.mount(self.refresh_signal)

    def handle_post_success(self) -> None:
        self._bump_refresh_signal("post")

    def request_refresh(self) -> Optional[asyncio.Task]:
        """Manual reload."""
        return self._bump_refresh_signal("manual")

    def _bump_refresh_signal(self, reason: str) -> Optional[asyncio.Task]:
        self.refresh_signal += 1
        logger.debug(f"Refresh signal -> {self.refresh_signal} ({reason})")
        monitor.activity.add_event(
            EventType.REFRESH_SIGNALLED,
            signal=self.refresh_signal,
            reason=reason
        )
        return self.feed.observe_refresh_signal(self.refresh_signal)

    def open_confirmation(self, idea_id: Optional[int]) -> None:
        self.dialog.open(idea_id)

    async def wait_idle(self) -> None:
        await self.feed.wait_idle()

    async def unmount(self, grace_period: float = SHUTDOWN_GRACE_SECONDS) -> None:
        """Release the scroll lock and give in-flight work `grace_period` seconds to finish."""
        self.dialog.unmount()
        try:
            await asyncio.wait_for(self.feed.wait_idle(), timeout=grace_period)
        except asyncio.TimeoutError:
            logger.warning(f"Store calls still pending after {grace_period}s, cancelling them")


__all__ = [
    "AppShell",
    "FeedView",
    "FeedState",
    "FeedStatus",
    "CompositionView",
    "Draft",
    "ConfirmationDialog",
    "ScrollLock",
    "scroll_lock",
    "ValidationError",
    "WriteOutcome",
    "avatar_initial",
    "format_timestamp",
    "DEFAULT_USERNAME",
    "USERNAME_MAX_LENGTH",
    "CONTENT_MAX_LENGTH",
    "DESCRIPTION_MAX_LENGTH",
    "DESCRIPTION_WARNING_LENGTH",
    "SHUTDOWN_GRACE_SECONDS",
    "FEED_TITLE",
    "LOADING_MESSAGE",
    "DIALOG_TITLE",
    "DIALOG_PROMPT",
    "USERNAME_REQUIRED_MESSAGE",
    "CONTENT_REQUIRED_MESSAGE",
    "POST_FAILED_MESSAGE",
]
