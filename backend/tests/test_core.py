"""
Unit tests for the core module (FeedView, CompositionView, ConfirmationDialog, AppShell).
"""

import asyncio
import threading
import time

import pytest
from unittest.mock import Mock, patch

from adapter.models import Idea, IdeaSubmission
from adapter.store import (
    IdeaStoreClient,
    ConfigurationError,
    TransportError,
    HttpError,
    FormatError,
    CONFIG_MISSING_MESSAGE,
    TRANSPORT_ERROR_MESSAGE,
)
from core import (
    AppShell,
    FeedView,
    FeedState,
    FeedStatus,
    CompositionView,
    ConfirmationDialog,
    ScrollLock,
    avatar_initial,
    format_timestamp,
    CONTENT_MAX_LENGTH,
    DESCRIPTION_MAX_LENGTH,
    USERNAME_MAX_LENGTH,
    USERNAME_REQUIRED_MESSAGE,
    CONTENT_REQUIRED_MESSAGE,
    POST_FAILED_MESSAGE,
)


def create_idea(idea_id: int, likes: int = 0, username: str = None) -> Idea:
    """Helper function to create test ideas."""
    return Idea(
        idea_id=idea_id,
        username=username or f"user{idea_id}",
        explanation_a=f"Idea number {idea_id}",
        timestamp="2024-06-15T12:00:00",
        likes=likes,
    )


def newest_first(n: int):
    """Densely numbered feed, newest first: ids n..1."""
    return [create_idea(i, likes=i) for i in range(n, 0, -1)]


@pytest.fixture
def mock_store():
    """Create a mock store client with a five-idea feed."""
    store = Mock(spec=IdeaStoreClient)
    store.is_configured = True
    store.list_ideas.side_effect = lambda: newest_first(5)
    store.create_idea.return_value = None
    store.increment_like.return_value = None
    store.request_create.return_value = None
    return store


# ============================================================================
# Helpers
# ============================================================================

class TestDisplayHelpers:
    """Test rendering helpers."""

    def test_avatar_initial(self):
        assert avatar_initial("alice") == "a"
        assert avatar_initial("山田") == "山"
        assert avatar_initial("") == ""

    def test_format_timestamp_naive(self):
        assert format_timestamp("2024-06-15T09:05:03") == "2024/6/15 9:05:03"

    def test_format_timestamp_invalid_passthrough(self):
        assert format_timestamp("yesterday") == "yesterday"


# ============================================================================
# FeedView
# ============================================================================

class TestFeedView:
    """Test FeedView fetch cycle and likes."""

    @pytest.mark.asyncio
    async def test_initial_state_idle(self, mock_store):
        feed = FeedView(mock_store)

        assert feed.state.status == FeedStatus.IDLE
        assert feed.ideas == []
        mock_store.list_ideas.assert_not_called()

    @pytest.mark.asyncio
    async def test_mount_fetches(self, mock_store):
        feed = FeedView(mock_store)

        await feed.mount(refresh_signal=0)

        assert [i.idea_id for i in feed.ideas] == [5, 4, 3, 2, 1]
        assert feed.state.loading is False
        assert feed.state.error is None
        assert feed.state.status == FeedStatus.POPULATED
        assert mock_store.list_ideas.call_count == 1

    @pytest.mark.asyncio
    async def test_refresh_enters_loading_synchronously(self, mock_store):
        feed = FeedView(mock_store)
        feed.state.error = "old error"

        task = feed.refresh()
        assert feed.state.loading is True
        assert feed.state.error is None
        assert feed.state.status == FeedStatus.LOADING

        await task
        assert feed.state.loading is False

    @pytest.mark.asyncio
    async def test_same_signal_does_not_refetch(self, mock_store):
        feed = FeedView(mock_store)
        await feed.mount(refresh_signal=3)

        assert feed.observe_refresh_signal(3) is None
        assert mock_store.list_ideas.call_count == 1

    @pytest.mark.asyncio
    async def test_changed_signal_refetches(self, mock_store):
        feed = FeedView(mock_store)
        await feed.mount(refresh_signal=0)

        task = feed.observe_refresh_signal(1)
        assert task is not None
        await task

        assert mock_store.list_ideas.call_count == 2
        assert feed.fetch_count == 2

    @pytest.mark.asyncio
    async def test_failed_fetch_keeps_ideas(self, mock_store):
        feed = FeedView(mock_store)
        await feed.mount()
        before = [i.model_dump() for i in feed.ideas]

        mock_store.list_ideas.side_effect = HttpError(
            "データの取得に失敗しました。ステータス: 503, 詳細: down",
            status_code=503,
            response_text="down"
        )
        await feed.refresh()

        assert [i.model_dump() for i in feed.ideas] == before
        assert "503" in feed.state.error
        assert feed.state.loading is False
        assert feed.state.status == FeedStatus.FAILED

    @pytest.mark.asyncio
    async def test_format_error_not_rendered(self, mock_store):
        mock_store.list_ideas.side_effect = FormatError("non-json")
        feed = FeedView(mock_store)

        await feed.mount()

        assert feed.ideas == []
        assert feed.state.error == "non-json"

    @pytest.mark.asyncio
    async def test_missing_base_url(self):
        """Unset base URL: configuration error shown, loading resolves, feed empty."""
        with patch.dict("os.environ", {}, clear=True):
            feed = FeedView(IdeaStoreClient())

            await feed.mount()

        assert feed.state.error == CONFIG_MISSING_MESSAGE
        assert feed.state.loading is False
        assert feed.ideas == []

    @pytest.mark.asyncio
    async def test_error_cleared_on_next_success(self, mock_store):
        mock_store.list_ideas.side_effect = TransportError("offline")
        feed = FeedView(mock_store)
        await feed.mount()
        assert feed.state.error == "offline"

        mock_store.list_ideas.side_effect = lambda: newest_first(2)
        await feed.refresh()

        assert feed.state.error is None
        assert len(feed.ideas) == 2

    @pytest.mark.asyncio
    async def test_like_increments_position_n_minus_id(self, mock_store):
        feed = FeedView(mock_store)
        await feed.mount()
        n = len(feed.ideas)

        for idea_id in range(1, n + 1):
            before = feed.ideas[n - idea_id].likes
            await feed.like(idea_id)
            assert feed.ideas[n - idea_id].likes == before + 1

        assert mock_store.increment_like.call_count == n

    @pytest.mark.asyncio
    async def test_like_is_local_before_request_completes(self, mock_store):
        feed = FeedView(mock_store)
        await feed.mount()

        task = feed.like(5)
        assert feed.ideas[0].likes == 6

        outcome = await task
        assert outcome.ok is True
        mock_store.increment_like.assert_called_once_with(5)

    @pytest.mark.asyncio
    async def test_like_failure_keeps_local_increment(self, mock_store):
        mock_store.increment_like.side_effect = TransportError("offline")
        feed = FeedView(mock_store)
        await feed.mount()

        outcome = await feed.like(3)

        assert feed.ideas[2].likes == 4
        assert feed.state.error is None
        assert outcome.ok is False
        assert outcome.error_kind == "TransportError"
        assert feed.like_outcomes == [outcome]

    @pytest.mark.asyncio
    async def test_repeated_likes_each_send_request(self, mock_store):
        feed = FeedView(mock_store)
        await feed.mount()

        feed.like(2)
        feed.like(2)
        feed.like(2)
        await feed.wait_idle()

        assert feed.ideas[3].likes == 5
        assert mock_store.increment_like.call_count == 3
        assert len(feed.like_outcomes) == 3

    @pytest.mark.asyncio
    async def test_like_uses_identifier_not_arithmetic(self, mock_store):
        """Sparse ids still hit the right idea."""
        mock_store.list_ideas.side_effect = lambda: [create_idea(10), create_idea(4), create_idea(7)]
        feed = FeedView(mock_store)
        await feed.mount()

        await feed.like(4)

        assert [i.likes for i in feed.ideas] == [0, 1, 0]
        assert feed.position_of(7) == 2

    @pytest.mark.asyncio
    async def test_like_unknown_idea_still_sends(self, mock_store):
        feed = FeedView(mock_store)
        await feed.mount()
        before = [i.likes for i in feed.ideas]

        await feed.like(42)

        assert [i.likes for i in feed.ideas] == before
        mock_store.increment_like.assert_called_once_with(42)

    @pytest.mark.asyncio
    async def test_like_with_injected_state(self, mock_store):
        """Ideas handed in through FeedState are likeable before any fetch."""
        state = FeedState(ideas=[create_idea(3), create_idea(2), create_idea(1)])
        feed = FeedView(mock_store, state=state)

        await feed.like(2)

        assert [i.likes for i in feed.ideas] == [0, 1, 0]
        assert feed.position_of(3) == 0
        mock_store.increment_like.assert_called_once_with(2)

    @pytest.mark.asyncio
    async def test_overlapping_fetches_do_not_crash(self, mock_store):
        """No ordering guarantee between overlapping fetches; either may land last."""
        calls = {"n": 0}

        def slow_then_fast():
            calls["n"] += 1
            if calls["n"] == 1:
                time.sleep(0.05)
                return [create_idea(1)]
            return [create_idea(2), create_idea(1)]

        mock_store.list_ideas.side_effect = slow_then_fast
        feed = FeedView(mock_store)

        first = feed.mount(refresh_signal=0)
        second = feed.observe_refresh_signal(1)
        await asyncio.gather(first, second)

        assert [i.idea_id for i in feed.ideas] in ([1], [2, 1])
        assert feed.state.loading is False
        assert feed.state.error is None

    @pytest.mark.asyncio
    async def test_wait_idle_drains_everything(self, mock_store):
        feed = FeedView(mock_store)
        feed.mount()
        feed.like(1)

        await feed.wait_idle()

        assert feed.is_busy is False
        assert feed.state.loading is False


# ============================================================================
# CompositionView
# ============================================================================

class TestCompositionView:
    """Test the composition form."""

    def test_input_truncation(self, mock_store):
        composer = CompositionView(mock_store)

        composer.set_username("u" * 50)
        composer.set_content("c" * 150)
        composer.set_description("d" * 2500)

        assert len(composer.draft.username) == USERNAME_MAX_LENGTH
        assert len(composer.draft.content) == CONTENT_MAX_LENGTH
        assert len(composer.draft.description) == DESCRIPTION_MAX_LENGTH
        assert composer.content_count == "100/100"
        assert composer.description_count == "2000/2000"

    def test_description_warning_threshold(self, mock_store):
        composer = CompositionView(mock_store)

        composer.set_description("d" * 1800)
        assert composer.description_near_limit is False

        composer.set_description("d" * 1801)
        assert composer.description_near_limit is True

    def test_toggle_description(self, mock_store):
        composer = CompositionView(mock_store)

        assert composer.toggle_label == "詳細を追加"
        assert composer.toggle_description() is True
        assert composer.toggle_label == "詳細を隠す"
        assert composer.toggle_description() is False

    def test_default_username(self, mock_store):
        composer = CompositionView(mock_store)

        assert composer.draft.username == "user"
        assert composer.draft.content == ""

    @pytest.mark.asyncio
    async def test_blank_username_rejected(self, mock_store):
        composer = CompositionView(mock_store)
        composer.set_username("   ")
        composer.set_content("An idea")

        assert await composer.submit() is False

        assert composer.error == USERNAME_REQUIRED_MESSAGE
        mock_store.create_idea.assert_not_called()

    @pytest.mark.asyncio
    async def test_blank_content_rejected(self, mock_store):
        composer = CompositionView(mock_store)
        composer.set_content(" \n ")

        assert await composer.submit() is False

        assert composer.error == CONTENT_REQUIRED_MESSAGE
        mock_store.create_idea.assert_not_called()

    @pytest.mark.asyncio
    async def test_single_error_when_everything_blank(self, mock_store):
        composer = CompositionView(mock_store)
        composer.set_username("")

        await composer.submit()

        assert composer.error == USERNAME_REQUIRED_MESSAGE
        mock_store.create_idea.assert_not_called()

    @pytest.mark.asyncio
    async def test_successful_submit(self, mock_store):
        on_success = Mock()
        composer = CompositionView(mock_store, on_success=on_success)
        composer.set_username("hanako")
        composer.set_content("Solar umbrella")
        composer.set_description("Charges your phone")

        assert await composer.submit() is True

        mock_store.create_idea.assert_called_once_with(IdeaSubmission(
            username="hanako",
            explanation_a="Solar umbrella",
            description="Charges your phone",
        ))
        assert composer.draft.content == ""
        assert composer.draft.description == ""
        assert composer.draft.username == "hanako"
        assert composer.error is None
        on_success.assert_called_once()

    @pytest.mark.asyncio
    async def test_server_error_keeps_draft(self, mock_store):
        mock_store.create_idea.side_effect = HttpError("Idea store error: 500", status_code=500)
        on_success = Mock()
        composer = CompositionView(mock_store, on_success=on_success)
        composer.set_content("Solar umbrella")
        composer.set_description("Charges your phone")

        assert await composer.submit() is False

        assert composer.error == POST_FAILED_MESSAGE
        assert composer.draft.content == "Solar umbrella"
        assert composer.draft.description == "Charges your phone"
        on_success.assert_not_called()

    @pytest.mark.asyncio
    async def test_transport_error_message(self, mock_store):
        mock_store.create_idea.side_effect = TransportError(TRANSPORT_ERROR_MESSAGE)
        composer = CompositionView(mock_store)
        composer.set_content("Solar umbrella")

        await composer.submit()

        assert composer.error == TRANSPORT_ERROR_MESSAGE
        assert composer.draft.content == "Solar umbrella"

    @pytest.mark.asyncio
    async def test_retry_after_failure_clears_error(self, mock_store):
        mock_store.create_idea.side_effect = [HttpError("nope", status_code=500), None]
        composer = CompositionView(mock_store)
        composer.set_content("Solar umbrella")

        await composer.submit()
        assert composer.error == POST_FAILED_MESSAGE

        assert await composer.submit() is True
        assert composer.error is None
        assert mock_store.create_idea.call_count == 2


# ============================================================================
# ConfirmationDialog
# ============================================================================

class TestConfirmationDialog:
    """Test the confirm-before-create modal."""

    @pytest.fixture
    def lock(self):
        return ScrollLock()

    def test_open_suspends_scroll(self, mock_store, lock):
        dialog = ConfirmationDialog(mock_store, lock=lock)

        dialog.open(3)

        assert dialog.is_open is True
        assert dialog.selected_idea_id == 3
        assert lock.suspended is True

    def test_dismiss_restores_scroll(self, mock_store, lock):
        on_close = Mock()
        dialog = ConfirmationDialog(mock_store, lock=lock, on_close=on_close)
        dialog.open(3)

        dialog.dismiss()

        assert dialog.is_open is False
        assert lock.suspended is False
        on_close.assert_called_once()

    def test_escape_dismisses(self, mock_store, lock):
        dialog = ConfirmationDialog(mock_store, lock=lock)
        dialog.open(3)

        assert dialog.handle_key("Enter") is False
        assert dialog.is_open is True

        assert dialog.handle_key("Escape") is True
        assert dialog.is_open is False
        assert lock.suspended is False

    def test_escape_ignored_when_closed(self, mock_store, lock):
        on_close = Mock()
        dialog = ConfirmationDialog(mock_store, lock=lock, on_close=on_close)

        assert dialog.handle_key("Escape") is False
        on_close.assert_not_called()

    def test_backdrop_click(self, mock_store, lock):
        dialog = ConfirmationDialog(mock_store, lock=lock)
        dialog.open(3)

        assert dialog.handle_backdrop_click(on_overlay=False) is False
        assert dialog.is_open is True

        assert dialog.handle_backdrop_click(on_overlay=True) is True
        assert dialog.is_open is False

    @pytest.mark.asyncio
    async def test_confirm_sends_create_and_closes(self, mock_store, lock):
        on_confirm = Mock()
        dialog = ConfirmationDialog(mock_store, lock=lock, on_confirm=on_confirm)
        dialog.open(3)

        outcome = await dialog.confirm()

        mock_store.request_create.assert_called_once_with(3, "user")
        assert outcome.ok is True
        on_confirm.assert_called_once()
        assert dialog.is_open is False
        assert lock.suspended is False

    @pytest.mark.asyncio
    async def test_confirm_failure_is_silent(self, mock_store, lock):
        mock_store.request_create.side_effect = HttpError("Idea store error: 500", status_code=500)
        on_confirm = Mock()
        dialog = ConfirmationDialog(mock_store, lock=lock, on_confirm=on_confirm)
        dialog.open(3)

        outcome = await dialog.confirm()

        assert outcome.ok is False
        assert outcome.error_kind == "HttpError"
        assert dialog.outcomes == [outcome]
        on_confirm.assert_called_once()
        assert dialog.is_open is False

    @pytest.mark.asyncio
    async def test_confirm_without_selection(self, mock_store, lock):
        on_confirm = Mock()
        dialog = ConfirmationDialog(mock_store, lock=lock, on_confirm=on_confirm)
        dialog.open(None)

        assert await dialog.confirm() is None

        mock_store.request_create.assert_not_called()
        on_confirm.assert_not_called()
        assert dialog.is_open is False

    @pytest.mark.asyncio
    async def test_confirm_after_dismiss_sends_nothing(self, mock_store, lock):
        on_close = Mock()
        on_confirm = Mock()
        dialog = ConfirmationDialog(mock_store, lock=lock, on_close=on_close, on_confirm=on_confirm)
        dialog.open(3)
        dialog.dismiss()

        assert await dialog.confirm() is None

        mock_store.request_create.assert_not_called()
        on_confirm.assert_not_called()
        on_close.assert_called_once()
        assert dialog.outcomes == []

    @pytest.mark.asyncio
    async def test_scroll_released_on_unexpected_error(self, mock_store, lock):
        mock_store.request_create.side_effect = RuntimeError("bug")
        dialog = ConfirmationDialog(mock_store, lock=lock)
        dialog.open(3)

        with pytest.raises(RuntimeError):
            await dialog.confirm()

        assert dialog.is_open is False
        assert lock.suspended is False

    def test_unmount_releases_scroll(self, mock_store, lock):
        dialog = ConfirmationDialog(mock_store, lock=lock)
        dialog.open(3)

        dialog.unmount()

        assert lock.suspended is False


# ============================================================================
# AppShell
# ============================================================================

class TestAppShell:
    """Test refresh-signal coupling between composition and feed."""

    @pytest.mark.asyncio
    async def test_mount_fetches_once(self, mock_store):
        shell = AppShell(mock_store, lock=ScrollLock())

        await shell.mount()

        assert shell.refresh_signal == 0
        assert mock_store.list_ideas.call_count == 1

    @pytest.mark.asyncio
    async def test_successful_post_triggers_one_fetch(self, mock_store):
        shell = AppShell(mock_store, lock=ScrollLock())
        await shell.mount()

        shell.composer.set_content("Solar umbrella")
        assert await shell.composer.submit() is True
        await shell.wait_idle()

        assert shell.refresh_signal == 1
        assert mock_store.list_ideas.call_count == 2

    @pytest.mark.asyncio
    async def test_failed_post_does_not_refetch(self, mock_store):
        mock_store.create_idea.side_effect = HttpError("nope", status_code=500)
        shell = AppShell(mock_store, lock=ScrollLock())
        await shell.mount()

        shell.composer.set_content("Solar umbrella")
        await shell.composer.submit()
        await shell.wait_idle()

        assert shell.refresh_signal == 0
        assert mock_store.list_ideas.call_count == 1

    @pytest.mark.asyncio
    async def test_invalid_draft_does_not_refetch(self, mock_store):
        shell = AppShell(mock_store, lock=ScrollLock())
        await shell.mount()

        await shell.composer.submit()
        await shell.wait_idle()

        assert mock_store.list_ideas.call_count == 1
        mock_store.create_idea.assert_not_called()

    @pytest.mark.asyncio
    async def test_manual_refresh(self, mock_store):
        shell = AppShell(mock_store, lock=ScrollLock())
        await shell.mount()

        await shell.request_refresh()

        assert shell.refresh_signal == 1
        assert mock_store.list_ideas.call_count == 2

    @pytest.mark.asyncio
    async def test_dialog_independent_of_refresh(self, mock_store):
        shell = AppShell(mock_store, lock=ScrollLock())
        await shell.mount()

        shell.open_confirmation(2)
        await shell.dialog.confirm()
        await shell.wait_idle()

        mock_store.request_create.assert_called_once_with(2, "user")
        assert shell.refresh_signal == 0
        assert mock_store.list_ideas.call_count == 1

    @pytest.mark.asyncio
    async def test_unmount_releases_scroll(self, mock_store):
        lock = ScrollLock()
        shell = AppShell(mock_store, lock=lock)
        await shell.mount()
        shell.open_confirmation(2)

        await shell.unmount()

        assert lock.suspended is False

    @pytest.mark.asyncio
    async def test_unmount_does_not_wait_forever_on_hung_fetch(self, mock_store):
        release = threading.Event()
        mock_store.list_ideas.side_effect = lambda: release.wait(5) and []
        shell = AppShell(mock_store, lock=ScrollLock())
        shell.mount()

        try:
            started = time.monotonic()
            await shell.unmount(grace_period=0.1)
            elapsed = time.monotonic() - started
        finally:
            release.set()
        await asyncio.sleep(0)

        assert elapsed < 2
        assert shell.feed.is_busy is False
        assert shell.feed.state.loading is False
