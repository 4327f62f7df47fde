"""
FastAPI routes for the Idea Board page.

The browser page renders whatever these routes return; all state lives in the
single AppShell injected by the main app.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Depends
from pydantic import BaseModel, Field

from adapter.models import Idea
from core import (
    AppShell,
    FeedStatus,
    WriteOutcome,
    avatar_initial,
    format_timestamp,
    FEED_TITLE,
    LOADING_MESSAGE,
)
from monitoring import monitor, EventType

logger = logging.getLogger(__name__)

# Router for API endpoints
router = APIRouter(prefix="/api/v1", tags=["Idea Board"])


# ============================================================================
# Request/Response Models
# ============================================================================

class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: datetime
    store_configured: bool
    refresh_signal: int


class IdeaCard(Idea):
    """An idea plus the bits the page needs to render it."""
    avatar: str = Field(description="First character of the username")
    display_timestamp: str = Field(alias="displayTimestamp")

    @classmethod
    def from_idea(cls, idea: Idea) -> "IdeaCard":
        return cls(
            **idea.model_dump(),
            avatar=avatar_initial(idea.username),
            display_timestamp=format_timestamp(idea.timestamp),
        )


class FeedResponse(BaseModel):
    """Feed state."""
    title: str = FEED_TITLE
    status: FeedStatus
    loading: bool
    loading_message: Optional[str] = None
    error: Optional[str] = None
    ideas: List[IdeaCard]
    refresh_signal: int

    @classmethod
    def from_shell(cls, shell: AppShell) -> "FeedResponse":
        state = shell.feed.state
        return cls(
            status=state.status,
            loading=state.loading,
            loading_message=LOADING_MESSAGE if state.loading else None,
            error=state.error,
            ideas=[IdeaCard.from_idea(idea) for idea in state.ideas],
            refresh_signal=shell.refresh_signal,
        )


class UpdateDraftRequest(BaseModel):
    """Keystroke-level draft update; omitted fields are left alone."""
    username: Optional[str] = None
    content: Optional[str] = None
    description: Optional[str] = None


class DraftResponse(BaseModel):
    """Composition form state."""
    username: str
    content: str
    description: str
    description_visible: bool
    toggle_label: str
    content_count: str
    description_count: str
    description_near_limit: bool
    error: Optional[str]
    submitted: Optional[bool] = Field(default=None, description="Set only by /compose/submit")

    @classmethod
    def from_shell(cls, shell: AppShell, submitted: Optional[bool] = None) -> "DraftResponse":
        composer = shell.composer
        return cls(
            username=composer.draft.username,
            content=composer.draft.content,
            description=composer.draft.description,
            description_visible=composer.draft.description_visible,
            toggle_label=composer.toggle_label,
            content_count=composer.content_count,
            description_count=composer.description_count,
            description_near_limit=composer.description_near_limit,
            error=composer.error,
            submitted=submitted,
        )


class OpenDialogRequest(BaseModel):
    idea_id: Optional[int] = Field(default=None, alias="ideaId")


class KeyRequest(BaseModel):
    key: str


class BackdropRequest(BaseModel):
    on_overlay: bool = Field(default=True, description="False when the click landed inside the content")


class DialogResponse(BaseModel):
    """Confirmation dialog state."""
    is_open: bool
    selected_idea_id: Optional[int]
    title: str
    prompt: str
    scroll_suspended: bool
    outcome: Optional[WriteOutcome] = Field(default=None, description="Set only by /dialog/confirm")

    @classmethod
    def from_shell(cls, shell: AppShell, outcome: Optional[WriteOutcome] = None) -> "DialogResponse":
        dialog = shell.dialog
        return cls(
            is_open=dialog.is_open,
            selected_idea_id=dialog.selected_idea_id,
            title=dialog.title,
            prompt=dialog.prompt,
            scroll_suspended=dialog.lock.suspended,
            outcome=outcome,
        )


# ============================================================================
# Dependency Injection - set by the main app
# ============================================================================

_shell: Optional[AppShell] = None


def set_dependencies(shell: Optional[AppShell]):
    """Set the page shell (called from main app)."""
    global _shell
    _shell = shell


def get_shell() -> AppShell:
    if _shell is None:
        raise HTTPException(status_code=503, detail="Service not initialized")
    return _shell


# ============================================================================
# Routes
# ============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check(shell: AppShell = Depends(get_shell)):
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        store_configured=shell.client.is_configured,
        refresh_signal=shell.refresh_signal,
    )


# ----------------------------------------------------------------------------
# Feed
# ----------------------------------------------------------------------------

@router.get("/feed", response_model=FeedResponse)
async def get_feed(shell: AppShell = Depends(get_shell)):
    """Current feed state (may still be loading)."""
    return FeedResponse.from_shell(shell)


@router.post("/feed/refresh", response_model=FeedResponse)
async def refresh_feed(shell: AppShell = Depends(get_shell)):
    """Bump the refresh signal and wait for the resulting fetch."""
    task = shell.request_refresh()
    if task is not None:
        await task
    return FeedResponse.from_shell(shell)


@router.post("/feed/ideas/{idea_id}/like", response_model=FeedResponse)
async def like_idea(idea_id: int, shell: AppShell = Depends(get_shell)):
    """
    Like an idea.

    Returns right after the local +1; the store request keeps running in the
    background and its failure is never reported here.
    """
    shell.feed.like(idea_id)
    return FeedResponse.from_shell(shell)


# ----------------------------------------------------------------------------
# Composition
# ----------------------------------------------------------------------------

@router.get("/compose", response_model=DraftResponse)
async def get_draft(shell: AppShell = Depends(get_shell)):
    return DraftResponse.from_shell(shell)


@router.patch("/compose", response_model=DraftResponse)
async def update_draft(request: UpdateDraftRequest, shell: AppShell = Depends(get_shell)):
    """Apply typed input (truncated to the field limits)."""
    composer = shell.composer
    if request.username is not None:
        composer.set_username(request.username)
    if request.content is not None:
        composer.set_content(request.content)
    if request.description is not None:
        composer.set_description(request.description)
    return DraftResponse.from_shell(shell)


@router.post("/compose/toggle-description", response_model=DraftResponse)
async def toggle_description(shell: AppShell = Depends(get_shell)):
    shell.composer.toggle_description()
    return DraftResponse.from_shell(shell)


@router.post("/compose/submit", response_model=DraftResponse)
async def submit_draft(shell: AppShell = Depends(get_shell)):
    """
    Submit the draft.

    Validation and post errors come back in `error` with a 200; the page shows
    them inline.
    """
    submitted = await shell.composer.submit()
    return DraftResponse.from_shell(shell, submitted=submitted)


# ----------------------------------------------------------------------------
# Confirmation dialog
# ----------------------------------------------------------------------------

@router.get("/dialog", response_model=DialogResponse)
async def get_dialog(shell: AppShell = Depends(get_shell)):
    return DialogResponse.from_shell(shell)


@router.post("/dialog/open", response_model=DialogResponse)
async def open_dialog(request: OpenDialogRequest, shell: AppShell = Depends(get_shell)):
    """Open the confirmation dialog for an idea."""
    if request.idea_id is not None and shell.feed.position_of(request.idea_id) is None:
        raise HTTPException(status_code=404, detail=f"Idea {request.idea_id} not in feed")
    shell.open_confirmation(request.idea_id)
    return DialogResponse.from_shell(shell)


@router.post("/dialog/dismiss", response_model=DialogResponse)
async def dismiss_dialog(shell: AppShell = Depends(get_shell)):
    """Close button and cancel button."""
    shell.dialog.dismiss()
    return DialogResponse.from_shell(shell)


@router.post("/dialog/keydown", response_model=DialogResponse)
async def dialog_keydown(request: KeyRequest, shell: AppShell = Depends(get_shell)):
    shell.dialog.handle_key(request.key)
    return DialogResponse.from_shell(shell)


@router.post("/dialog/backdrop", response_model=DialogResponse)
async def dialog_backdrop(request: BackdropRequest, shell: AppShell = Depends(get_shell)):
    shell.dialog.handle_backdrop_click(request.on_overlay)
    return DialogResponse.from_shell(shell)


@router.post("/dialog/confirm", response_model=DialogResponse)
async def confirm_dialog(shell: AppShell = Depends(get_shell)):
    """
    Confirm creation. Always closes; a failed store call shows up only in
    `outcome` and the monitoring feed.
    """
    if not shell.dialog.is_open:
        raise HTTPException(status_code=400, detail="Dialog is not open")
    outcome = await shell.dialog.confirm()
    return DialogResponse.from_shell(shell, outcome=outcome)


# ============================================================================
# Monitoring Endpoints
# ============================================================================

@router.get("/monitor/dashboard", tags=["Monitoring"])
async def get_monitoring_dashboard():
    """Full monitoring dashboard data."""
    return monitor.get_dashboard_data()


@router.get("/monitor/metrics", tags=["Monitoring"])
async def get_metrics():
    """
    Detailed metrics.

    Includes:
    - Page request counts and errors per endpoint
    - Idea store calls per operation, errors broken down by class
    """
    return monitor.metrics.get_metrics()


@router.get("/monitor/activity", tags=["Monitoring"])
async def get_activity_feed(
    limit: int = Query(default=50, ge=1, le=500, description="Max events to return"),
    event_type: Optional[str] = Query(default=None, description="Filter by event type")
):
    """Recent client events, newest first."""
    filter_type = None
    if event_type:
        try:
            filter_type = EventType(event_type)
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail=f"Invalid event_type. Valid types: {[e.value for e in EventType]}"
            )

    return {
        "events": monitor.activity.get_recent(limit=limit, event_type=filter_type),
        "event_counts_5m": monitor.activity.get_event_counts(since_minutes=5),
    }
