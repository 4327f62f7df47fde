"""
Shared data models for the idea store adapter.

Field names follow Python conventions; aliases match the store's camelCase
wire format so models round-trip through JSON unchanged.
"""

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field


class Idea(BaseModel):
    """
    A single idea as served by the store.

    Everything except `likes` is owned by the store; the client only ever
    bumps the like counter locally.

    Attributes:
        idea_id: Store-assigned identifier
        username: Display name of the poster (untrusted)
        explanation_a: Main idea text
        explanation_b: Reserved for structured input
        explanation_c: Reserved for structured input
        description: Optional long description
        timestamp: Creation time as sent by the store
        likes: Like counter
    """
    model_config = ConfigDict(populate_by_name=True)

    idea_id: int = Field(alias="ideaId", description="Store-assigned identifier")
    username: str = Field(description="Display name of the poster")
    explanation_a: str = Field(default="", alias="explanationA", description="Main idea text")
    explanation_b: str = Field(default="", alias="explanationB")
    explanation_c: str = Field(default="", alias="explanationC")
    description: str = Field(default="", description="Optional long description")
    timestamp: str = Field(description="Creation time (date/time string)")
    likes: int = Field(default=0, ge=0, description="Like counter")


class IdeaSubmission(BaseModel):
    """Body of POST /post/idea."""
    model_config = ConfigDict(populate_by_name=True)

    username: str
    explanation_a: str = Field(alias="explanationA")
    explanation_b: str = Field(default="", alias="explanationB")
    explanation_c: str = Field(default="", alias="explanationC")
    description: str = ""
    likes: int = 0

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class CreateRequest(BaseModel):
    """Body of POST /post/create (confirmation path)."""
    model_config = ConfigDict(populate_by_name=True)

    idea_id: int = Field(alias="ideaId")
    username: str

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


__all__ = ["Idea", "IdeaSubmission", "CreateRequest"]
