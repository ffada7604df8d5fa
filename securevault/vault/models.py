"""
Vault entry models.

Sensitive fields (``PasswordEntry.password``, ``SecureNote.content``) hold
a tagged ``SecretField``; render them with ``.display()``. Field aliases are
camelCase to match the local storage layout written by the web client.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .keystore import StorageScope
from .records import SecretField, as_secret


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class PasswordEntry(BaseModel):
    """A stored credential."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    id: str = Field(default_factory=_new_id)
    title: str
    username: str = ""
    password: SecretField
    url: Optional[str] = None
    category: str = "Uncategorized"
    tags: list[str] = Field(default_factory=list)
    strength: Literal["weak", "medium", "strong"] = "medium"
    storage_type: StorageScope = StorageScope.LOCAL
    created_at: datetime = Field(default_factory=_now)
    last_used: Optional[datetime] = None
    notes: Optional[str] = None
    is_favorite: bool = False

    @field_validator("password", mode="plain")
    @classmethod
    def validate_password(cls, v: Any) -> SecretField:
        """Accept tagged values or raw strings."""
        if v is None:
            v = ""
        return as_secret(v)

    @field_validator("tags", mode="before")
    @classmethod
    def validate_tags(cls, v: Any) -> list:
        return [] if v is None else v


class SecureNote(BaseModel):
    """A free-form encrypted note."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    id: str = Field(default_factory=_new_id)
    title: str
    content: SecretField
    category: str = "General"
    is_favorite: bool = False
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @field_validator("content", mode="plain")
    @classmethod
    def validate_content(cls, v: Any) -> SecretField:
        if v is None:
            v = ""
        return as_secret(v)


class SharedPassword(BaseModel):
    """Payload of a share link, readable by anyone holding the token."""

    title: str
    username: str = ""
    password: str
    url: Optional[str] = None
