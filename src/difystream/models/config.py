"""Configuration models for difystream clients and components."""

from __future__ import annotations

import os
from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from ulid import ULID

DEFAULT_BASE_URL = "https://api.dify.ai/v1"


class ConfigError(ValueError):
    """Raised when a profile or config cannot be built from its inputs."""


def make_user_id() -> str:
    """
    Generate a local user identifier for the ``user`` API parameter.

    The backend scopes conversations by this value, so callers should persist
    it and pass the same id on every request.

    Returns:
        ID string in the format ``"user_{ulid}"``.
    """
    return f"user_{ULID()}"


class AppProfile(BaseModel):
    """
    Connection details for one backend app.

    Profiles are handed to :class:`~difystream.chat.ChatController` explicitly;
    storing and selecting among several profiles is the caller's concern.
    """

    id: str
    name: str
    api_key: str = Field(min_length=1, repr=False)
    base_url: str = DEFAULT_BASE_URL
    app_type: Literal["chatbot", "workflow", "completion"] = "chatbot"
    is_default: bool = False

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {value!r}")
        return value.rstrip("/")

    @classmethod
    def from_env(cls) -> AppProfile | None:
        """
        Build the default profile from environment variables.

        Reads ``DIFY_DEFAULT_APP_NAME``, ``DIFY_DEFAULT_APP_KEY`` and
        ``DIFY_DEFAULT_APP_URL`` (optional, defaults to the hosted API).

        Returns:
            An ``AppProfile`` with ``id="default"``, or ``None`` when the name
            or key is not set.
        """
        name = os.environ.get("DIFY_DEFAULT_APP_NAME")
        api_key = os.environ.get("DIFY_DEFAULT_APP_KEY")
        if not name or not api_key:
            return None
        try:
            return cls(
                id="default",
                name=name,
                api_key=api_key,
                base_url=os.environ.get("DIFY_DEFAULT_APP_URL") or DEFAULT_BASE_URL,
                is_default=True,
            )
        except ValueError as exc:
            raise ConfigError(f"Invalid default app profile: {exc}") from exc


class ClientConfig(BaseModel):
    """HTTP transport settings."""

    timeout: float = Field(
        default=60.0,
        gt=0,
        description="Read timeout in seconds between received chunks.",
    )

    connect_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Seconds to wait for the TCP/TLS connection.",
    )


class PagerConfig(BaseModel):
    """Configuration for message history and conversation list pagination."""

    page_limit: int = Field(
        default=20,
        ge=1,
        le=100,
        description="Number of items requested per page.",
    )

    cursor_strategy: Literal["oldest", "last", "first"] = Field(
        default="oldest",
        description=(
            "How the cursor for the next older page is picked from the current page: "
            "the item with the smallest created_at, the last array element, or the "
            "first array element. Verify against the backend's ordering."
        ),
    )


class ScrollConfig(BaseModel):
    """Thresholds for the scroll controller, in the caller's pixel units."""

    bottom_threshold: float = Field(
        default=48.0,
        ge=0,
        description="Distance from the bottom within which the view counts as pinned.",
    )

    top_threshold: float = Field(
        default=32.0,
        ge=0,
        description="Distance from the top within which older history is requested.",
    )


class DifyConfig(BaseModel):
    """
    Top-level configuration for a difystream client.

    All sub-configs have sensible defaults and can be overridden individually.

    Example::

        config = DifyConfig(
            pager=PagerConfig(page_limit=50, cursor_strategy="last"),
            scroll=ScrollConfig(bottom_threshold=16),
        )
    """

    client: ClientConfig = Field(default_factory=ClientConfig)
    pager: PagerConfig = Field(default_factory=PagerConfig)
    scroll: ScrollConfig = Field(default_factory=ScrollConfig)

    @model_validator(mode="after")
    def validate_timeouts(self) -> DifyConfig:
        if self.client.connect_timeout > self.client.timeout:
            raise ValueError("client.connect_timeout must not exceed client.timeout")
        return self

    @classmethod
    def default(cls) -> DifyConfig:
        """Return a config instance with all defaults."""
        return cls()
