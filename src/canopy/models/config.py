"""Configuration models for canopy services and components."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator

HistoryStrategy = Literal["chain", "prefix"]


class RemoteConfig(BaseModel):
    """Connection settings for the remote conversation service."""

    base_url: str = "https://claude.ai"
    """Scheme and host of the remote service. API paths are appended to it."""

    org_id: str = Field(default="", description="Organization id used in every API path.")

    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Extra headers sent with every request (e.g. a session cookie).",
    )

    timeout: float = Field(default=30.0, gt=0, description="Per-request timeout in seconds.")

    poll_interval: float = Field(
        default=5.0,
        ge=0,
        description="Seconds between completion-status polls.",
    )

    completion_timeout: float = Field(
        default=240.0,
        gt=0,
        description="Give up waiting for a completion after this many seconds.",
    )

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class StoreConfig(BaseModel):
    """Configuration for the SQLite persistence layer."""

    db_path: str = Field(
        default="~/.canopy/canopy.db",
        description="Path to the SQLite database file. ~ is expanded at runtime.",
    )

    wal_mode: bool = True
    """Use WAL journal mode for better concurrent read performance."""

    connection_timeout: float = 30.0
    """Seconds to wait for the database connection before raising."""


DEFAULT_SUMMARY_PROMPT = (
    "I've attached a chatlog from a previous conversation. Please create a complete, "
    "detailed summary of the conversation that covers all important points, questions, "
    "and responses. This summary will be used to continue the conversation in a new chat, "
    "so make sure it provides enough context to understand the full discussion. Be "
    "thorough, and think things through. Make it lengthy.\n"
    "If this is a technical discussion, include any relevant technical details, code "
    "snippets, or explanations that were part of the conversation, maintaining information "
    "concerning only the latest version of any code discussed.\n"
    "If this is a writing or creative discussion, include sections for characters, plot "
    "points, setting info, etcetera."
)


class ForkConfig(BaseModel):
    """Defaults for the fork synthesis pipeline."""

    settle_delay: float = Field(
        default=2.0,
        ge=0,
        description="Seconds to wait after seeding so the acknowledgement turn can finish.",
    )

    chatlog_filename: str = "chatlog.txt"

    include_attachments: bool = True
    """Rehost files, attachments and sync sources into the fork."""

    include_tool_calls: bool = False
    """Keep tool_use / tool_result blocks in the forked history."""

    raw_text_percentage: int = Field(
        default=100,
        ge=1,
        le=100,
        description=(
            "Share of the most recent messages carried over verbatim. Anything below 100 "
            "summarises the older part of the history before forking."
        ),
    )

    summary_model: str | None = Field(
        default=None,
        description="Model for the temporary summarisation conversation. None = fork model.",
    )

    summary_prompt: str = DEFAULT_SUMMARY_PROMPT

    store_phantom_history: bool = True
    """Store the extracted history as phantom messages of the new conversation."""

    history_strategy: HistoryStrategy = "chain"
    """``chain`` walks parent links; ``prefix`` reproduces the server-order prefix walk."""


class ForkOptions(BaseModel):
    """Per-call overrides for ``ForkConfig``. ``None`` keeps the configured value."""

    include_attachments: bool | None = None
    include_tool_calls: bool | None = None
    raw_text_percentage: int | None = Field(default=None, ge=1, le=100)
    summary_prompt: str | None = None

    def resolve(self, config: ForkConfig) -> ForkConfig:
        """Return ``config`` with every non-None override applied."""
        return config.model_copy(update=self.model_dump(exclude_none=True))


class CanopyConfig(BaseModel):
    """
    Top-level configuration for a canopy service.

    Example::

        config = CanopyConfig(
            remote=RemoteConfig(org_id="org-123", headers={"Cookie": "sessionKey=..."}),
            fork=ForkConfig(settle_delay=3.0),
        )
    """

    remote: RemoteConfig = Field(default_factory=RemoteConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    fork: ForkConfig = Field(default_factory=ForkConfig)

    @classmethod
    def default(cls) -> CanopyConfig:
        """Return a config instance with all defaults."""
        return cls()
