"""
Configuration for the notification coordinator.

Values only: defaults come from the models below, overrides from
``AFK_NOTIFIER_*`` environment variables (a local ``.env`` is honoured) or
from the nested camelCase mapping used by the plugin's config frontmatter.
Locating config files is the host application's job.
"""
import os
from typing import Any, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from afk_notifier.core.errors import ValidationError

ENV_PREFIX = "AFK_NOTIFIER_"


class RateLimitConfig(BaseModel):
    """Token bucket settings for all outbound sends."""
    messages_per_minute: float = Field(default=20, gt=0)
    burst_size: int = Field(default=5, ge=1)  # Bucket capacity

    @property
    def refill_rate(self) -> float:
        """Tokens per second."""
        return self.messages_per_minute / 60.0


class ApprovalConfig(BaseModel):
    """Approval request lifecycle settings."""
    timeout_seconds: float = Field(default=300, gt=0)  # Default per-request timeout
    max_concurrent: int = Field(default=10, ge=1)  # Pending requests before eviction


class BatchingConfig(BaseModel):
    """Outbound message batching settings."""
    window_ms: int = Field(default=5000, gt=0)
    max_queue_size: int = Field(default=100, ge=1)

    @property
    def window_seconds(self) -> float:
        return self.window_ms / 1000.0

    @property
    def retention_seconds(self) -> float:
        """Messages older than this are discarded unsent."""
        return 2 * self.window_seconds


class DeliveryConfig(BaseModel):
    """Retry policy for failed sends."""
    max_attempts: int = Field(default=3, ge=1)
    base_delay_seconds: float = Field(default=1.0, ge=0)
    max_delay_seconds: float = Field(default=10.0, ge=0)


class PollingConfig(BaseModel):
    """Adaptive poller bounds."""
    min_interval_ms: int = Field(default=100, gt=0)
    max_interval_ms: int = Field(default=1000, gt=0)

    @model_validator(mode="after")
    def validate_bounds(self) -> "PollingConfig":
        if self.min_interval_ms > self.max_interval_ms:
            raise ValueError("min_interval_ms must be <= max_interval_ms")
        return self


class NotifierConfig(BaseModel):
    """Complete coordinator configuration."""
    rate_limiting: RateLimitConfig = Field(default_factory=RateLimitConfig)
    approval: ApprovalConfig = Field(default_factory=ApprovalConfig)
    batching: BatchingConfig = Field(default_factory=BatchingConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "NotifierConfig":
        """
        Build config from a nested mapping.

        Accepts both snake_case keys and the camelCase keys of the plugin
        config (``rateLimiting.messagesPerMinute``, ``batching.windowMs``...).

        Raises:
            ValidationError: If a value is missing its constraints
        """
        normalized = {
            _snake_case(section): (
                {_snake_case(k): v for k, v in values.items()}
                if isinstance(values, Mapping) else values
            )
            for section, values in data.items()
        }
        try:
            return cls.model_validate(normalized)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid notifier configuration: {e}") from e


def _snake_case(name: str) -> str:
    out = []
    for ch in name:
        if ch.isupper():
            out.append("_")
            out.append(ch.lower())
        else:
            out.append(ch)
    return "".join(out).lstrip("_")


# (section, field) pairs that can be overridden from the environment
_ENV_FIELDS = [
    ("rate_limiting", "messages_per_minute"),
    ("rate_limiting", "burst_size"),
    ("approval", "timeout_seconds"),
    ("approval", "max_concurrent"),
    ("batching", "window_ms"),
    ("batching", "max_queue_size"),
    ("delivery", "max_attempts"),
    ("delivery", "base_delay_seconds"),
    ("delivery", "max_delay_seconds"),
    ("polling", "min_interval_ms"),
    ("polling", "max_interval_ms"),
]


def load_config(
    overrides: Optional[Mapping[str, Any]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> NotifierConfig:
    """
    Load configuration from the environment.

    Reads ``AFK_NOTIFIER_<SECTION>_<FIELD>`` variables, e.g.
    ``AFK_NOTIFIER_RATE_LIMITING_BURST_SIZE=3``. Explicit ``overrides`` win
    over the environment.

    Args:
        overrides: Optional nested mapping applied last
        env: Environment to read instead of ``os.environ`` (skips .env loading)

    Returns:
        Validated NotifierConfig
    """
    if env is None:
        load_dotenv()
        env = os.environ

    data: dict[str, dict[str, Any]] = {}
    for section, field in _ENV_FIELDS:
        key = f"{ENV_PREFIX}{section}_{field}".upper()
        value = env.get(key)
        if value is not None and value.strip():
            data.setdefault(section, {})[field] = value.strip()

    if overrides:
        for section, values in overrides.items():
            section_key = _snake_case(section)
            if isinstance(values, Mapping):
                data.setdefault(section_key, {}).update(
                    {_snake_case(k): v for k, v in values.items()}
                )

    return NotifierConfig.from_mapping(data)
