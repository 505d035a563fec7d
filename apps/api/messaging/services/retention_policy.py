"""Channel retention defaults and override detection."""

from __future__ import annotations

from dataclasses import dataclass

from messaging.core.errors import ValidationError
from messaging.db.enums import ChannelType

MIN_RETENTION_DAYS = 30
MAX_RETENTION_DAYS = 3650


@dataclass(frozen=True)
class RetentionPolicy:
    policy: str
    days: int


CHANNEL_RETENTION_DEFAULTS: dict[ChannelType, RetentionPolicy] = {
    ChannelType.DIRECT: RetentionPolicy("standard", 730),
    ChannelType.GROUP: RetentionPolicy("standard", 730),
    ChannelType.SUPPORT: RetentionPolicy("support_case", 1095),
    ChannelType.PROJECT: RetentionPolicy("project_record", 1825),
    ChannelType.CONTRACT: RetentionPolicy("contract_record", 2555),
}


def clamp_retention_days(days: int) -> int:
    return max(MIN_RETENTION_DAYS, min(MAX_RETENTION_DAYS, int(days)))


def default_policy_for(channel_type: ChannelType | str) -> RetentionPolicy:
    try:
        return CHANNEL_RETENTION_DEFAULTS[ChannelType(channel_type)]
    except (KeyError, ValueError):
        raise ValidationError(f"Unsupported channel type: {channel_type}")


def resolve_retention(
    channel_type: ChannelType | str,
    retention_days: int | None = None,
    retention_policy: str | None = None,
) -> RetentionPolicy:
    """Channel default, with an explicit day count clamped into bounds."""
    default = default_policy_for(channel_type)
    days = default.days if retention_days is None else clamp_retention_days(retention_days)
    return RetentionPolicy(retention_policy or default.policy, days)


def is_override(channel_type: ChannelType | str, retention_policy: str, retention_days: int) -> bool:
    """True when the effective policy or day count deviates from the channel default."""
    default = default_policy_for(channel_type)
    return retention_policy != default.policy or retention_days != default.days
