import pytest

from messaging.core.errors import ValidationError
from messaging.db.enums import ChannelType
from messaging.services.retention_policy import (
    CHANNEL_RETENTION_DEFAULTS,
    MAX_RETENTION_DAYS,
    MIN_RETENTION_DAYS,
    clamp_retention_days,
    default_policy_for,
    is_override,
    resolve_retention,
)


def test_every_channel_has_a_default():
    assert set(CHANNEL_RETENTION_DEFAULTS) == set(ChannelType)


@pytest.mark.parametrize(
    "days, expected",
    [(0, MIN_RETENTION_DAYS), (29, 30), (30, 30), (365, 365), (3650, 3650), (5000, MAX_RETENTION_DAYS)],
)
def test_clamp_retention_days(days, expected):
    assert clamp_retention_days(days) == expected


def test_resolve_uses_channel_default():
    policy = resolve_retention(ChannelType.SUPPORT)
    assert policy.policy == "support_case"
    assert policy.days == 1095


def test_resolve_clamps_explicit_days_and_keeps_policy_name():
    policy = resolve_retention("support", 10)
    assert policy.policy == "support_case"
    assert policy.days == 30


def test_is_override():
    assert not is_override(ChannelType.DIRECT, "standard", 730)
    assert is_override(ChannelType.DIRECT, "standard", 30)
    assert is_override(ChannelType.DIRECT, "legal_hold", 730)


def test_unknown_channel():
    with pytest.raises(ValidationError):
        default_policy_for("fax")
