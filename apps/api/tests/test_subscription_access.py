"""
Access state: active / trial / no_subscription.
"""
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from services.subscription_access import (
    STATE_ACTIVE,
    STATE_NO_SUBSCRIPTION,
    STATE_TRIAL,
    derive_access_status,
    get_access_status,
    provision_trial,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _sub(*, trial_days=None, status=None, cancel_at_period_end=False):
    return SimpleNamespace(
        trial_start_date=None,
        trial_end_date=NOW + timedelta(days=trial_days) if trial_days is not None else None,
        subscription_status=status,
        subscription_end_date=None,
        cancel_at_period_end=cancel_at_period_end,
    )


def test_no_row_means_no_subscription():
    access = derive_access_status(None, now=NOW)
    assert access.state == STATE_NO_SUBSCRIPTION
    assert access.can_write is False


def test_running_trial_can_write():
    access = derive_access_status(_sub(trial_days=3), now=NOW)
    assert access.state == STATE_TRIAL
    assert access.is_in_trial_period is True
    assert access.trial_days_left == 3
    assert access.can_write is True


def test_partial_trial_day_rounds_up():
    sub = _sub()
    sub.trial_end_date = NOW + timedelta(hours=5)
    assert derive_access_status(sub, now=NOW).trial_days_left == 1


def test_lapsed_trial_cannot_write():
    access = derive_access_status(_sub(trial_days=-1), now=NOW)
    assert access.state == STATE_NO_SUBSCRIPTION
    assert access.trial_days_left == 0
    assert access.can_write is False


def test_active_wins_over_trial():
    access = derive_access_status(_sub(trial_days=10, status="active"), now=NOW)
    assert access.state == STATE_ACTIVE
    assert access.has_active_subscription is True
    assert access.is_in_trial_period is False
    assert access.can_write is True


def test_non_active_statuses_do_not_grant_access():
    for status in ("past_due", "canceled", "incomplete", "unpaid"):
        access = derive_access_status(_sub(trial_days=-5, status=status), now=NOW)
        assert access.state == STATE_NO_SUBSCRIPTION
        assert access.subscription_status == status


def test_naive_trial_end_is_treated_as_utc():
    sub = _sub()
    sub.trial_end_date = (NOW + timedelta(days=2)).replace(tzinfo=None)
    assert derive_access_status(sub, now=NOW).state == STATE_TRIAL


def test_provision_trial_is_set_once(db_session, make_user):
    user = make_user()
    sub = provision_trial(db_session, user=user)
    before = sub.trial_end_date
    provision_trial(db_session, user=user, now=NOW + timedelta(days=30))
    assert sub.trial_end_date == before


def test_get_access_status_reads_the_row(db_session, make_user):
    user = make_user(trial_days=5)
    assert get_access_status(db_session, user=user).state == STATE_TRIAL
