"""Tests for status condition bookkeeping."""

from datetime import UTC, datetime, timedelta

from identity_claim_operator.models.common import Condition
from identity_claim_operator.utils.conditions import (
    get_condition,
    is_condition_true,
    upsert_condition,
    utcnow,
)

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
T1 = T0 + timedelta(minutes=5)


def test_new_condition_is_appended():
    conditions: dict[str, Condition] = {}

    changed = upsert_condition(
        conditions, "PodsVerified", "True", "PodsFound", "Found 1 matching pod(s)",
        observed_generation=2, now=T0,
    )

    assert changed
    condition = conditions["PodsVerified"]
    assert condition.status == "True"
    assert condition.observed_generation == 2
    assert condition.last_transition_time == T0


def test_status_flip_refreshes_transition_time():
    conditions: dict[str, Condition] = {}
    upsert_condition(conditions, "Ready", "False", "Issuing", "waiting", now=T0)

    changed = upsert_condition(conditions, "Ready", "True", "Ready", "ready", now=T1)

    assert changed
    assert conditions["Ready"].last_transition_time == T1
    assert conditions["Ready"].reason == "Ready"


def test_same_status_keeps_transition_time():
    conditions: dict[str, Condition] = {}
    upsert_condition(conditions, "PodsVerified", "True", "PodsFound", "1 pod", now=T0)

    changed = upsert_condition(
        conditions, "PodsVerified", "True", "PodsFound", "3 pods",
        observed_generation=4, now=T1,
    )

    assert changed
    condition = conditions["PodsVerified"]
    assert condition.message == "3 pods"
    assert condition.observed_generation == 4
    assert condition.last_transition_time == T0


def test_identical_update_reports_no_change():
    conditions: dict[str, Condition] = {}
    upsert_condition(conditions, "Ready", "True", "Ready", "ready", now=T0)

    assert not upsert_condition(conditions, "Ready", "True", "Ready", "ready", now=T1)
    assert conditions["Ready"].last_transition_time == T0


def test_one_entry_per_type_in_insertion_order():
    conditions: dict[str, Condition] = {}
    upsert_condition(conditions, "PodsVerified", "True", "PodsFound", "", now=T0)
    upsert_condition(conditions, "Ready", "False", "Issuing", "", now=T0)
    upsert_condition(conditions, "PodsVerified", "False", "NoPods", "", now=T1)

    assert list(conditions) == ["PodsVerified", "Ready"]
    assert conditions["PodsVerified"].reason == "NoPods"


def test_lookup_helpers():
    conditions: dict[str, Condition] = {}
    upsert_condition(conditions, "Ready", "True", "Ready", "", now=T0)
    upsert_condition(conditions, "CertificateIssued", "False", "Issuing", "", now=T0)

    assert get_condition(conditions, "Ready").reason == "Ready"
    assert get_condition(conditions, "PodsVerified") is None
    assert is_condition_true(conditions, "Ready")
    assert not is_condition_true(conditions, "CertificateIssued")
    assert not is_condition_true(conditions, "PodsVerified")


def test_utcnow_is_whole_seconds_in_utc():
    now = utcnow()

    assert now.tzinfo is UTC
    assert now.microsecond == 0
