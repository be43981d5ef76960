from datetime import datetime, timezone

import pytest

from emailresponder.models import Account
from emailresponder.store import SubscriptionSnapshot, SubscriptionStatus, SubscriptionStore, grants_access


def snapshot(status, sub_id="sub_1"):
    return SubscriptionSnapshot(
        subscription_id=sub_id,
        status=status,
        current_period_end=datetime(2030, 1, 1, tzinfo=timezone.utc),
        price_id="price_basic",
    )


@pytest.mark.parametrize("status", [s.value for s in SubscriptionStatus])
def test_has_access_only_for_trialing_and_active(db, status):
    store = SubscriptionStore(db)
    store.set_status("acct_1", snapshot(status))
    assert store.has_access("acct_1") is (status in ("trialing", "active"))


def test_no_access_without_subscription(db):
    store = SubscriptionStore(db)
    assert store.get_status("acct_missing") is None
    assert store.has_access("acct_missing") is False
    store.ensure_account("acct_1", "a@b.com")
    assert store.has_access("acct_1") is False


def test_unknown_status_never_grants_access():
    assert not grants_access("something_new")
    assert not grants_access(None)
    assert grants_access(SubscriptionStatus.ACTIVE)


def test_set_status_creates_account_and_round_trips(db):
    store = SubscriptionStore(db)
    store.set_status("acct_1", snapshot("active"))

    assert db.get(Account, "acct_1") is not None
    assert store.get_status("acct_1") == snapshot("active")


def test_set_status_overwrites_every_snapshot_field(db):
    store = SubscriptionStore(db)
    store.set_status("acct_1", snapshot("active"))
    store.set_status("acct_1", SubscriptionSnapshot(subscription_id="sub_2", status="canceled"))

    assert store.get_status("acct_1") == SubscriptionSnapshot(
        subscription_id="sub_2", status="canceled", current_period_end=None, price_id=None
    )


def test_link_customer_creates_account(db):
    store = SubscriptionStore(db)
    store.link_customer("acct_1", "cus_1", email="a@b.com")

    account = store.find_by_customer("cus_1")
    assert account.id == "acct_1"
    assert account.email == "a@b.com"
    assert store.get_status("acct_1") is None


def test_link_customer_keeps_existing_email(db):
    store = SubscriptionStore(db)
    store.ensure_account("acct_1", "first@b.com")
    store.link_customer("acct_1", "cus_1", email="other@b.com")
    assert store.get_account("acct_1").email == "first@b.com"


def test_ensure_account_updates_email(db):
    store = SubscriptionStore(db)
    store.ensure_account("acct_1", "a@b.com")
    store.ensure_account("acct_1", "new@b.com")
    store.ensure_account("acct_1")
    assert store.get_account("acct_1").email == "new@b.com"


def test_ensure_account_can_keep_stored_email(db):
    store = SubscriptionStore(db)
    store.ensure_account("acct_1", "owner@b.com", replace_email=False)
    store.ensure_account("acct_1", "intruder@b.com", replace_email=False)
    assert store.get_account("acct_1").email == "owner@b.com"


def test_snapshot_as_dict():
    data = snapshot("trialing").as_dict()
    assert data == {
        "subscriptionId": "sub_1",
        "status": "trialing",
        "currentPeriodEnd": int(datetime(2030, 1, 1, tzinfo=timezone.utc).timestamp()),
        "priceId": "price_basic",
    }
