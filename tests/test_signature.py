import time

import pytest

from emailresponder.signature import MAX_AGE_SECONDS, sign, verify

SECRET = "shared-test-secret"


def test_accepts_own_signature():
    now = int(time.time())
    sig = sign("a@b.com", now, SECRET)
    assert verify("a@b.com", str(now), sig, SECRET)


def test_rejects_signature_older_than_five_minutes():
    now = int(time.time())
    stale = now - 400
    sig = sign("a@b.com", stale, SECRET)
    assert not verify("a@b.com", str(stale), sig, SECRET, now=now)


def test_boundary_age_is_inclusive():
    now = 1_700_000_000
    ts = now - MAX_AGE_SECONDS
    assert verify("a@b.com", ts, sign("a@b.com", ts, SECRET), SECRET, now=now)
    ts = now - MAX_AGE_SECONDS - 1
    assert not verify("a@b.com", ts, sign("a@b.com", ts, SECRET), SECRET, now=now)


def test_rejects_future_timestamp():
    now = 1_700_000_000
    ts = now + 30
    assert not verify("a@b.com", ts, sign("a@b.com", ts, SECRET), SECRET, now=now)


def test_any_single_bit_flip_rejects():
    now = 1_700_000_000
    sig = bytes.fromhex(sign("a@b.com", now, SECRET))
    for index in range(len(sig)):
        for bit in range(8):
            mutated = bytearray(sig)
            mutated[index] ^= 1 << bit
            assert not verify("a@b.com", now, mutated.hex(), SECRET, now=now)


def test_signature_is_bound_to_email():
    now = 1_700_000_000
    sig = sign("a@b.com", now, SECRET)
    assert not verify("c@d.com", now, sig, SECRET, now=now)


@pytest.mark.parametrize("ts, sig", [
    ("not-a-number", None),
    ("", None),
    (None, None),
    ("1700000000", "zz-not-hex"),
    ("1700000000", "abcd"),
    ("1700000000", ""),
])
def test_malformed_input_rejects_without_raising(ts, sig):
    if sig is None:
        sig = sign("a@b.com", "1700000000", SECRET)
    assert verify("a@b.com", ts, sig, SECRET, now=1_700_000_000) is False


def test_missing_secret_rejects():
    now = 1_700_000_000
    assert not verify("a@b.com", now, sign("a@b.com", now, ""), "", now=now)
