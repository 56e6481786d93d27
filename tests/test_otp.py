"""Unit tests for auth/otp.py -- OtpChallengeManager.

Covers:
- Codes are fixed-width digit strings
- valid consumes the challenge (single use), mismatch keeps it, expired removes it
- Re-issuing supersedes the previous code
- sweep() removes only expired challenges
- Concurrent submissions of the correct code: exactly one caller sees valid
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from auth.models import VerifyOutcome
from auth.otp import OtpChallengeManager
from tests.fakes import FakeClock

EMAIL = "alice@x.com"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=1_700_000_000)


@pytest.fixture
def manager(clock: FakeClock) -> OtpChallengeManager:
    return OtpChallengeManager(ttl_seconds=600, digits=6, clock=clock)


def _wrong(code: str) -> str:
    return "100000" if code != "100000" else "100001"


class TestIssue:
    def test_codes_are_six_digits(self, manager):
        for _ in range(200):
            code = manager.issue(EMAIL)
            assert len(code) == 6
            assert code.isdigit()
            assert code[0] != "0"

    def test_digit_width_is_configurable(self, clock):
        manager = OtpChallengeManager(ttl_seconds=60, digits=8, clock=clock)
        assert len(manager.issue(EMAIL)) == 8

    def test_too_few_digits_rejected(self):
        with pytest.raises(ValueError):
            OtpChallengeManager(digits=3)

    def test_codes_vary(self, manager):
        codes = {manager.issue(f"user{i}@x.com") for i in range(50)}
        assert len(codes) > 40

    def test_one_live_challenge_per_email(self, manager):
        manager.issue(EMAIL)
        manager.issue(EMAIL)
        manager.issue("bob@x.com")
        assert len(manager) == 2


class TestVerify:
    def test_unknown_email_not_found(self, manager):
        assert manager.verify(EMAIL, "123456") is VerifyOutcome.not_found

    def test_correct_code_is_single_use(self, manager):
        code = manager.issue(EMAIL)
        assert manager.verify(EMAIL, code) is VerifyOutcome.valid
        assert manager.verify(EMAIL, code) is VerifyOutcome.not_found

    def test_mismatch_keeps_challenge_for_retry(self, manager):
        code = manager.issue(EMAIL)
        assert manager.verify(EMAIL, _wrong(code)) is VerifyOutcome.mismatch
        assert manager.verify(EMAIL, _wrong(code)) is VerifyOutcome.mismatch
        assert manager.has_pending(EMAIL)
        assert manager.verify(EMAIL, code) is VerifyOutcome.valid

    def test_valid_until_ttl_elapses(self, manager, clock):
        code = manager.issue(EMAIL)
        clock.advance(599)
        assert manager.verify(EMAIL, code) is VerifyOutcome.valid

    def test_expired_code_is_removed(self, manager, clock):
        code = manager.issue(EMAIL)
        clock.advance(600)
        assert manager.verify(EMAIL, code) is VerifyOutcome.expired
        assert manager.verify(EMAIL, code) is VerifyOutcome.not_found
        assert len(manager) == 0

    def test_reissue_invalidates_previous_code(self, manager):
        old = manager.issue(EMAIL)
        new = manager.issue(EMAIL)
        while new == old:
            new = manager.issue(EMAIL)
        assert manager.verify(EMAIL, old) is VerifyOutcome.mismatch
        assert manager.verify(EMAIL, new) is VerifyOutcome.valid

    def test_reissue_restarts_ttl(self, manager, clock):
        manager.issue(EMAIL)
        clock.advance(500)
        code = manager.issue(EMAIL)
        clock.advance(500)
        assert manager.verify(EMAIL, code) is VerifyOutcome.valid

    def test_concurrent_double_submission_succeeds_once(self, manager):
        code = manager.issue(EMAIL)
        workers = 16
        barrier = threading.Barrier(workers)

        def submit(_):
            barrier.wait()
            return manager.verify(EMAIL, code)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            outcomes = list(pool.map(submit, range(workers)))

        assert outcomes.count(VerifyOutcome.valid) == 1
        assert outcomes.count(VerifyOutcome.not_found) == workers - 1


class TestSweep:
    def test_sweep_removes_only_expired(self, manager, clock):
        manager.issue("old1@x.com")
        manager.issue("old2@x.com")
        clock.advance(400)
        fresh = manager.issue("fresh@x.com")
        clock.advance(200)

        assert manager.sweep() == 2
        assert len(manager) == 1
        assert manager.verify("fresh@x.com", fresh) is VerifyOutcome.valid

    def test_sweep_on_empty_store(self, manager):
        assert manager.sweep() == 0

    def test_swept_challenge_is_not_found(self, manager, clock):
        code = manager.issue(EMAIL)
        clock.advance(601)
        manager.sweep()
        assert manager.verify(EMAIL, code) is VerifyOutcome.not_found


def test_discard(manager):
    code = manager.issue(EMAIL)
    assert manager.discard(EMAIL) is True
    assert manager.discard(EMAIL) is False
    assert manager.verify(EMAIL, code) is VerifyOutcome.not_found
