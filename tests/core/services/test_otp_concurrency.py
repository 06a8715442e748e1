"""
Concurrent verification and issuance against one OTP tuple.

Each coroutine uses its own session (its own connection), so the
compare-and-swap updates are what keeps the record consistent.

Run tests:
    pytest tests/core/services/test_otp_concurrency.py -v
"""

import asyncio
from unittest.mock import patch

import pytest

from careauth.core.config import settings
from careauth.core.db.crud import otp_record_db
from careauth.core.enums import OTPPurpose, OTPStatus, OwnerKind
from careauth.core.exceptions.types import (
    OTPAlreadyVerifiedException,
    OTPInvalidException,
    TooManyAttemptsException,
)
from careauth.core.services.cipher import CodeCipher
from careauth.core.services.otp import OTPService, VerifyResult

pytestmark = pytest.mark.integration

TUPLE = {
    "owner_kind": OwnerKind.WORKER,
    "owner_id": 7,
    "identifier": "worker@example.com",
    "purpose": OTPPurpose.ACCOUNT_VERIFICATION,
}


async def verify_in_own_session(session_factory, code):
    async with session_factory() as session:
        try:
            return await OTPService.verify(session, code=code, **TUPLE)
        except (
            OTPInvalidException,
            TooManyAttemptsException,
            OTPAlreadyVerifiedException,
        ) as e:
            return e


async def load_record(session_factory, record_id):
    async with session_factory() as session:
        return await otp_record_db.get_by_id(session, record_id)


class TestConcurrentVerification:

    async def test_correct_code_succeeds_exactly_once(self, session_factory, publisher):
        async with session_factory() as session:
            record = await OTPService.issue(session, **TUPLE)
        code = CodeCipher.decrypt(record.code_ciphertext)

        results = await asyncio.gather(
            *(verify_in_own_session(session_factory, code) for _ in range(3))
        )

        successes = [r for r in results if isinstance(r, VerifyResult)]
        assert len(successes) == 1
        for failure in results:
            if not isinstance(failure, VerifyResult):
                assert isinstance(
                    failure, (OTPAlreadyVerifiedException, TooManyAttemptsException)
                )

        stored = await load_record(session_factory, record.id)
        assert stored.status == OTPStatus.VERIFIED
        assert stored.attempts <= stored.max_attempts

    async def test_wrong_guesses_never_exceed_budget(self, session_factory, publisher):
        async with session_factory() as session:
            record = await OTPService.issue(session, **TUPLE)
        code = CodeCipher.decrypt(record.code_ciphertext)
        bad = "000000" if code != "000000" else "111111"

        results = await asyncio.gather(
            *(verify_in_own_session(session_factory, bad) for _ in range(6))
        )

        invalid = [r for r in results if isinstance(r, OTPInvalidException)]
        too_many = [r for r in results if isinstance(r, TooManyAttemptsException)]
        assert len(invalid) + len(too_many) == 6
        assert len(invalid) == record.max_attempts - 1
        # Each attempt was counted once, so every remaining count is distinct
        assert sorted(e.attempts_remaining for e in invalid) == list(
            range(1, record.max_attempts)
        )

        stored = await load_record(session_factory, record.id)
        assert stored.attempts == stored.max_attempts
        assert stored.status == OTPStatus.FAILED

    async def test_mixed_guesses_within_budget_verify_once(
        self, session_factory, publisher
    ):
        # One more attempt than guesses, so no wrong guess can close the record
        with patch.object(settings, "OTP_MAX_ATTEMPTS", 4):
            async with session_factory() as session:
                record = await OTPService.issue(session, **TUPLE)
        code = CodeCipher.decrypt(record.code_ciphertext)
        bad = "000000" if code != "000000" else "111111"

        results = await asyncio.gather(
            *(verify_in_own_session(session_factory, guess) for guess in (bad, code, bad))
        )

        successes = [r for r in results if isinstance(r, VerifyResult)]
        assert len(successes) == 1
        for failure in results:
            if not isinstance(failure, VerifyResult):
                assert isinstance(
                    failure, (OTPInvalidException, OTPAlreadyVerifiedException)
                )

        stored = await load_record(session_factory, record.id)
        assert stored.status == OTPStatus.VERIFIED
        assert stored.attempts <= 3

    async def test_wrong_guess_during_last_attempt_does_not_close_record(
        self, session_factory, publisher
    ):
        async with session_factory() as session:
            record = await OTPService.issue(session, **TUPLE)
        code = CodeCipher.decrypt(record.code_ciphertext)
        bad = "000000" if code != "000000" else "111111"

        for _ in range(record.max_attempts - 1):
            assert isinstance(
                await verify_in_own_session(session_factory, bad), OTPInvalidException
            )

        # Run a wrong guess after the last attempt is consumed, before its swap
        real_update_status = otp_record_db.update_status
        interleaved = []

        async def update_status_after_wrong_guess(session, record_id, status, **kwargs):
            if status == OTPStatus.VERIFIED and not interleaved:
                interleaved.append(await verify_in_own_session(session_factory, bad))
            return await real_update_status(session, record_id, status, **kwargs)

        with patch.object(
            otp_record_db, "update_status", new=update_status_after_wrong_guess
        ):
            async with session_factory() as session:
                result = await OTPService.verify(session, code=code, **TUPLE)

        assert isinstance(result, VerifyResult)
        assert result.attempts == record.max_attempts
        assert len(interleaved) == 1
        assert isinstance(interleaved[0], TooManyAttemptsException)

        stored = await load_record(session_factory, record.id)
        assert stored.status == OTPStatus.VERIFIED
        assert stored.attempts == stored.max_attempts


class TestConcurrentIssuance:

    async def test_at_most_one_pending_record(self, session_factory, publisher):
        async def issue_in_own_session():
            async with session_factory() as session:
                return await OTPService.issue(session, **TUPLE)

        results = await asyncio.gather(
            *(issue_in_own_session() for _ in range(3)), return_exceptions=True
        )
        assert any(not isinstance(r, Exception) for r in results)

        async with session_factory() as session:
            records = await otp_record_db.get_all(session)
        pending = [r for r in records if r.status == OTPStatus.PENDING]
        assert len(pending) == 1
