import time

import pytest

from sessionguard.errors import AuthenticationError, NoIdentifier, RecoveryWindowClosed
from sessionguard.models.auth_models import AuthPayload
from sessionguard.models.enums import DisableMode
from sessionguard.services.mfa_disable import EMAIL_REQUEST_FAILED_MESSAGE

from conftest import auth_body

DISABLE_PATH = "/api/user/mfa/disable"


@pytest.fixture
def session(services, valid_token):
    services["session"].apply_auth_payload(
        AuthPayload.model_validate(auth_body(valid_token, mfa=True)),
    )
    return services["session"]


@pytest.fixture
def dialog(services, session):
    return services["mfa_disable"]


class TestTotpMode:
    async def test_disable_with_code(self, dialog, session, backend):
        """Should send the TOTP code and turn the flag off."""
        backend.reply("PUT", DISABLE_PATH, json_body={})
        dialog.code.paste("123456")

        assert await dialog.submit() is True

        assert session.mfa_enabled is False
        assert backend.body(backend.requests[0]) == {"code": "123456"}
        assert dialog.code.value() == ""

    async def test_incomplete_code_not_sent(self, dialog, backend):
        """Should not submit a partial code."""
        dialog.code.put(0, "1")
        assert await dialog.submit() is False
        assert backend.requests == []

    async def test_rejected_code(self, dialog, session, backend):
        """Should keep MFA on and clear only the code."""
        backend.reply("PUT", DISABLE_PATH, status=400)
        dialog.code.paste("000000")
        dialog.recovery_code = "keep-me"

        assert await dialog.submit() is False

        assert dialog.error == "Invalid verification code"
        assert dialog.code.value() == ""
        assert dialog.recovery_code == "keep-me"
        assert session.mfa_enabled is True

    async def test_requires_authentication(self, services):
        """Should refuse to run without a session."""
        with pytest.raises(AuthenticationError):
            await services["mfa_disable"].disable_in_recovery_window()


class TestRecoveryCodeMode:
    async def test_disable_with_recovery_code(self, dialog, session, backend):
        """Should send the trimmed recovery code."""
        backend.reply("PUT", DISABLE_PATH, json_body={})
        dialog.set_mode(DisableMode.RECOVERY_CODE)
        dialog.recovery_code = "  abcd-1234 "

        assert await dialog.submit() is True
        assert backend.body(backend.requests[0]) == {"recovery_code": "abcd-1234"}
        assert session.mfa_enabled is False

    async def test_rejected_recovery_code(self, dialog, backend):
        """Should show the recovery-code message."""
        backend.reply("PUT", DISABLE_PATH, status=401)
        dialog.set_mode(DisableMode.RECOVERY_CODE)
        dialog.recovery_code = "wrong"

        assert await dialog.submit() is False
        assert dialog.error == "Invalid recovery code"
        assert dialog.recovery_code == ""


class TestEmailCodesMode:
    async def test_codes_must_be_requested_first(self, dialog, backend):
        """Should not submit before the codes were emailed."""
        dialog.set_mode(DisableMode.EMAIL_CODES)
        dialog.main_email_code.paste("ab12c")
        dialog.recovery_email_code.paste("zz99y")
        assert not dialog.can_submit()
        assert await dialog.submit() is False
        assert backend.requests == []

    async def test_request_then_disable(self, dialog, session, backend):
        """Should request codes for the account and disable with both."""
        backend.reply("POST", "/api/user/mfa/reset", json_body={"id": "r-7"})
        backend.reply("PUT", DISABLE_PATH, json_body={})
        dialog.set_mode(DisableMode.EMAIL_CODES)

        assert await dialog.request_email_codes() is True
        assert backend.body(backend.requests[0]) == {"identifier": "alice"}

        dialog.main_email_code.paste("ab12c")
        dialog.recovery_email_code.paste("zz99y")
        assert await dialog.submit() is True
        assert backend.body(backend.calls("PUT", DISABLE_PATH)[0]) == {
            "main_email_code": "AB12C",
            "recovery_email_code": "ZZ99Y",
        }
        assert session.mfa_enabled is False
        assert not dialog.email_requested

    async def test_request_failure(self, dialog, backend):
        """Should report a failed email request."""
        backend.reply("POST", "/api/user/mfa/reset", status=500)
        dialog.set_mode(DisableMode.EMAIL_CODES)

        assert await dialog.request_email_codes() is False
        assert dialog.error == EMAIL_REQUEST_FAILED_MESSAGE
        assert not dialog.email_requested

    async def test_request_without_identifier(self, services, valid_token):
        """Should refuse when the account has no identifier."""
        services["session"].apply_auth_payload(
            AuthPayload.model_validate(auth_body(valid_token, user=None)),
        )
        with pytest.raises(NoIdentifier):
            await services["mfa_disable"].request_email_codes()

    async def test_rejected_codes(self, dialog, backend):
        """Should show the email-codes message and clear both codes."""
        backend.reply("POST", "/api/user/mfa/reset", json_body={})
        backend.reply("PUT", DISABLE_PATH, status=400)
        dialog.set_mode(DisableMode.EMAIL_CODES)
        dialog.code.paste("123456")
        await dialog.request_email_codes()
        dialog.main_email_code.paste("ab12c")
        dialog.recovery_email_code.paste("zz99y")

        assert await dialog.submit() is False
        assert dialog.error == "Invalid email verification codes"
        assert dialog.main_email_code.value() == ""
        assert dialog.recovery_email_code.value() == ""
        assert dialog.code.value() == "123456"


class TestRecoveryWindow:
    async def test_disable_without_proof(self, dialog, session, backend):
        """Should disable with an empty body while the window is open."""
        backend.reply("PUT", DISABLE_PATH, json_body={})
        session.open_recovery_window(int(time.time()) + 600)
        assert dialog.recovery_window_remaining > 0

        await dialog.disable_in_recovery_window()

        assert backend.body(backend.requests[0]) == {}
        assert session.mfa_enabled is False
        assert not session.in_recovery_window

    async def test_closed_window(self, dialog, session, backend):
        """Should refuse once the window has expired."""
        session.open_recovery_window(int(time.time()) - 1)

        with pytest.raises(RecoveryWindowClosed):
            await dialog.disable_in_recovery_window()
        assert backend.requests == []


class TestReset:
    def test_reset_clears_everything(self, dialog):
        """Should return to the TOTP mode with empty inputs."""
        dialog.set_mode(DisableMode.RECOVERY_CODE)
        dialog.recovery_code = "abc"
        dialog.code.paste("123456")
        dialog.error = "x"

        dialog.reset()

        assert dialog.mode == DisableMode.TOTP
        assert dialog.recovery_code == ""
        assert dialog.code.value() == ""
        assert dialog.error is None
