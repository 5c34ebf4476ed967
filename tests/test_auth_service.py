import time

import pytest

from sessionguard.errors import (
    ApplicationError,
    EmailAlreadyInUse,
    MfaInvalidCode,
    MfaInvalidEmailCodes,
    MfaInvalidRecoveryCode,
    NoIdentifier,
    NoMfaToken,
    NoResetSession,
)
from sessionguard.models.auth_models import AuthErrorCode, AuthPayload, LOGIN_ERROR_MESSAGES
from sessionguard.models.enums import AuthPhase, LoginStatus
from sessionguard.services.auth_service import AuthService, parse_epoch_header

from conftest import auth_body


@pytest.fixture
def auth(services) -> AuthService:
    return services["auth_service"]


@pytest.fixture
def session(services):
    return services["session"]


def _sign_in(session, token):
    session.apply_auth_payload(AuthPayload.model_validate(auth_body(token)))


class TestParseEpochHeader:
    @pytest.mark.parametrize(
        "value, expected",
        [("1700000000", 1700000000), (" 1700000000.5 ", 1700000000), ("0", None), ("-5", None), ("soon", None), (None, None)],
    )
    def test_values(self, value, expected):
        """Should parse positive epoch seconds and drop everything else."""
        assert parse_epoch_header(value) == expected


class TestLogin:
    async def test_success(self, auth, session, backend, storage, valid_token):
        """Should authenticate and persist the identity."""
        backend.reply("POST", "/api/login", json_body=auth_body(valid_token, mfa=True))

        outcome = await auth.login(" alice ", "hunter2")

        assert outcome.status == LoginStatus.AUTHENTICATED
        assert outcome.is_authenticated
        assert session.phase == AuthPhase.AUTHENTICATED
        assert session.username == "alice"
        assert session.mfa_enabled is True
        assert "auth" in storage
        assert backend.body(backend.requests[0]) == {"username": "alice", "password": "hunter2"}

    async def test_mfa_required_from_401_header(self, auth, session, backend, navigator):
        """Should enter the challenge when the 401 carries a challenge token."""
        backend.reply("POST", "/api/login", status=401, headers={"X-MFA-Token": "challenge-1"})

        outcome = await auth.login(" alice ", "hunter2")

        assert outcome.requires_mfa
        assert outcome.challenge_token == "challenge-1"
        assert session.phase == AuthPhase.MFA_PENDING
        assert session.pending_identifier == "alice"
        assert not session.is_authenticated
        assert navigator.location is None

    async def test_mfa_required_from_success_without_token(self, auth, session, backend):
        """Should also accept a challenge header on a token-less success."""
        backend.reply("POST", "/api/login", json_body={"user": "alice"}, headers={"X-MFA-Token": "c-2"})

        outcome = await auth.login("alice", "pw")

        assert outcome.requires_mfa
        assert session.challenge_token == "c-2"

    async def test_blank_challenge_header_is_rejection(self, auth, session, backend):
        """Should treat an empty challenge header as wrong credentials."""
        backend.reply("POST", "/api/login", status=401, headers={"X-MFA-Token": ""})

        outcome = await auth.login("alice", "pw")

        assert outcome.error_code == AuthErrorCode.INVALID_CREDENTIALS
        assert session.phase == AuthPhase.ANONYMOUS

    async def test_invalid_credentials_message_is_generic(self, auth, backend):
        """Should not reveal whether the account exists."""
        backend.reply("POST", "/api/login", status=401, json_body={"message": "no such user"})

        outcome = await auth.login("ghost", "pw")

        assert outcome.status == LoginStatus.REJECTED
        assert outcome.error_message == LOGIN_ERROR_MESSAGES[AuthErrorCode.INVALID_CREDENTIALS]
        assert "ghost" not in outcome.error_message

    async def test_unconfirmed_account(self, auth, backend):
        """Should map 403 to an unconfirmed account."""
        backend.reply("POST", "/api/login", status=403)
        outcome = await auth.login("alice", "pw")
        assert outcome.error_code == AuthErrorCode.ACCOUNT_NOT_CONFIRMED

    async def test_locked_account_with_lockout(self, auth, backend):
        """Should report the lockout expiry for a locked account."""
        backend.reply("POST", "/api/login", status=429, headers={"X-Account-Lockout": "1700000900"})
        outcome = await auth.login("alice", "pw")
        assert outcome.error_code == AuthErrorCode.ACCOUNT_LOCKED
        assert outcome.lockout_until == 1700000900

    async def test_locked_account_without_header(self, auth, backend):
        """Should still report a lock when the header is missing."""
        backend.reply("POST", "/api/login", status=429)
        outcome = await auth.login("alice", "pw")
        assert outcome.error_code == AuthErrorCode.ACCOUNT_LOCKED
        assert outcome.lockout_until is None

    async def test_network_error(self, auth, backend, session):
        """Should report an unreachable backend without raising."""
        backend.unreachable("POST", "/api/login")
        outcome = await auth.login("alice", "pw")
        assert outcome.error_code == AuthErrorCode.NETWORK_ERROR
        assert session.phase == AuthPhase.ANONYMOUS

    async def test_previous_session_dropped(self, auth, session, backend, storage, valid_token):
        """Should start every password login from anonymous."""
        _sign_in(session, valid_token)
        backend.reply("POST", "/api/login", status=401)

        await auth.login("bob", "pw")

        assert session.phase == AuthPhase.ANONYMOUS
        assert "auth" not in storage
        assert "Authorization" not in backend.requests[0].headers


class TestLoginWithMfa:
    async def test_no_challenge(self, auth):
        """Should refuse without a pending challenge."""
        with pytest.raises(NoMfaToken):
            await auth.login_with_mfa("123456")

    async def test_success(self, auth, session, backend, valid_token):
        """Should exchange the challenge and code for a session."""
        session.begin_challenge("challenge-1", "alice")
        backend.reply("POST", "/api/user/mfa/auth", json_body=auth_body(valid_token, mfa=True))

        await auth.login_with_mfa("123456")

        assert session.phase == AuthPhase.AUTHENTICATED
        assert session.challenge_token is None
        assert backend.body(backend.requests[0]) == {"token": "challenge-1", "code": "123456"}

    async def test_wrong_code_keeps_challenge(self, auth, session, backend, navigator):
        """Should raise and stay pending when the code is rejected."""
        session.begin_challenge("challenge-1", "alice")
        backend.reply("POST", "/api/user/mfa/auth", status=401)

        with pytest.raises(MfaInvalidCode) as exc_info:
            await auth.login_with_mfa("000000")

        assert str(exc_info.value) == "Invalid verification code"
        assert session.phase == AuthPhase.MFA_PENDING
        assert navigator.location is None

    async def test_success_without_token_is_invalid(self, auth, session, backend):
        """Should not authenticate from a token-less answer."""
        session.begin_challenge("challenge-1", "alice")
        backend.reply("POST", "/api/user/mfa/auth", json_body={"user": "alice"})

        with pytest.raises(MfaInvalidCode):
            await auth.login_with_mfa("123456")
        assert session.phase == AuthPhase.MFA_PENDING


class TestRecoverWithCode:
    async def test_opens_recovery_window(self, auth, session, backend, valid_token):
        """Should authenticate and open the window from the expiry header."""
        expiry = int(time.time()) + 900
        session.begin_challenge("challenge-1", "alice")
        backend.reply(
            "POST", "/api/user/mfa/recover",
            json_body=auth_body(valid_token, mfa=True),
            headers={"X-Expires-At": str(expiry)},
        )

        result = await auth.recover_with_code(" ABCD-1234 ")

        assert result == expiry
        assert session.phase == AuthPhase.RECOVERY_WINDOW
        assert 0 < session.recovery_window_remaining() <= 900
        assert backend.body(backend.requests[0]) == {"identifier": "alice", "recovery_code": "ABCD-1234"}

    async def test_without_expiry_header(self, auth, session, backend, valid_token):
        """Should authenticate without a window when no expiry is sent."""
        backend.reply("POST", "/api/user/mfa/recover", json_body=auth_body(valid_token))

        assert await auth.recover_with_code("code", identifier="alice") is None
        assert session.phase == AuthPhase.AUTHENTICATED

    async def test_no_identifier(self, auth):
        """Should refuse when the account cannot be identified."""
        with pytest.raises(NoIdentifier):
            await auth.recover_with_code("code")

    async def test_rejected(self, auth, session, backend):
        """Should raise with a message that covers both inputs."""
        session.begin_challenge("challenge-1", "alice")
        backend.reply("POST", "/api/user/mfa/recover", status=400)

        with pytest.raises(MfaInvalidRecoveryCode) as exc_info:
            await auth.recover_with_code("wrong")

        assert str(exc_info.value) == "Invalid recovery code or username"
        assert session.phase == AuthPhase.MFA_PENDING


class TestMfaReset:
    async def test_request_records_reset_session(self, auth, session, backend):
        """Should send the identifier and remember the reset id."""
        session.begin_challenge("challenge-1", "alice")
        backend.reply("POST", "/api/user/mfa/reset", json_body={"id": "reset-42"})

        assert await auth.request_mfa_reset() == "alice"

        assert session.reset_session_id == "reset-42"
        assert session.reset_identifier == "alice"
        assert session.phase == AuthPhase.MFA_PENDING

    async def test_request_without_identifier(self, auth):
        """Should refuse when nothing identifies the account."""
        with pytest.raises(NoIdentifier):
            await auth.request_mfa_reset()

    async def test_complete_uses_recorded_id(self, auth, session, backend, valid_token):
        """Should prove both codes against the recorded reset session."""
        session.set_reset_session("reset-42", "alice")
        backend.reply("PUT", "/api/user/mfa/reset/reset-42", json_body=auth_body(valid_token))

        await auth.complete_mfa_reset("AB12C", "ZZ99Y")

        assert session.phase == AuthPhase.AUTHENTICATED
        assert session.reset_session_id is None
        assert backend.body(backend.requests[0]) == {
            "main_email_code": "AB12C",
            "recovery_email_code": "ZZ99Y",
        }

    async def test_complete_prefers_explicit_id(self, auth, session, backend, valid_token):
        """Should use the id from the emailed link when given."""
        session.set_reset_session("reset-42", "alice")
        backend.reply("PUT", "/api/user/mfa/reset/from-link", json_body=auth_body(valid_token))

        await auth.complete_mfa_reset("AB12C", "ZZ99Y", reset_session_id="from-link")

        assert session.is_authenticated

    async def test_complete_without_reset_session(self, auth):
        """Should refuse when no reset was requested."""
        with pytest.raises(NoResetSession):
            await auth.complete_mfa_reset("AB12C", "ZZ99Y")

    async def test_complete_rejected(self, auth, session, backend):
        """Should raise and keep the reset session for another attempt."""
        session.set_reset_session("reset-42", "alice")
        backend.reply("PUT", "/api/user/mfa/reset/reset-42", status=400)

        with pytest.raises(MfaInvalidEmailCodes):
            await auth.complete_mfa_reset("AB12C", "ZZ99Y")

        assert session.reset_session_id == "reset-42"
        assert not session.is_authenticated


class TestFetchUser:
    async def test_anonymous_is_noop(self, auth, backend):
        """Should not call the backend without a session."""
        assert await auth.fetch_user() is False
        assert backend.requests == []

    async def test_refreshes_identity(self, auth, session, backend, valid_token):
        """Should overwrite identity fields from the backend."""
        _sign_in(session, valid_token)
        backend.reply("GET", "/api/auth/user", json_body={"username": "alice", "name": "Alice Liddell", "mfa_enabled": True})

        assert await auth.fetch_user() is True
        assert session.state.display_name == "Alice Liddell"
        assert session.mfa_enabled is True
        assert session.token == valid_token

    async def test_explicit_null_clears_field(self, auth, session, backend, valid_token, services):
        """Should drop a recovery email the backend reports as removed."""
        _sign_in(session, valid_token)
        assert session.recovery_email == "alice.backup@example.com"
        backend.reply("GET", "/api/auth/user", json_body={"username": "alice", "recovery_email": None})

        assert await auth.fetch_user() is True

        assert session.recovery_email is None
        assert services["session_cache"].load().recovery_email is None
        services["mfa_enrollment"].open()
        assert not services["mfa_enrollment"].has_recovery_email

    async def test_absent_fields_kept(self, auth, session, backend, valid_token):
        """Should leave fields the response does not mention untouched."""
        session.apply_auth_payload(AuthPayload.model_validate(auth_body(valid_token, mfa=True)))
        backend.reply("GET", "/api/auth/user", json_body={"name": "Alice Liddell"})

        assert await auth.fetch_user() is True

        assert session.state.display_name == "Alice Liddell"
        assert session.recovery_email == "alice.backup@example.com"
        assert session.state.tenant_id == "tenant-1"
        assert session.mfa_enabled is True

    async def test_failure_is_swallowed(self, auth, session, backend, valid_token):
        """Should report failure without raising."""
        _sign_in(session, valid_token)
        backend.reply("GET", "/api/auth/user", status=500)

        assert await auth.fetch_user() is False
        assert session.is_authenticated

    async def test_revoked_session_logged_out(self, auth, session, backend, navigator, valid_token):
        """Should leave a revoked session to the request guard."""
        _sign_in(session, valid_token)
        backend.reply("GET", "/api/auth/user", status=401)

        assert await auth.fetch_user() is False
        assert not session.is_authenticated
        assert navigator.location == "/login"


class TestProfile:
    async def test_update_recovery_email(self, auth, session, backend, valid_token):
        """Should patch the backend and the session."""
        _sign_in(session, valid_token)
        backend.reply("PATCH", "/api/users", json_body={})

        await auth.update_profile(recovery_email=" new@example.com ")

        assert session.recovery_email == "new@example.com"
        assert backend.body(backend.requests[0]) == {"recovery_email": "new@example.com"}

    async def test_email_in_use(self, auth, session, backend, valid_token):
        """Should map a conflict to EmailAlreadyInUse."""
        _sign_in(session, valid_token)
        backend.reply("PATCH", "/api/users", status=409)

        with pytest.raises(EmailAlreadyInUse):
            await auth.update_profile(email="taken@example.com")
        assert session.state.primary_email == "alice@example.com"

    async def test_other_errors_propagate(self, auth, session, backend, valid_token):
        """Should re-raise non-conflict failures unchanged."""
        _sign_in(session, valid_token)
        backend.reply("PATCH", "/api/users", status=422)

        with pytest.raises(ApplicationError):
            await auth.update_profile(name="A")

    async def test_unknown_field(self, auth):
        """Should refuse fields the backend does not accept."""
        with pytest.raises(ValueError):
            await auth.update_profile(token="x")

    async def test_nothing_to_update(self, auth):
        """Should refuse an empty update."""
        with pytest.raises(ValueError):
            await auth.update_profile(name=None)

    def test_validate_email(self):
        """Should accept plausible addresses only."""
        assert AuthService.validate_email("a@example.com").is_valid
        assert not AuthService.validate_email("").is_valid
        assert not AuthService.validate_email("not-an-email").is_valid


class TestMfaManagement:
    async def test_generate(self, auth, session, backend, valid_token):
        """Should decode the secret, link and codes."""
        _sign_in(session, valid_token)
        backend.reply(
            "GET", "/api/user/mfa/generate",
            json_body={"secret": "S3CR3T", "link": "otpauth://totp/x", "recovery_codes": ["a", "b"]},
        )

        result = await auth.generate_mfa()

        assert result.secret == "S3CR3T"
        assert result.recovery_codes == ["a", "b"]

    async def test_enable_rejected(self, auth, session, backend, valid_token):
        """Should map a rejected code to MfaInvalidCode."""
        _sign_in(session, valid_token)
        backend.reply("PUT", "/api/user/mfa/enable", status=400)

        with pytest.raises(MfaInvalidCode):
            await auth.enable_mfa("123456", "S3CR3T", ["a"])

    def test_update_mfa_status_persists(self, auth, session, services, valid_token):
        """Should persist the flag."""
        _sign_in(session, valid_token)
        auth.update_mfa_status(True)
        assert services["session_cache"].load().mfa_enabled is True

    def test_logout(self, auth, session, storage, valid_token):
        """Should clear the session and storage."""
        _sign_in(session, valid_token)
        auth.logout()
        assert session.phase == AuthPhase.ANONYMOUS
        assert "auth" not in storage
