"""Unit tests for CredentialService flows over the in-memory repository."""

import asyncio
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import bcrypt
import pytest
import pytest_asyncio
from jose import jwt

from idcard_api.config import get_settings
from idcard_api.kernel.identity import credential_service as credential_service_module
from idcard_api.kernel.identity.credential_service import (
    PASSWORD_RESET_REQUEST_MESSAGE,
    VERIFICATION_REQUEST_MESSAGE,
    CredentialService,
    EmailVerificationStatus,
)
from idcard_api.kernel.identity.errors import (
    Expired,
    InvalidCredentials,
    InvalidSignature,
    TokenInvalid,
)
from idcard_api.kernel.identity.password import BCRYPT_ROUNDS, hash_password, verify_password

VERIFY_URL = "https://app.example.com/verify-email"
RESET_URL = "https://app.example.com/reset-password"
PASSWORD = "Password123"


def _token_from(url: str) -> str:
    return parse_qs(urlparse(url).query)["token"][0]


@pytest.fixture
def service(memory_repository, email_sender, jwt_manager, clock) -> CredentialService:
    return CredentialService(
        memory_repository,
        email_sender,
        jwt_manager=jwt_manager,
        settings=get_settings(),
        clock=clock,
    )


@pytest_asyncio.fixture
async def user(memory_repository):
    return await memory_repository.create_user("Alice@Example.com ", "Alice", hash_password(PASSWORD))


class TestLogin:
    @pytest.mark.asyncio
    async def test_wrong_then_right_password(self, service, user, jwt_manager):
        with pytest.raises(InvalidCredentials):
            await service.login("alice@example.com", "WrongPassword1")

        result = await service.login("alice@example.com", PASSWORD)

        claims = jwt.get_unverified_claims(result.access_token)
        assert claims["email"] == "alice@example.com"
        assert claims["role"] == "USER"
        assert claims["purpose"] == "session"
        assert result.expires_in == 3600
        assert jwt_manager.validate(result.access_token).expired is False

    @pytest.mark.asyncio
    async def test_email_lookup_is_case_insensitive(self, service, user):
        result = await service.login("  ALICE@example.COM", PASSWORD)

        assert result.user.id == user.id

    @pytest.mark.asyncio
    async def test_unknown_and_wrong_password_are_indistinguishable(self, service, user):
        with pytest.raises(InvalidCredentials) as unknown:
            await service.login("nobody@example.com", PASSWORD)
        with pytest.raises(InvalidCredentials) as wrong:
            await service.login("alice@example.com", "WrongPassword1")

        assert unknown.value.message == wrong.value.message

    @pytest.mark.asyncio
    @pytest.mark.parametrize("email", ["nobody@example.com", "alice@example.com"])
    async def test_every_failure_pays_one_bcrypt_check(self, service, user, monkeypatch, email):
        calls = []

        def counting_verify(plain, hashed):
            calls.append(hashed)
            return verify_password(plain, hashed)

        monkeypatch.setattr(credential_service_module, "verify_password", counting_verify)

        with pytest.raises(InvalidCredentials):
            await service.login(email, "WrongPassword1")

        assert len(calls) == 1
        assert calls[0].startswith(f"$2b${BCRYPT_ROUNDS:02d}$")

    @pytest.mark.asyncio
    async def test_login_upgrades_hash_with_other_cost(self, service, memory_repository):
        legacy = bcrypt.hashpw(PASSWORD.encode(), bcrypt.gensalt(rounds=4)).decode()
        created = await memory_repository.create_user("legacy@example.com", "Legacy", legacy)

        await service.login("legacy@example.com", PASSWORD)

        stored = await memory_repository.find_user_by_id(created.id)
        assert stored.password_hash != legacy
        assert stored.password_hash.split("$")[2] == f"{BCRYPT_ROUNDS:02d}"
        assert verify_password(PASSWORD, stored.password_hash)

    @pytest.mark.asyncio
    async def test_deleted_account_cannot_log_in(self, service, user):
        await service.delete_account(user.id)

        with pytest.raises(InvalidCredentials):
            await service.login("alice@example.com", PASSWORD)


class TestRegistration:
    @pytest.mark.asyncio
    async def test_register_sends_verification_link(self, service, email_sender):
        result = await service.register("new@example.com", PASSWORD, "New", VERIFY_URL)

        assert result.email_sent is True
        kind, to, url = email_sender.sent[-1]
        assert (kind, to) == ("verification", "new@example.com")
        assert url.startswith(VERIFY_URL + "?token=")
        assert result.dev_token == _token_from(url)

    @pytest.mark.asyncio
    async def test_duplicate_email_rejected(self, service, user):
        with pytest.raises(ValueError):
            await service.register("ALICE@example.com", PASSWORD, "Alice 2", VERIFY_URL)

    @pytest.mark.asyncio
    async def test_dev_token_hidden_in_production(self, service, monkeypatch):
        settings = get_settings()
        monkeypatch.setattr(settings, "environment", "production")
        monkeypatch.setattr(settings, "dev_mode", False)

        result = await service.register("prod@example.com", PASSWORD, "Prod", VERIFY_URL)

        assert result.dev_token is None


class TestEmailVerification:
    @pytest.mark.asyncio
    async def test_request_then_confirm(self, service, user, email_sender, memory_repository):
        result = await service.request_email_verification("alice@example.com", VERIFY_URL)

        assert result.message == VERIFICATION_REQUEST_MESSAGE
        token = _token_from(email_sender.sent[-1][2])
        assert await service.confirm_email_verification(token) is EmailVerificationStatus.VERIFIED
        assert (await memory_repository.find_user_by_id(user.id)).email_verified_at is not None
        assert await service.confirm_email_verification(token) is EmailVerificationStatus.ALREADY_VERIFIED

    @pytest.mark.asyncio
    async def test_uniform_response_for_unknown_and_verified(self, service, user, email_sender):
        unknown = await service.request_email_verification("ghost@example.com", VERIFY_URL)
        eligible = await service.request_email_verification("alice@example.com", VERIFY_URL)
        await service.confirm_email_verification(eligible.dev_token)
        sent_before = len(email_sender.sent)
        verified = await service.request_email_verification("alice@example.com", VERIFY_URL)

        assert unknown.message == verified.message == VERIFICATION_REQUEST_MESSAGE
        assert unknown.dev_token is None and verified.dev_token is None
        assert len(email_sender.sent) == sent_before

    @pytest.mark.asyncio
    async def test_stale_link_is_expired(self, service, user, clock):
        result = await service.request_email_verification("alice@example.com", VERIFY_URL)

        clock.advance(hours=24, minutes=1)

        with pytest.raises(Expired):
            await service.confirm_email_verification(result.dev_token)

    @pytest.mark.asyncio
    async def test_session_credential_is_not_a_verification_link(self, service, user):
        login = await service.login("alice@example.com", PASSWORD)

        with pytest.raises(InvalidSignature):
            await service.confirm_email_verification(login.access_token)

    @pytest.mark.asyncio
    async def test_email_mismatch_rejected(self, service, user, jwt_manager):
        token, _ = jwt_manager.create_email_verification_token(str(user.id), "someone-else@example.com")

        with pytest.raises(InvalidSignature):
            await service.confirm_email_verification(token)

    @pytest.mark.asyncio
    async def test_unknown_subject_rejected(self, service, jwt_manager):
        token, _ = jwt_manager.create_email_verification_token(
            "00000000-0000-0000-0000-000000000000", "alice@example.com"
        )

        with pytest.raises(InvalidSignature):
            await service.confirm_email_verification(token)


class TestPasswordReset:
    @pytest.mark.asyncio
    async def test_reset_flow(self, service, user, email_sender, memory_repository):
        result = await service.request_password_reset("alice@example.com", RESET_URL)

        assert result.message == PASSWORD_RESET_REQUEST_MESSAGE
        kind, to, url = email_sender.sent[-1]
        assert (kind, to) == ("reset", "alice@example.com")
        raw = _token_from(url)
        assert raw == result.dev_token

        await service.reset_password(raw, "NewPassword456")

        stored = await memory_repository.find_user_by_id(user.id)
        assert verify_password("NewPassword456", stored.password_hash)
        with pytest.raises(TokenInvalid):
            await service.reset_password(raw, "AnotherPassword789")

    @pytest.mark.asyncio
    async def test_unknown_email_still_succeeds_silently(self, service, email_sender):
        result = await service.request_password_reset("ghost@example.com", RESET_URL)

        assert result.message == PASSWORD_RESET_REQUEST_MESSAGE
        assert result.dev_token is None
        assert email_sender.sent == []

    @pytest.mark.asyncio
    async def test_request_mail_is_deferred_when_scheduler_given(
        self, memory_repository, email_sender, jwt_manager, clock, user
    ):
        deferred = []
        service = CredentialService(
            memory_repository,
            email_sender,
            jwt_manager=jwt_manager,
            settings=get_settings(),
            clock=clock,
            defer=lambda send, *args: deferred.append((send, args)),
        )

        reset = await service.request_password_reset("alice@example.com", RESET_URL)
        verification = await service.request_email_verification("alice@example.com", VERIFY_URL)

        assert email_sender.sent == []
        for send, args in deferred:
            await send(*args)
        assert [kind for kind, _, _ in email_sender.sent] == ["reset", "verification"]
        assert _token_from(email_sender.sent[0][2]) == reset.dev_token
        assert _token_from(email_sender.sent[1][2]) == verification.dev_token

    @pytest.mark.asyncio
    async def test_reset_after_expiry(self, service, user, clock):
        result = await service.request_password_reset("alice@example.com", RESET_URL)

        clock.advance(minutes=31)

        with pytest.raises(TokenInvalid):
            await service.reset_password(result.dev_token, "NewPassword456")


class TestIdCardTokens:
    @pytest.mark.asyncio
    async def test_generate_and_verify(self, service, user, clock):
        card = await service.create_id_card(user.id, "Alice Card", {"dept": "R&D"})

        issued = await service.generate_id_card_token(user.id, card.id)
        verification = await service.verify_id_card_token(issued.token)

        assert len(issued.token) == 48
        assert issued.expires_at == clock.now + timedelta(minutes=10)
        assert verification.owner_id == user.id
        assert verification.owner_name == "Alice"
        assert verification.card_id == card.id
        assert verification.verified_at == clock.now
        with pytest.raises(TokenInvalid):
            await service.verify_id_card_token(issued.token)

    @pytest.mark.asyncio
    async def test_verification_reports_the_card_the_token_was_minted_for(self, service, user):
        first = await service.create_id_card(user.id, "Staff Card")
        await service.create_id_card(user.id, "Library Card")

        issued = await service.generate_id_card_token(user.id, first.id)
        verification = await service.verify_id_card_token(issued.token)

        assert verification.card_id == first.id

    @pytest.mark.asyncio
    async def test_cannot_mint_for_someone_elses_card(self, service, user, memory_repository):
        other = await memory_repository.create_user("bob@example.com", "Bob", hash_password(PASSWORD))
        card = await service.create_id_card(other.id, "Bob Card")

        with pytest.raises(LookupError):
            await service.generate_id_card_token(user.id, card.id)

    @pytest.mark.asyncio
    async def test_concurrent_verification_single_winner(self, service, user):
        card = await service.create_id_card(user.id, "Alice Card")
        issued = await service.generate_id_card_token(user.id, card.id)

        results = await asyncio.gather(
            service.verify_id_card_token(issued.token),
            service.verify_id_card_token(issued.token),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, TokenInvalid)) == 1
        assert sum(1 for r in results if not isinstance(r, Exception)) == 1

    @pytest.mark.asyncio
    async def test_reset_token_is_not_an_id_card_token(self, service, user):
        result = await service.request_password_reset("alice@example.com", RESET_URL)

        with pytest.raises(TokenInvalid):
            await service.verify_id_card_token(result.dev_token)


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_purge_deleted_users_after_retention(self, service, user, clock, memory_repository):
        await service.delete_account(user.id)

        assert await service.purge_deleted_users() == 0
        clock.advance(days=31)
        assert await service.purge_deleted_users() == 1
        assert await memory_repository.find_user_by_id(user.id) is None

    @pytest.mark.asyncio
    async def test_purge_expired_tokens(self, service, user, clock, memory_repository):
        await service.request_password_reset("alice@example.com", RESET_URL)
        clock.advance(minutes=31)

        assert await service.purge_expired_tokens() == 1
        assert await service.purge_expired_tokens() == 0
