from unittest.mock import MagicMock

import pytest
from sqlalchemy import update
from sqlalchemy.orm import Session

from conftest import FakeClock, RecordingSmsSender, build_broker, wechat_handler
from mcare_api.core.errors import (
    AccountNotFound,
    ExternalAuthError,
    InvalidCredentials,
    InvalidOrExpiredCode,
    RateLimited,
    TokenInvalid,
)
from mcare_api.models.account import Account
from mcare_api.models.enums import AccountStatus, LoginChannel
from mcare_api.services.auth_flow import AuthenticationOrchestrator


def test_phone_scenario_send_verify_and_reuse(
    orchestrator: AuthenticationOrchestrator,
    sms_sender: RecordingSmsSender,
    db_session: Session,
):
    assert orchestrator.send_phone_code("+1", "5551234567") == 300
    code = sms_sender.last_code()
    assert sms_sender.sent == [("+1", "5551234567", code)]

    result = orchestrator.verify_phone_and_login(db_session, "+1", "5551234567", code, "MOTHER")

    assert result.channel == LoginChannel.PHONE
    assert result.is_new_account is True
    assert result.account.phone == "+15551234567"
    assert orchestrator.codec.verify(result.token.token) == "+15551234567"
    assert result.account.last_login_at is not None

    with pytest.raises(InvalidOrExpiredCode):
        orchestrator.verify_phone_and_login(db_session, "+1", "5551234567", code, "MOTHER")


def test_second_send_within_window_raises_rate_limited(
    orchestrator: AuthenticationOrchestrator,
    sms_sender: RecordingSmsSender,
    clock: FakeClock,
):
    orchestrator.send_phone_code("+1", "5551234567")

    with pytest.raises(RateLimited):
        orchestrator.send_phone_code("+1", "5551234567")
    assert len(sms_sender.sent) == 1

    clock.advance(60)
    orchestrator.send_phone_code("+1", "5551234567")
    assert len(sms_sender.sent) == 2


def test_wrong_code_raises_and_does_not_create_account(
    orchestrator: AuthenticationOrchestrator,
    db_session: Session,
):
    orchestrator.send_phone_code("+1", "5551234567")

    with pytest.raises(InvalidOrExpiredCode):
        orchestrator.verify_phone_and_login(db_session, "+1", "5551234567", "000000", "MOTHER")

    assert db_session.query(Account).count() == 0


def test_repeat_phone_login_reuses_account(
    orchestrator: AuthenticationOrchestrator,
    sms_sender: RecordingSmsSender,
    db_session: Session,
    clock: FakeClock,
):
    orchestrator.send_phone_code("+86", "13800000000")
    first = orchestrator.verify_phone_and_login(db_session, "+86", "13800000000", sms_sender.last_code(), "MATRON")
    clock.advance(61)
    orchestrator.send_phone_code("+86", "13800000000")
    second = orchestrator.verify_phone_and_login(db_session, "+86", "13800000000", sms_sender.last_code(), "MOTHER")

    assert second.is_new_account is False
    assert second.account.id == first.account.id
    assert second.account.role == "MATRON"


def test_wechat_login_uses_openid_as_subject(orchestrator: AuthenticationOrchestrator, db_session: Session):
    result = orchestrator.login_with_wechat(db_session, "auth-code-1", "MOTHER")

    assert result.channel == LoginChannel.WECHAT
    assert result.is_new_account is True
    assert result.account.wechat_open_id == "openid-001"
    assert result.account.wechat_union_id == "union-001"
    assert orchestrator.codec.verify(result.token.token) == "openid-001"
    assert orchestrator.current_account(db_session, result.token.token).id == result.account.id


def test_wechat_provider_failure_creates_nothing(
    codec,
    code_store,
    sms_sender,
    db_session: Session,
):
    orchestrator = AuthenticationOrchestrator(
        codec=codec,
        code_store=code_store,
        broker=build_broker(wechat_handler(token_payload={"errcode": 40029, "errmsg": "invalid code"})),
        resolver=MagicMock(),
        sms_sender=sms_sender,
    )

    with pytest.raises(ExternalAuthError):
        orchestrator.login_with_wechat(db_session, "bad-code", "MOTHER")

    orchestrator.resolver.resolve_or_create_from_external_profile.assert_not_called()


def test_register_and_password_login(orchestrator: AuthenticationOrchestrator, db_session: Session):
    registered = orchestrator.register(
        db_session,
        handle="alice@example.com",
        password="StrongPassw0rd!",
        role="MOTHER",
        phone="+15551234567",
    )
    assert registered.is_new_account is True
    assert orchestrator.codec.verify(registered.token.token) == "alice@example.com"

    by_handle = orchestrator.login_with_password(db_session, " alice@example.com ", "StrongPassw0rd!")
    by_phone = orchestrator.login_with_password(db_session, "+15551234567", "StrongPassw0rd!")

    assert by_handle.channel == LoginChannel.PASSWORD
    assert by_handle.is_new_account is False
    assert orchestrator.codec.verify(by_handle.token.token) == "alice@example.com"
    # 令牌主体为登录时使用的标识。
    assert orchestrator.codec.verify(by_phone.token.token) == "+15551234567"
    assert orchestrator.current_account(db_session, by_phone.token.token).id == registered.account.id


def test_password_login_wrong_password(orchestrator: AuthenticationOrchestrator, db_session: Session):
    orchestrator.register(db_session, handle="alice@example.com", password="StrongPassw0rd!", role="MOTHER")

    with pytest.raises(InvalidCredentials):
        orchestrator.login_with_password(db_session, "alice@example.com", "wrong-password")


def test_disabled_account_cannot_login_or_authenticate(orchestrator: AuthenticationOrchestrator, db_session: Session):
    registered = orchestrator.register(
        db_session, handle="alice@example.com", password="StrongPassw0rd!", role="MOTHER"
    )
    db_session.execute(
        update(Account).where(Account.id == registered.account.id).values(status=AccountStatus.DISABLED)
    )
    db_session.commit()

    with pytest.raises(InvalidCredentials):
        orchestrator.login_with_password(db_session, "alice@example.com", "StrongPassw0rd!")
    with pytest.raises(InvalidCredentials):
        orchestrator.current_account(db_session, registered.token.token)


def test_current_account_for_unknown_subject(orchestrator: AuthenticationOrchestrator, db_session: Session):
    token = orchestrator.codec.issue("ghost@example.com").token

    with pytest.raises(AccountNotFound):
        orchestrator.current_account(db_session, token)


def test_current_account_with_expired_token(
    orchestrator: AuthenticationOrchestrator,
    db_session: Session,
    clock: FakeClock,
):
    registered = orchestrator.register(
        db_session, handle="alice@example.com", password="StrongPassw0rd!", role="MOTHER"
    )
    clock.advance(3600)

    with pytest.raises(TokenInvalid):
        orchestrator.current_account(db_session, registered.token.token)


def test_refresh_keeps_subject(orchestrator: AuthenticationOrchestrator, clock: FakeClock):
    issued = orchestrator.codec.issue("openid-001")
    clock.advance(10)

    refreshed = orchestrator.refresh(issued.token)

    assert refreshed is not None
    assert refreshed.subject == "openid-001"
    assert refreshed.expires_at == clock.now + (issued.expires_at - issued.issued_at)
