import httpx
import pytest

from conftest import build_broker, wechat_handler
from mcare_api.core.errors import ExternalAuthError


def test_authenticate_returns_profile_with_union_id_from_exchange():
    broker = build_broker(wechat_handler())

    profile = broker.authenticate("auth-code-1")

    assert profile.subject_id == "openid-001"
    assert profile.linking_id == "union-001"
    assert profile.display_name == "小月"
    assert profile.avatar_url == "https://img.test/a.png"


def test_authenticate_sends_expected_query_parameters():
    seen: list[httpx.Request] = []
    inner = wechat_handler()

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return inner(request)

    build_broker(handler).authenticate("auth-code-1")

    token_request, profile_request = seen
    assert dict(token_request.url.params) == {
        "appid": "wx-app",
        "secret": "wx-secret",
        "code": "auth-code-1",
        "grant_type": "authorization_code",
    }
    assert dict(profile_request.url.params) == {
        "access_token": "wx-access-token",
        "openid": "openid-001",
        "lang": "zh_CN",
    }


def test_profile_union_id_takes_precedence():
    broker = build_broker(
        wechat_handler(
            profile_payload={"openid": "openid-001", "unionid": "union-from-profile", "nickname": "小月"},
        )
    )

    assert broker.authenticate("auth-code-1").linking_id == "union-from-profile"


def test_missing_nickname_and_avatar_are_left_empty():
    broker = build_broker(wechat_handler(profile_payload={"openid": "openid-001"}))

    profile = broker.authenticate("auth-code-1")

    assert profile.display_name is None
    assert profile.avatar_url is None


@pytest.mark.parametrize(
    "token_payload",
    [
        {"errcode": 40029, "errmsg": "invalid code"},
        {"access_token": "wx-access-token"},
        {"openid": "openid-001"},
    ],
)
def test_bad_token_exchange_raises_external_auth_error(token_payload: dict):
    broker = build_broker(wechat_handler(token_payload=token_payload))

    with pytest.raises(ExternalAuthError):
        broker.authenticate("bad-code")


def test_userinfo_error_code_raises_external_auth_error():
    broker = build_broker(wechat_handler(profile_payload={"errcode": 40003, "errmsg": "invalid openid"}))

    with pytest.raises(ExternalAuthError):
        broker.authenticate("auth-code-1")


def test_network_failure_raises_external_auth_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ExternalAuthError):
        build_broker(handler).authenticate("auth-code-1")


def test_non_json_body_raises_external_auth_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>busy</html>")

    with pytest.raises(ExternalAuthError):
        build_broker(handler).authenticate("auth-code-1")


def test_empty_userinfo_body_raises_external_auth_error():
    token_handler = wechat_handler()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/userinfo"):
            return httpx.Response(200, json={})
        return token_handler(request)

    with pytest.raises(ExternalAuthError):
        build_broker(handler).authenticate("auth-code-1")


def test_server_error_raises_external_auth_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"message": "upstream down"})

    with pytest.raises(ExternalAuthError):
        build_broker(handler).authenticate("auth-code-1")


def test_error_message_does_not_leak_provider_payload():
    broker = build_broker(wechat_handler(token_payload={"errcode": 40029, "errmsg": "secret-detail"}))

    with pytest.raises(ExternalAuthError) as exc_info:
        broker.authenticate("bad-code")

    assert "secret-detail" not in exc_info.value.message
