from contextlib import contextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from classintake.services.bot_filter import (
    TURNSTILE_VERIFY_URL,
    BotFilter,
    CaptchaRejected,
    HoneypotTriggered,
    TurnstileVerifier,
)


@contextmanager
def _verify_client(post: AsyncMock):
    with patch("classintake.services.bot_filter.httpx.AsyncClient") as mock_client_cls:
        mock_client = AsyncMock()
        mock_client.post = post
        mock_client_cls.return_value.__aenter__ = AsyncMock(return_value=mock_client)
        mock_client_cls.return_value.__aexit__ = AsyncMock(return_value=False)
        yield mock_client


def _json_response(body):
    response = MagicMock()
    response.json = MagicMock(return_value=body)
    return response


@pytest.mark.asyncio
async def test_honeypot_trips_before_captcha():
    post = AsyncMock()
    with _verify_client(post):
        with pytest.raises(HoneypotTriggered):
            await BotFilter(TurnstileVerifier("secret")).check("http://spam.example", "token")
    post.assert_not_called()


@pytest.mark.asyncio
async def test_no_secret_skips_verification():
    post = AsyncMock()
    with _verify_client(post):
        await BotFilter(TurnstileVerifier("")).check("", "")
    post.assert_not_called()


@pytest.mark.asyncio
async def test_missing_token_rejected_when_secret_set():
    with pytest.raises(CaptchaRejected) as exc_info:
        await BotFilter(TurnstileVerifier("secret")).check("", "")
    assert exc_info.value.message == "Missing Turnstile token."


@pytest.mark.asyncio
async def test_successful_verification_posts_secret_token_and_ip():
    post = AsyncMock(return_value=_json_response({"success": True}))
    with _verify_client(post):
        await BotFilter(TurnstileVerifier("secret")).check("", "tok-123", "203.0.113.9")
    post.assert_awaited_once_with(
        TURNSTILE_VERIFY_URL,
        data={"secret": "secret", "response": "tok-123", "remoteip": "203.0.113.9"},
    )


@pytest.mark.asyncio
async def test_failed_verification_carries_error_codes():
    post = AsyncMock(return_value=_json_response({"success": False, "error-codes": ["invalid-input-response"]}))
    with _verify_client(post):
        with pytest.raises(CaptchaRejected) as exc_info:
            await TurnstileVerifier("secret").verify("bad-token")
    assert exc_info.value.message == "Turnstile verification failed."
    assert exc_info.value.details == ["invalid-input-response"]


@pytest.mark.asyncio
async def test_timeout_is_a_rejection():
    post = AsyncMock(side_effect=httpx.TimeoutException("timeout"))
    with _verify_client(post):
        with pytest.raises(CaptchaRejected):
            await TurnstileVerifier("secret").verify("tok")


@pytest.mark.asyncio
async def test_non_json_body_is_a_rejection():
    response = MagicMock()
    response.json = MagicMock(side_effect=ValueError("no json"))
    with _verify_client(AsyncMock(return_value=response)):
        with pytest.raises(CaptchaRejected):
            await TurnstileVerifier("secret").verify("tok")
