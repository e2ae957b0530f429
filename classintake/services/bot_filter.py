import logging

import httpx

logger = logging.getLogger(__name__)

TURNSTILE_VERIFY_URL = "https://challenges.cloudflare.com/turnstile/v0/siteverify"


class HoneypotTriggered(Exception):
    """The decoy field was filled in. Callers answer success and persist nothing."""


class CaptchaRejected(Exception):
    def __init__(self, message: str, details: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []


class TurnstileVerifier:
    def __init__(self, secret: str, timeout: float = 10.0) -> None:
        self._secret = secret
        self._timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self._secret)

    async def verify(self, token: str, remote_ip: str | None = None) -> None:
        """
        Verify a Turnstile token server-to-server.
        Raises CaptchaRejected on a missing token, a failed check or an unreachable service.
        """
        if not token:
            raise CaptchaRejected("Missing Turnstile token.")

        form = {"secret": self._secret, "response": token}
        if remote_ip:
            form["remoteip"] = remote_ip

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(TURNSTILE_VERIFY_URL, data=form)
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("[turnstile] verification call failed | error=%s", exc)
            raise CaptchaRejected("Turnstile verification failed.", [str(exc)]) from exc

        if not isinstance(data, dict) or data.get("success") is not True:
            codes = data.get("error-codes", []) if isinstance(data, dict) else []
            logger.info("[turnstile] token rejected | codes=%s", codes)
            raise CaptchaRejected("Turnstile verification failed.", [str(c) for c in codes])


class BotFilter:
    def __init__(self, verifier: TurnstileVerifier) -> None:
        self._verifier = verifier
        if not verifier.enabled:
            logger.warning("[turnstile] TURNSTILE_SECRET_KEY not set; verification is skipped")

    async def check(self, honeypot: str, token: str, client_ip: str | None = None) -> None:
        """Raises HoneypotTriggered or CaptchaRejected; returns quietly when the submission may proceed."""
        if honeypot:
            logger.info("[bot] honeypot filled | ip=%s", client_ip)
            raise HoneypotTriggered()
        if not self._verifier.enabled:
            return
        await self._verifier.verify(token, client_ip)
