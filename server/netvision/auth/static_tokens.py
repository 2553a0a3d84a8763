"""Static token verifier: API tokens from configuration."""

from __future__ import annotations

import hmac

import structlog

from netvision.core.errors import AuthenticationError

log = structlog.get_logger()


class StaticTokenVerifier:
    """TokenVerifier backed by a fixed token -> user id map."""

    def __init__(self, tokens: dict[str, str]) -> None:
        self._tokens = dict(tokens)

    async def verify(self, token: str) -> str:
        if not token or not isinstance(token, str):
            raise AuthenticationError("Token required")

        # Compare every entry in constant time.
        user_id = None
        for known, uid in self._tokens.items():
            if hmac.compare_digest(known.encode(), token.encode()):
                user_id = uid
        if user_id is None:
            log.info("token_rejected")
            raise AuthenticationError("Invalid token")
        return user_id
