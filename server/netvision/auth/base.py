"""Auth interface (port) for resolving client tokens to user ids."""

from __future__ import annotations

import asyncio
from typing import Protocol

import structlog

from netvision.core.errors import AuthenticationError, AuthUnavailableError

log = structlog.get_logger()


class TokenVerifier(Protocol):
    """Port: resolves an opaque token to a user id.

    Raises AuthenticationError when the token is rejected. Any other
    exception is treated as the verifier being unavailable.
    """

    async def verify(self, token: str) -> str: ...


async def verify_token(verifier: TokenVerifier, token: object, timeout: float | None) -> str:
    """Run the verifier with a timeout.

    Raises AuthenticationError for a rejected token and AuthUnavailableError
    when the verifier fails or does not answer in time.
    """
    try:
        return await asyncio.wait_for(verifier.verify(token), timeout=timeout)
    except AuthenticationError:
        raise
    except asyncio.TimeoutError:
        log.error("auth_timeout", timeout=timeout)
        raise AuthUnavailableError("verifier timed out") from None
    except Exception as exc:
        log.error("auth_unavailable", exc_info=True)
        raise AuthUnavailableError(str(exc)) from exc
