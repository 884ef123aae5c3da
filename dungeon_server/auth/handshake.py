"""Challenge/response authentication against the settlement service.

1. generate an ephemeral session key
2. send ``auth_request`` naming the wallet, session key, scope and allowances
3. sign the returned challenge with the wallet key (EIP-712 policy)
4. send ``auth_verify``; on success every later message is signed with the
   session key only
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Protocol

import anyio

from .. import config
from ..errors import AuthRejected, AuthTimeout
from ..models.rpc import build_request, now_ms, parse_frame
from .signer import RequestSigner, SessionKey, address_of, generate_session_key, sign_policy

log = logging.getLogger(__name__)

AUTH_REQUEST = "auth_request"
AUTH_CHALLENGE = "auth_challenge"
AUTH_VERIFY = "auth_verify"


class Connection(Protocol):
    async def send(self, message: str) -> None: ...

    async def recv(self) -> str | bytes: ...

    async def close(self) -> None: ...

    def __aiter__(self): ...


@dataclass
class AuthResult:
    session_key: SessionKey
    signer: RequestSigner
    token: str | None = None


def build_auth_request(
    wallet_address: str,
    session_key: SessionKey,
    app_name: str = config.APP_NAME,
    scope: str = config.AUTH_SCOPE,
    allowances: list[dict[str, str]] | None = None,
    expiry_seconds: int = config.SESSION_EXPIRY_SECONDS,
) -> dict[str, Any]:
    if allowances is None:
        allowances = [{"asset": config.ALLOWANCE_ASSET, "amount": config.ALLOWANCE_AMOUNT}]
    return {
        "address": wallet_address,
        "session_key": session_key.address,
        "app_name": app_name,
        "application": wallet_address,
        "allowances": allowances,
        "expire": str(int(time.time()) + expiry_seconds),
        "scope": scope,
    }


async def authenticate(
    connection: Connection,
    wallet_private_key: str,
    timeout: float = config.AUTH_TIMEOUT,
    app_name: str = config.APP_NAME,
    **request_options: Any,
) -> AuthResult:
    wallet_address = address_of(wallet_private_key)
    session_key = generate_session_key()
    log.info(f"Authenticating {wallet_address} with session key {session_key.address}")

    auth_request = build_auth_request(
        wallet_address, session_key, app_name=app_name, **request_options
    )

    try:
        with anyio.fail_after(timeout):
            await connection.send(
                json.dumps({"req": build_request(now_ms(), AUTH_REQUEST, auth_request), "sig": []})
            )
            log.debug(f"▶ Sending: {AUTH_REQUEST}")
            token = await _await_verification(
                connection, wallet_private_key, auth_request, app_name
            )
    except TimeoutError:
        log.error(f"Authentication timed out after {timeout}s")
        raise AuthTimeout(timeout) from None

    log.info("Authentication successful")
    return AuthResult(
        session_key=session_key,
        signer=RequestSigner(session_key.private_key),
        token=token,
    )


async def _await_verification(
    connection: Connection,
    wallet_private_key: str,
    auth_request: dict[str, Any],
    app_name: str,
) -> str | None:
    while True:
        frame = parse_frame(await connection.recv())
        if frame is None:
            continue

        log.debug(f"◀ Received: {frame.method or 'error'}")
        if frame.is_error:
            raise AuthRejected(f"Authentication failed: {frame.error_message}")

        if frame.method == AUTH_CHALLENGE:
            challenge = (frame.params or {}).get("challenge_message")
            if not challenge:
                raise AuthRejected("Challenge response did not carry a challenge")
            signature = sign_policy(wallet_private_key, challenge, auth_request, app_name)
            verify = build_request(now_ms(), AUTH_VERIFY, {"challenge": challenge})
            await connection.send(json.dumps({"req": verify, "sig": [signature]}))
            log.debug(f"▶ Sending: {AUTH_VERIFY}")

        elif frame.method == AUTH_VERIFY:
            params = frame.params or {}
            if params.get("success") is False:
                raise AuthRejected("Authentication failed: verification rejected")
            return params.get("jwt_token") or params.get("jwtToken")
