import asyncio
import json
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable

import jwt
from websockets.asyncio.client import connect as websocket_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from .. import config
from ..auth.handshake import AuthResult, Connection, authenticate
from ..auth.signer import RequestSigner, normalize_private_key, address_of
from ..errors import AuthRejected, AuthTimeout, LedgerRejected
from ..models.rpc import build_request, now_ms, parse_frame
from .correlation import RequestCorrelator

log = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[Connection]]


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    CONNECTED = "connected"
    AUTH_FAILED = "auth_failed"


async def default_connector(url: str) -> Connection:
    return await websocket_connect(url)


class SettlementClient:
    """One authenticated, multiplexed connection to the settlement service."""

    def __init__(
        self,
        url: str,
        private_key: str,
        connector: Connector = default_connector,
        auth_timeout: float = config.AUTH_TIMEOUT,
        request_timeout: float = config.REQUEST_TIMEOUT,
        submission_timeout: float = config.SUBMISSION_TIMEOUT,
    ):
        self.url = url
        self._private_key = normalize_private_key(private_key)
        self.wallet_address = address_of(self._private_key)
        self._connector = connector
        self.auth_timeout = auth_timeout
        self.request_timeout = request_timeout
        self.submission_timeout = submission_timeout

        self.status = ConnectionStatus.DISCONNECTED
        self._connection: Connection | None = None
        self._auth: AuthResult | None = None
        self._correlator = RequestCorrelator()
        self._reader: asyncio.Task | None = None
        self._status_listeners: list[Callable[[ConnectionStatus], None]] = []

        log.info(f"Settlement client initialized for {self.wallet_address}")

    @property
    def signer(self) -> RequestSigner:
        if self._auth is None:
            raise AuthRejected("Settlement client is not authenticated")
        return self._auth.signer

    @property
    def address(self) -> str:
        """Address the service signs with: the ephemeral session key."""
        return self.signer.address

    @property
    def token(self) -> str | None:
        return self._auth.token if self._auth else None

    @property
    def pending_count(self) -> int:
        return len(self._correlator)

    def on_status_change(self, callback: Callable[[ConnectionStatus], None]) -> None:
        self._status_listeners.append(callback)

    def _set_status(self, status: ConnectionStatus) -> None:
        if status == self.status:
            return
        log.info(f"Settlement status changed: {self.status.value} -> {status.value}")
        self.status = status
        for callback in self._status_listeners:
            callback(status)

    async def connect(self) -> None:
        if self.status == ConnectionStatus.CONNECTED:
            log.debug("Already connected")
            return

        log.info(f"Connecting to {self.url}...")
        self._set_status(ConnectionStatus.CONNECTING)
        self._auth = None
        try:
            connection = await self._connector(self.url)
        except (OSError, WebSocketException) as e:
            log.error(f"Failed to open settlement connection: {e}")
            self._set_status(ConnectionStatus.DISCONNECTED)
            raise LedgerRejected("connect", str(e)) from e

        self._set_status(ConnectionStatus.AUTHENTICATING)
        try:
            self._auth = await authenticate(
                connection, self._private_key, timeout=self.auth_timeout
            )
        except (AuthTimeout, AuthRejected) as e:
            log.error(f"Authentication failed: {e.message}")
            self._set_status(ConnectionStatus.AUTH_FAILED)
            await connection.close()
            raise

        self._connection = connection
        self._correlator = RequestCorrelator()
        self._reader = asyncio.create_task(self._read_frames(connection, self._correlator))
        self._set_status(ConnectionStatus.CONNECTED)

    async def disconnect(self) -> None:
        connection, self._connection = self._connection, None
        reader, self._reader = self._reader, None
        if connection is not None:
            await connection.close()
        if reader is not None:
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass
        self._correlator.reject_all(LedgerRejected("connection", "connection closed"))
        self._set_status(ConnectionStatus.DISCONNECTED)

    def token_expired(self) -> bool:
        if not self.token:
            return False
        try:
            claims = jwt.decode(self.token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            return False
        expires_at = claims.get("exp")
        return expires_at is not None and expires_at <= time.time()

    async def ensure_connected(self) -> None:
        if self.status == ConnectionStatus.CONNECTED and not self.token_expired():
            return
        if self.status == ConnectionStatus.CONNECTED:
            log.info("Session token expired, re-authenticating")
        else:
            log.info("Settlement connection down, reconnecting...")
        await self.disconnect()
        await self.connect()

    async def _read_frames(self, connection: Connection, correlator: RequestCorrelator) -> None:
        try:
            async for raw in connection:
                frame = parse_frame(raw)
                if frame is None:
                    continue
                log.debug(f"◀ Received: {frame.method or 'error'} (ID: {frame.request_id})")
                if not correlator.dispatch(frame):
                    log.debug(f"Unclaimed frame {frame.method} (ID: {frame.request_id})")
        except ConnectionClosed as e:
            log.warning(f"Settlement connection closed: {e}")
        finally:
            correlator.reject_all(LedgerRejected("connection", "connection closed"))
            if self._connection is connection:
                self._connection = None
                self._set_status(ConnectionStatus.DISCONNECTED)

    async def _send(self, payload: dict[str, Any]) -> None:
        if self._connection is None or self.status != ConnectionStatus.CONNECTED:
            raise LedgerRejected("send", "settlement connection is not open")
        try:
            await self._connection.send(json.dumps(payload))
        except ConnectionClosed as e:
            log.warning(f"Settlement connection dropped while sending: {e}")
            self._set_status(ConnectionStatus.DISCONNECTED)
            raise LedgerRejected("send", str(e)) from e

    async def send_request(
        self, method: str, params: dict[str, Any], timeout: float | None = None
    ) -> Any:
        """Send a request signed by the session key and await its id-matched response."""
        request_id = self._correlator.next_id()
        request = build_request(request_id, method, params)
        entry = self._correlator.expect_id(request_id, method)
        try:
            await self._send({"req": request, "sig": [self.signer.sign(request)]})
        except Exception:
            self._correlator.discard(entry)
            raise
        log.debug(f"▶ Sending: {method} (ID: {request_id})")
        return await self._correlator.wait(entry, timeout or self.request_timeout)

    def sign_request(self, method: str, params: dict[str, Any]) -> tuple[list, str]:
        """Build a request tuple for an envelope and sign it with the session key."""
        timestamp = now_ms()
        request = build_request(timestamp, method, params, timestamp)
        return request, self.signer.sign(request)

    async def submit(
        self, request: list, signatures: list[str], timeout: float | None = None
    ) -> Any:
        """Submit a raw envelope and await the acknowledgment by method tag."""
        method = request[1]
        entry = self._correlator.expect_method(method)
        try:
            await self._send({"req": request, "sig": signatures})
        except Exception:
            self._correlator.discard(entry)
            raise
        log.debug(f"▶ Sending: {method} with {len(signatures)} signature(s)")
        return await self._correlator.wait(entry, timeout or self.submission_timeout)

    async def get_channels(self) -> list[dict[str, Any]]:
        response = await self.send_request("get_channels", {"participant": self.wallet_address})
        if isinstance(response, dict):
            return response.get("channels", [])
        return response or []
