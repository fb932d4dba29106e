"""HTTP client for the messaging bridge sidecar."""

import asyncio
import json
from typing import Any, AsyncIterator, Dict, Optional

import aiohttp
from loguru import logger

from otpgate.core.enums import ConnectionState, TransportEventKind
from otpgate.core.exceptions import TransportError
from otpgate.core.retry import get_bridge_retry
from otpgate.services.transport.base import TransportEvent
from otpgate.utils.masking import mask_address
from otpgate.utils.phone import to_chat_id


def parse_event(line: bytes) -> Optional[TransportEvent]:
    """
    Parse one NDJSON line of a pairing stream.

    Args:
        line: Raw line including trailing newline

    Returns:
        TransportEvent, or None for blank lines, keep-alives and unknown types
    """
    text = line.decode("utf-8", errors="replace").strip()
    if not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logger.warning(f"Ignoring malformed bridge event: {text[:80]}")
        return None
    if not isinstance(data, dict):
        return None

    try:
        kind = TransportEventKind(data.get("type"))
    except ValueError:
        # keep-alive or an event type this client does not consume
        return None
    return TransportEvent(kind=kind, payload=data.get("data"), reason=data.get("reason"))


class BridgeTransport:
    """
    MessagingTransport implementation backed by the messaging bridge HTTP API.

    Endpoints:
        POST   /sessions/{id}/pair      NDJSON event stream
        GET    /sessions/{id}/state     {"state": "..."}
        POST   /sessions/{id}/messages  {"chat_id": "...", "text": "..."}
        DELETE /sessions/{id}
    """

    def __init__(self, base_url: str, timeout: float = 15.0):
        """
        Initialize bridge client.

        Args:
            base_url: Bridge base URL
            timeout: Total timeout for non-streaming requests in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http_session: Optional[aiohttp.ClientSession] = None

    def _session(self) -> aiohttp.ClientSession:
        if self._http_session is None or self._http_session.closed:
            connector = aiohttp.TCPConnector(limit=50, keepalive_timeout=30)
            self._http_session = aiohttp.ClientSession(
                connector=connector,
                headers={"Accept": "application/json"},
            )
            logger.info(f"Bridge HTTP session initialized ({self.base_url})")
        return self._http_session

    def _url(self, session_id: str, suffix: str = "") -> str:
        return f"{self.base_url}/sessions/{session_id}{suffix}"

    async def close(self) -> None:
        """Close HTTP session."""
        if self._http_session:
            await self._http_session.close()
            self._http_session = None

    async def initiate_pairing(self, session_id: str) -> AsyncIterator[TransportEvent]:
        """
        Ask the bridge to start a session and open its event stream.

        Args:
            session_id: Session identifier

        Returns:
            Async iterator of lifecycle events

        Raises:
            TransportError: If the bridge refuses or cannot be reached
        """
        # Stream stays open for the whole session lifetime; only bound the connect
        timeout = aiohttp.ClientTimeout(total=None, connect=self.timeout, sock_read=None)
        try:
            response = await self._session().post(self._url(session_id, "/pair"), timeout=timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Bridge pairing request failed: {e}")

        if response.status >= 400:
            body = await response.text()
            response.release()
            raise TransportError(
                f"Bridge refused pairing (HTTP {response.status})",
                details={"status": response.status, "body": body[:200]},
            )

        return self._iter_events(session_id, response)

    async def _iter_events(
        self, session_id: str, response: aiohttp.ClientResponse
    ) -> AsyncIterator[TransportEvent]:
        try:
            async for line in response.content:
                event = parse_event(line)
                if event is not None:
                    yield event
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Bridge event stream for {session_id} broke: {e}")
        finally:
            response.release()

    @get_bridge_retry()
    async def query_state(self, session_id: str) -> ConnectionState:
        """
        Query the connection state of a session.

        Args:
            session_id: Session identifier

        Returns:
            ConnectionState (UNLAUNCHED when the bridge does not know the session)

        Raises:
            TransportError: On network failure or unexpected response
        """
        data = await self._request_json("GET", self._url(session_id, "/state"))
        if data is None:
            return ConnectionState.UNLAUNCHED
        return ConnectionState.parse(data.get("state", ""))

    async def send(self, session_id: str, address: str, text: str) -> bool:
        """
        Send a text message.

        Not retried: a retry after an ambiguous failure could deliver twice.

        Args:
            session_id: Session identifier
            address: Normalized digit-only address
            text: Message body

        Returns:
            True if the bridge accepted the message
        """
        payload = {"chat_id": to_chat_id(address), "text": text}
        try:
            async with self._session().post(
                self._url(session_id, "/messages"),
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                if response.status >= 400:
                    logger.warning(
                        f"Bridge rejected message to {mask_address(address)} "
                        f"(HTTP {response.status})"
                    )
                    return False
                return True
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Bridge send failed: {e}")

    async def shutdown(self, session_id: str, timeout: float) -> None:
        """
        Destroy a session on the bridge.

        Args:
            session_id: Session identifier
            timeout: Bounded wait in seconds
        """
        try:
            async with self._session().delete(
                self._url(session_id), timeout=aiohttp.ClientTimeout(total=timeout)
            ) as response:
                if response.status >= 400 and response.status != 404:
                    raise TransportError(f"Bridge shutdown failed (HTTP {response.status})")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Bridge shutdown failed: {e}")

    async def _request_json(self, method: str, url: str) -> Optional[Dict[str, Any]]:
        try:
            async with self._session().request(
                method, url, timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as response:
                if response.status == 404:
                    return None
                if response.status >= 400:
                    raise TransportError(f"Bridge returned HTTP {response.status} for {url}")
                data = await response.json()
                if not isinstance(data, dict):
                    raise TransportError(f"Unexpected bridge response for {url}")
                return data
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Bridge request failed: {e}")
