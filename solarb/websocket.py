"""Account subscriptions over a Solana pubsub websocket, fanned out to listeners."""

from __future__ import annotations

import asyncio
import base64
import binascii
import itertools
import json
import logging
import time
import weakref
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Sequence, Set, Tuple, Union

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from solarb.pubkey import Pubkey
from solarb.rpc import RpcError
from solarb.utils import PoolInfo

logger = logging.getLogger(__name__)

SubscriptionId = int

HEARTBEAT_INTERVAL = 15.0
CONNECT_TIMEOUT = 10.0
_ACCOUNT_CONFIG = {"encoding": "base64", "commitment": "confirmed"}
_CLOSED = object()


def _now() -> int:
    return int(time.time())


@dataclass(frozen=True)
class AccountUpdate:
    """New data for a subscribed account."""

    pubkey: Pubkey
    data: bytes
    timestamp: int


@dataclass(frozen=True)
class AccountDisconnected:
    """The subscription stream for an account has ended; it carries no data."""

    pubkey: Pubkey
    timestamp: int
    data: Optional[bytes] = field(default=None, init=False, repr=False, compare=False)


@dataclass(frozen=True)
class AccountError:
    """A subscription failed or delivered undecodable data; it carries no data."""

    pubkey: Pubkey
    message: str
    timestamp: int
    data: Optional[bytes] = field(default=None, init=False, repr=False, compare=False)


RawAccountUpdate = Union[AccountUpdate, AccountDisconnected, AccountError]


@dataclass(frozen=True)
class PoolUpdate:
    """A decoded pool state."""

    pool: PoolInfo


@dataclass(frozen=True)
class GenericUpdate:
    """A free-form notice."""

    message: str


WebsocketUpdate = Union[PoolUpdate, GenericUpdate]


class _Receiver:
    """One listener's bounded queue; the oldest item is dropped when it overflows."""

    def __init__(self, capacity: int) -> None:
        self._items: Deque[Any] = deque(maxlen=capacity)
        self._ready = asyncio.Event()
        self.lagged = 0

    def _push(self, item: Any) -> None:
        if len(self._items) == self._items.maxlen:
            self.lagged += 1
        self._items.append(item)
        self._ready.set()

    def try_recv(self) -> Any:
        """The oldest pending item; raise asyncio.QueueEmpty if there is none."""
        if not self._items:
            raise asyncio.QueueEmpty
        return self._items.popleft()

    async def recv(self) -> Any:
        """Wait for and return the oldest pending item."""
        while not self._items:
            self._ready.clear()
            await self._ready.wait()
        return self._items.popleft()


class Broadcaster:
    """Delivers every sent item to each live receiver."""

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("broadcast capacity must be positive")
        self.capacity = capacity
        self._receivers: "weakref.WeakSet[_Receiver]" = weakref.WeakSet()

    def subscribe(self) -> _Receiver:
        """A new receiver that sees every item sent from now on."""
        receiver = _Receiver(self.capacity)
        self._receivers.add(receiver)
        return receiver

    def send(self, update: Any) -> int:
        """Deliver ``update``; return how many receivers got it."""
        receivers = list(self._receivers)
        for receiver in receivers:
            receiver._push(update)
        return len(receivers)


class _AccountStream:
    """Notifications for one account subscription, as account value dicts."""

    def __init__(self, client: "PubsubClient", subscription_id: Any, queue: asyncio.Queue) -> None:
        self.id = subscription_id
        self._client = client
        self._queue = queue

    def __aiter__(self) -> "_AccountStream":
        return self

    async def __anext__(self) -> Any:
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item

    async def unsubscribe(self) -> None:
        """End this stream and cancel the subscription on the node."""
        self._client._streams.pop(self.id, None)
        self._queue.put_nowait(_CLOSED)
        if not self._client.closed:
            await self._client._request("accountUnsubscribe", [self.id])


class PubsubClient:
    """A JSON-RPC pubsub connection to one websocket endpoint."""

    def __init__(self, connection: Any, url: str) -> None:
        self.url = url
        self._ws = connection
        self._ids = itertools.count(1)
        self._pending: Dict[int, Tuple[asyncio.Future, Optional[asyncio.Queue]]] = {}
        self._streams: Dict[Any, asyncio.Queue] = {}
        self._closed = False
        self._reader = asyncio.create_task(self._read_loop())

    @classmethod
    async def connect(cls, url: str) -> "PubsubClient":
        """Open a connection to ``url``; raise RpcError if it fails."""
        try:
            connection = await websockets.connect(url, open_timeout=CONNECT_TIMEOUT)
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            raise RpcError(f"Failed to connect to {url}: {exc}") from exc
        return cls(connection, url)

    @property
    def closed(self) -> bool:
        return self._closed

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                try:
                    message = json.loads(raw)
                except ValueError:
                    logger.warning("[WebSocket] Ignoring malformed message from %s", self.url)
                    continue
                if isinstance(message, dict):
                    self._dispatch(message)
        except ConnectionClosed:
            pass
        except Exception:
            logger.exception("[WebSocket] Reader for %s failed", self.url)
        finally:
            self._closed = True
            for future, _ in self._pending.values():
                if not future.done():
                    future.set_exception(RpcError("websocket connection closed"))
            self._pending.clear()
            for stream in self._streams.values():
                stream.put_nowait(_CLOSED)
            self._streams.clear()

    def _dispatch(self, message: Dict[str, Any]) -> None:
        request_id = message.get("id")
        if isinstance(request_id, int) and request_id in self._pending:
            future, stream = self._pending.pop(request_id)
            if future.done():
                return
            error = message.get("error")
            if error:
                if isinstance(error, dict):
                    future.set_exception(
                        RpcError(str(error.get("message", error)), code=error.get("code"))
                    )
                else:
                    future.set_exception(RpcError(str(error)))
                return
            result = message.get("result")
            if stream is not None:
                try:
                    self._streams[result] = stream
                except TypeError:
                    future.set_exception(RpcError(f"invalid subscription id: {result!r}"))
                    return
            future.set_result(result)
            return
        method = message.get("method")
        if isinstance(method, str) and method.endswith("Notification"):
            params = message.get("params")
            if not isinstance(params, dict):
                return
            try:
                stream = self._streams.get(params.get("subscription"))
            except TypeError:
                return
            if stream is not None:
                result = params.get("result")
                value = result.get("value") if isinstance(result, dict) else None
                stream.put_nowait(value)

    async def _request(
        self, method: str, params: List[Any], stream: Optional[asyncio.Queue] = None
    ) -> Any:
        if self._closed:
            raise RpcError("websocket connection closed")
        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = (future, stream)
        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
        try:
            await self._ws.send(json.dumps(payload))
        except ConnectionClosed as exc:
            self._pending.pop(request_id, None)
            raise RpcError(f"{method} failed: {exc}") from exc
        return await future

    async def account_subscribe(self, pubkey: Pubkey) -> _AccountStream:
        """Subscribe to ``pubkey``; iterate the result for its account values."""
        queue: asyncio.Queue = asyncio.Queue()
        subscription_id = await self._request(
            "accountSubscribe", [str(pubkey), dict(_ACCOUNT_CONFIG)], stream=queue
        )
        return _AccountStream(self, subscription_id, queue)

    async def close(self) -> None:
        """Close the connection and end every open stream."""
        await self._ws.close()
        try:
            await self._reader
        except asyncio.CancelledError:
            pass


class SolanaWebsocketManager:
    """Keeps account subscriptions alive and broadcasts their updates."""

    def __init__(
        self,
        ws_url: str,
        fallback_urls: Sequence[str],
        update_channel_size: int,
        heartbeat_interval: float = HEARTBEAT_INTERVAL,
    ) -> None:
        self.ws_url = ws_url
        self.fallback_urls = list(fallback_urls)
        self.heartbeat_interval = heartbeat_interval
        self.update_sender = Broadcaster(update_channel_size)
        self.ws_updates: asyncio.Queue = asyncio.Queue(maxsize=update_channel_size)
        self.subscriptions: Dict[Pubkey, SubscriptionId] = {}
        self._client: Optional[PubsubClient] = None
        self._heartbeat: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()

    def _connected(self) -> bool:
        return self._client is not None and not self._client.closed

    async def is_connected(self) -> bool:
        """Whether a live connection is open."""
        return self._connected()

    async def try_recv_update(self) -> WebsocketUpdate:
        """The next pending update; raise asyncio.QueueEmpty if there is none."""
        return self.ws_updates.get_nowait()

    async def start(self) -> None:
        """Connect and start the heartbeat; raise RpcError if the connection fails."""
        try:
            await self._reconnect()
        except RpcError as exc:
            logger.error("[WebSocket] Initial connection to %s failed: %s", self.ws_url, exc)
            raise
        if self._heartbeat is not None:
            self._heartbeat.cancel()
        self._heartbeat = asyncio.create_task(self._run_heartbeat())

    async def _reconnect(self) -> PubsubClient:
        try:
            client = await PubsubClient.connect(self.ws_url)
        except RpcError as exc:
            logger.error("[WebSocket] Connection to %s failed: %s", self.ws_url, exc)
            raise
        self._client = client
        logger.info("[WebSocket] Connected to %s", self.ws_url)
        return client

    async def _reconnect_any(self) -> PubsubClient:
        for url in [self.ws_url, *self.fallback_urls]:
            try:
                client = await PubsubClient.connect(url)
            except RpcError as exc:
                logger.error("Failed to reconnect to %s: %s", url, exc)
                continue
            self._client = client
            logger.info("Reconnected WebSocket to %s", url)
            return client
        raise RpcError("Failed to connect to any WebSocket endpoint")

    async def _run_heartbeat(self) -> None:
        while True:
            if self._connected():
                logger.debug("[WebSocket] Heartbeat: connection to %s is alive", self.ws_url)
            else:
                logger.warning(
                    "[WebSocket] Disconnected from %s, attempting reconnect...", self.ws_url
                )
                try:
                    client = await self._reconnect_any()
                except RpcError as exc:
                    logger.error("[WebSocket] Reconnect failed: %s", exc)
                else:
                    for pubkey in list(self.subscriptions):
                        self.subscriptions[pubkey] = self._create_account_subscription(
                            client, pubkey
                        )
                        logger.info("[WebSocket] Resubscribed to account %s", pubkey)
            await asyncio.sleep(self.heartbeat_interval)

    async def stop(self) -> None:
        """Stop the heartbeat and subscription tasks and close the connection."""
        tasks = list(self._tasks)
        if self._heartbeat is not None:
            tasks.append(self._heartbeat)
            self._heartbeat = None
            logger.info("WebSocket heartbeat task stopped")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if self._client is not None:
            await self._client.close()

    async def subscribe_to_account(self, pubkey: Pubkey) -> None:
        """Start streaming updates for ``pubkey``, connecting first if needed."""
        client = self._client if self._connected() else await self._reconnect()
        self.subscriptions[pubkey] = self._create_account_subscription(client, pubkey)

    def _create_account_subscription(self, client: PubsubClient, pubkey: Pubkey) -> SubscriptionId:
        task = asyncio.create_task(self._stream_account(client, pubkey))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return 0

    def _broadcast(self, update: RawAccountUpdate) -> int:
        return self.update_sender.send(update)

    async def _stream_account(self, client: PubsubClient, pubkey: Pubkey) -> None:
        logger.info("[WebSocket] Subscribing to account %s", pubkey)
        try:
            stream = await client.account_subscribe(pubkey)
        except RpcError as exc:
            logger.error("[WebSocket] Failed to subscribe to %s: %s", pubkey, exc)
            self._broadcast(AccountError(pubkey, f"Subscription failed: {exc}", _now()))
            return
        logger.info("[WebSocket] Subscribed to account %s", pubkey)

        async for value in stream:
            logger.debug("[WebSocket] Received update for %s", pubkey)
            data = value.get("data") if isinstance(value, dict) else None
            if not (isinstance(data, list) and len(data) == 2 and isinstance(data[0], str)):
                logger.warning("[WebSocket] Non-binary data for %s ignored", pubkey)
                continue
            try:
                decoded = base64.b64decode(data[0], validate=True)
            except binascii.Error as exc:
                logger.error("[WebSocket] Base64 decode error for %s: %s", pubkey, exc)
                self._broadcast(AccountError(pubkey, f"Base64 decode error: {exc}", _now()))
                continue
            if self._broadcast(AccountUpdate(pubkey, decoded, _now())):
                logger.info("[WebSocket] Broadcasted update for %s", pubkey)
            else:
                logger.error(
                    "[WebSocket] Failed to broadcast update for %s: no active receivers", pubkey
                )

        logger.warning("[WebSocket] Subscription stream for %s ended", pubkey)
        self._broadcast(AccountDisconnected(pubkey, _now()))

    async def unsubscribe(self, pubkey: Pubkey) -> None:
        """Forget the local subscription record for ``pubkey``."""
        if self.subscriptions.pop(pubkey, None) is not None:
            logger.info("Unsubscribed from account updates for %s", pubkey)