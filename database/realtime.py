#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Restrain Yourself v1.0 - Realtime Client
Phoenix-channel websocket delivering postgres_changes row events

Version: 1.0.0
Date: 2025-07-10
"""

import asyncio
import itertools
import json
import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import aiohttp

from config import RealtimeConfig
from database.backend import ChangeCallback, ChangeEvent, ChangeType, Subscription, SubscriptionError
from utils.decorators import retry_on_exception

logger = logging.getLogger(__name__)

PHOENIX_TOPIC = "phoenix"
JOIN_TIMEOUT = 10.0

def realtime_url(rest_url: str, api_key: str) -> str:
    """Websocket endpoint of a Supabase project"""
    base = rest_url.rstrip('/')
    if base.startswith('https://'):
        base = 'wss://' + base[len('https://'):]
    elif base.startswith('http://'):
        base = 'ws://' + base[len('http://'):]
    return f"{base}/realtime/v1/websocket?{urlencode({'apikey': api_key, 'vsn': '1.0.0'})}"

def parse_change(payload: Dict[str, Any]) -> ChangeEvent:
    """ChangeEvent from a postgres_changes payload"""
    data = payload.get('data', payload)
    return ChangeEvent(
        table=data.get('table', ''),
        type=ChangeType(data.get('type') or data.get('eventType')),
        new=data.get('record') or {},
        old=data.get('old_record') or {}
    )

class RealtimeChannel(Subscription):
    """One joined topic: a table filtered to one user"""

    def __init__(self, client: 'RealtimeClient', table: str, user_id: str, callback: ChangeCallback):
        self.client = client
        self.table = table
        self.user_id = user_id
        self.callback = callback
        self.topic = f"realtime:{table}-{user_id}"
        self.joined = False

    def join_payload(self) -> Dict[str, Any]:
        payload = {
            'config': {
                'broadcast': {'self': False},
                'presence': {'key': ''},
                'postgres_changes': [{
                    'event': '*',
                    'schema': 'public',
                    'table': self.table,
                    'filter': f"user_id=eq.{self.user_id}"
                }]
            }
        }
        if self.client.access_token:
            payload['access_token'] = self.client.access_token
        return payload

    def dispatch(self, payload: Dict[str, Any]):
        try:
            event = parse_change(payload)
        except (ValueError, AttributeError) as e:
            logger.error(f"❌ Malformed change on {self.topic}: {e}")
            return
        try:
            self.callback(event)
        except Exception as e:
            logger.error(f"❌ Change handler for {self.topic} failed: {e}")

    async def unsubscribe(self):
        await self.client.leave(self)

class RealtimeClient:
    """
    Single websocket shared by every channel of a session.

    A dropped connection is re-opened with bounded retries and every channel
    is joined again. Heartbeats keep the socket alive.
    """

    def __init__(self, url: str, api_key: str, access_token: Optional[str] = None,
                 settings: Optional[RealtimeConfig] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        self.url = realtime_url(url, api_key)
        self.access_token = access_token
        self.settings = settings or RealtimeConfig()

        self._session = session
        self._owns_session = session is None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader: Optional[asyncio.Task] = None
        self._heartbeat: Optional[asyncio.Task] = None
        self._reconnecting: Optional[asyncio.Task] = None
        self._channels: Dict[str, RealtimeChannel] = {}
        self._replies: Dict[str, asyncio.Future] = {}
        self._refs = itertools.count(1)
        self._connect_lock = asyncio.Lock()
        self._closing = False

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    @property
    def channels(self):
        return list(self._channels.values())

    # ===== CONNECTION =====

    async def connect(self):
        async with self._connect_lock:
            if self.is_connected:
                return
            self._closing = False

            opener = retry_on_exception(
                retries=self.settings.reconnect_attempts,
                delay=self.settings.reconnect_delay,
                exceptions=(aiohttp.ClientError, asyncio.TimeoutError)
            )(self._open)
            try:
                await opener()
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                raise SubscriptionError(f"Realtime connection failed: {e}") from e

            self._reader = asyncio.create_task(self._read_loop())
            self._heartbeat = asyncio.create_task(self._heartbeat_loop())
            logger.info("📡 Realtime connected")

    async def _open(self):
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        self._ws = await self._session.ws_connect(self.url, heartbeat=None)

    async def close(self):
        self._closing = True
        for task in (self._heartbeat, self._reader, self._reconnecting):
            if task is not None and task is not asyncio.current_task():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._heartbeat = self._reader = self._reconnecting = None

        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        for future in self._replies.values():
            if not future.done():
                future.cancel()
        self._replies.clear()
        self._channels.clear()

        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None
        logger.info("📴 Realtime closed")

    # ===== CHANNELS =====

    async def subscribe(self, table: str, user_id: str, callback: ChangeCallback) -> RealtimeChannel:
        channel = RealtimeChannel(self, table, user_id, callback)
        await self.connect()
        self._channels[channel.topic] = channel
        try:
            await self._join(channel)
        except Exception:
            self._channels.pop(channel.topic, None)
            raise
        return channel

    async def leave(self, channel: RealtimeChannel):
        if self._channels.pop(channel.topic, None) is None:
            return
        channel.joined = False
        if self.is_connected:
            await self._send(channel.topic, 'phx_leave', {})
        logger.debug(f"Left {channel.topic}")

    async def _join(self, channel: RealtimeChannel):
        ref = str(next(self._refs))
        future = asyncio.get_running_loop().create_future()
        self._replies[ref] = future
        try:
            await self._send(channel.topic, 'phx_join', channel.join_payload(), ref)
            reply = await asyncio.wait_for(future, timeout=JOIN_TIMEOUT)
        except asyncio.TimeoutError as e:
            raise SubscriptionError(f"Join of {channel.topic} timed out") from e
        finally:
            self._replies.pop(ref, None)

        if reply.get('status') != 'ok':
            raise SubscriptionError(f"Join of {channel.topic} rejected: {reply.get('response')}")
        channel.joined = True
        logger.debug(f"Joined {channel.topic}")

    # ===== WIRE =====

    async def _send(self, topic: str, event: str, payload: Dict[str, Any], ref: Optional[str] = None) -> str:
        ref = ref or str(next(self._refs))
        await self._ws.send_json({
            'topic': topic,
            'event': event,
            'payload': payload,
            'ref': ref
        })
        return ref

    async def _heartbeat_loop(self):
        while True:
            await asyncio.sleep(self.settings.heartbeat_interval)
            if self.is_connected:
                try:
                    await self._send(PHOENIX_TOPIC, 'heartbeat', {})
                except ConnectionError as e:
                    logger.warning(f"⚠️ Heartbeat failed: {e}")

    async def _read_loop(self):
        ws = self._ws
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    message = json.loads(msg.data)
                except json.JSONDecodeError:
                    logger.warning(f"⚠️ Non-JSON realtime frame: {msg.data[:100]}")
                    continue
                self._handle_message(message)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error(f"❌ Realtime socket error: {ws.exception()}")
                break

        if not self._closing:
            logger.warning("⚠️ Realtime connection lost, reconnecting")
            self._reconnecting = asyncio.create_task(self._reconnect())

    def _handle_message(self, message: Dict[str, Any]):
        event = message.get('event')
        payload = message.get('payload') or {}

        if event == 'phx_reply':
            future = self._replies.get(message.get('ref'))
            if future is not None and not future.done():
                future.set_result(payload)
        elif event == 'postgres_changes':
            channel = self._channels.get(message.get('topic'))
            if channel is not None:
                channel.dispatch(payload)
        elif event in ('phx_error', 'phx_close'):
            logger.warning(f"⚠️ Channel {message.get('topic')}: {event}")

    async def _reconnect(self):
        if self._heartbeat is not None:
            self._heartbeat.cancel()
        self._ws = None

        try:
            await self.connect()
        except SubscriptionError as e:
            logger.error(f"❌ Realtime reconnect gave up: {e}")
            return

        for channel in list(self._channels.values()):
            try:
                await self._join(channel)
            except SubscriptionError as e:
                logger.error(f"❌ Rejoin failed: {e}")
        logger.info(f"🔄 Realtime rejoined {len(self._channels)} channel(s)")
