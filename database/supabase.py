#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Restrain Yourself v1.0 - Supabase Backend
PostgREST reads and writes plus realtime subscriptions

Version: 1.0.0
Date: 2025-07-10
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from config import BackendConfig, RealtimeConfig
from database.backend import (
    ENTRIES_TABLE, HABITS_TABLE, BackendConnectionError, BackendResponseError,
    ChangeCallback, HabitBackend, Subscription
)
from database.realtime import RealtimeClient

logger = logging.getLogger(__name__)

class SupabaseBackend(HabitBackend):
    """HabitBackend over a Supabase project (REST + realtime)"""

    def __init__(self, settings: BackendConfig, realtime_settings: Optional[RealtimeConfig] = None,
                 session: Optional[aiohttp.ClientSession] = None):
        if not settings.url or not settings.anon_key:
            raise ValueError("Supabase URL and anon key are required")

        self.settings = settings
        self.base_url = settings.url.rstrip('/')
        self.rest_url = f"{self.base_url}/rest/v1"
        self.realtime_settings = realtime_settings or RealtimeConfig()

        self._session = session
        self._owns_session = session is None
        self._realtime: Optional[RealtimeClient] = None

    # ===== HTTP =====

    @property
    def headers(self) -> Dict[str, str]:
        token = self.settings.access_token or self.settings.anon_key
        return {
            'apikey': self.settings.anon_key,
            'Authorization': f"Bearer {token}",
            'Content-Type': 'application/json',
            'Accept': 'application/json'
        }

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.settings.request_timeout)
            )
            self._owns_session = True
        return self._session

    async def _request(self, method: str, table: str, params: Optional[Dict[str, str]] = None,
                       payload: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        headers = self.headers
        if method in ('POST', 'PATCH'):
            headers['Prefer'] = 'return=representation'

        url = f"{self.rest_url}/{table}"
        try:
            async with self._get_session().request(method, url, params=params, json=payload,
                                                   headers=headers) as response:
                if response.status >= 400:
                    raise BackendResponseError(response.status, await self._error_message(response))
                if response.status == 204:
                    return []
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise BackendConnectionError(f"{method} {table} failed: {e}") from e

    @staticmethod
    async def _error_message(response: aiohttp.ClientResponse) -> str:
        text = await response.text()
        try:
            body = await response.json(content_type=None)
        except ValueError:
            return text or response.reason or ''
        if isinstance(body, dict):
            return body.get('message') or body.get('error') or text
        return text

    @staticmethod
    def _single(rows: List[Dict[str, Any]], table: str) -> Dict[str, Any]:
        if not rows:
            raise BackendResponseError(404, f"No {table} row returned")
        return rows[0]

    # ===== READS =====

    async def fetch_habits(self, user_id: str) -> List[Dict[str, Any]]:
        return await self._request('GET', HABITS_TABLE, params={
            'select': '*',
            'user_id': f"eq.{user_id}",
            'is_active': 'eq.true',
            'order': 'created_at.desc'
        })

    async def fetch_entries(self, user_id: str) -> List[Dict[str, Any]]:
        return await self._request('GET', ENTRIES_TABLE, params={
            'select': '*',
            'user_id': f"eq.{user_id}",
            'order': 'date.desc'
        })

    # ===== WRITES =====

    async def insert_habit(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._request('POST', HABITS_TABLE, params={'select': '*'}, payload=payload)
        return self._single(rows, HABITS_TABLE)

    async def update_habit(self, habit_id: str, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._request('PATCH', HABITS_TABLE, params={
            'id': f"eq.{habit_id}",
            'user_id': f"eq.{user_id}",
            'select': '*'
        }, payload=changes)
        return self._single(rows, HABITS_TABLE)

    async def insert_entry(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._request('POST', ENTRIES_TABLE, params={'select': '*'}, payload=payload)
        return self._single(rows, ENTRIES_TABLE)

    async def update_entry(self, entry_id: str, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._request('PATCH', ENTRIES_TABLE, params={
            'id': f"eq.{entry_id}",
            'user_id': f"eq.{user_id}",
            'select': '*'
        }, payload=changes)
        return self._single(rows, ENTRIES_TABLE)

    # ===== REALTIME =====

    async def subscribe(self, table: str, user_id: str, callback: ChangeCallback) -> Subscription:
        if self._realtime is None:
            self._realtime = RealtimeClient(
                self.base_url,
                self.settings.anon_key,
                access_token=self.settings.access_token,
                settings=self.realtime_settings,
                session=self._get_session()
            )
        return await self._realtime.subscribe(table, user_id, callback)

    # ===== LIFECYCLE =====

    async def ping(self) -> bool:
        try:
            async with self._get_session().get(f"{self.rest_url}/", headers=self.headers) as response:
                return response.status < 500
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Ping failed: {e}")
            return False

    async def close(self):
        if self._realtime is not None:
            await self._realtime.close()
            self._realtime = None
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
        logger.info("🔌 Supabase backend closed")
