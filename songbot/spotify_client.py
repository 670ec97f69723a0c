from __future__ import annotations
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import aiohttp

from .errors import SpotifyError
from .models import Device, NowPlaying, Track

SPOTIFY_API_URL = 'https://api.spotify.com/v1'
SPOTIFY_TOKEN_URL = 'https://accounts.spotify.com/api/token'
# Refresh a little before Spotify's expiry to avoid racing it.
TOKEN_EXPIRY_MARGIN = 60

logger = logging.getLogger(__name__)


class SpotifyClient:
    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        *,
        base_url: str = SPOTIFY_API_URL,
        token_url: str = SPOTIFY_TOKEN_URL,
        timeout: float = 10,
    ):
        self.base = base_url.rstrip('/')
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.session: Optional[aiohttp.ClientSession] = None
        self._access_token: Optional[str] = None
        self._expires_at = 0.0
        self._token_lock = asyncio.Lock()

    async def start(self):
        if not self.session:
            self.session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self):
        if self.session:
            await self.session.close()
            self.session = None

    async def refresh_access_token(self) -> str:
        if not self.session:
            await self.start()
        data = {'grant_type': 'refresh_token', 'refresh_token': self.refresh_token}
        auth = aiohttp.BasicAuth(self.client_id, self.client_secret)
        async with self.session.post(self.token_url, data=data, auth=auth) as r:
            payload = await _read_payload(r)
            if r.status >= 400:
                raise SpotifyError(r.status, _error_detail(payload) or 'token refresh failed')
        if not isinstance(payload, dict) or not payload.get('access_token'):
            raise SpotifyError(502, 'token response missing access_token')
        self._access_token = payload['access_token']
        self._expires_at = time.monotonic() + int(payload.get('expires_in', 3600)) - TOKEN_EXPIRY_MARGIN
        # Spotify may rotate the refresh token.
        if payload.get('refresh_token'):
            self.refresh_token = payload['refresh_token']
        logger.info('Spotify user access token refreshed')
        return self._access_token

    async def _ensure_token(self, force: bool = False) -> str:
        async with self._token_lock:
            if force or not self._access_token or time.monotonic() >= self._expires_at:
                await self.refresh_access_token()
            return self._access_token

    async def _req(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[dict] = None,
        _retry_auth: bool = True,
    ):
        if not self.session:
            await self.start()
        token = await self._ensure_token()
        url = f"{self.base}{path}"
        headers = {'Authorization': f'Bearer {token}'}
        async with self.session.request(method, url, headers=headers, params=params, json=payload) as r:
            if r.status == 401 and _retry_auth:
                expired = True
            else:
                expired = False
                body = await _read_payload(r)
                if r.status >= 400:
                    raise SpotifyError(r.status, _error_detail(body) or f"{method} {path} failed")
        if expired:
            logger.info('Spotify returned 401 for %s %s; refreshing token', method, path)
            await self._ensure_token(force=True)
            return await self._req(method, path, params=params, payload=payload, _retry_auth=False)
        return body

    async def search_tracks(self, query: str, limit: int = 25) -> List[Track]:
        data = await self._req('GET', '/search', params={'q': query, 'type': 'track', 'limit': str(limit)})
        items = (_json_object(data, 'search').get('tracks') or {}).get('items') or []
        return [Track.from_api(item) for item in items if isinstance(item, dict) and item.get('uri')]

    async def get_devices(self) -> List[Device]:
        data = await self._req('GET', '/me/player/devices')
        items = _json_object(data, 'devices').get('devices') or []
        return [Device.from_api(item) for item in items if isinstance(item, dict) and item.get('id')]

    async def transfer_playback(self, device_id: str, *, play: bool = False) -> None:
        await self._req('PUT', '/me/player', payload={'device_ids': [device_id], 'play': play})

    async def add_to_queue(self, track_uri: str, device_id: Optional[str] = None) -> None:
        params = {'uri': track_uri}
        if device_id:
            params['device_id'] = device_id
        await self._req('POST', '/me/player/queue', params=params)
        logger.info('Added track to Spotify queue: %s', track_uri)

    async def get_currently_playing(self) -> Optional[NowPlaying]:
        data = await self._req('GET', '/me/player/currently-playing')
        if not _json_object(data, 'currently playing').get('item'):
            return None
        return NowPlaying(
            track=Track.from_api(data['item']),
            progress_ms=int(data.get('progress_ms') or 0),
            is_playing=bool(data.get('is_playing')),
        )


async def _read_payload(r: aiohttp.ClientResponse):
    if r.status == 204:
        return None
    content_type = r.headers.get('content-type', '')
    if content_type.startswith('application/json'):
        try:
            return await r.json()
        except (aiohttp.ContentTypeError, ValueError):
            return None
    text = await r.text()
    return text or None


def _error_detail(payload: object) -> str:
    if isinstance(payload, dict):
        error = payload.get('error')
        if isinstance(error, dict):
            return str(error.get('message') or error.get('status') or '')
        if error:
            description = payload.get('error_description')
            return f"{error}: {description}" if description else str(error)
        return ''
    return str(payload or '')


def _json_object(data: object, what: str) -> Dict[str, Any]:
    # 204 and empty bodies read as None
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SpotifyError(502, f'Unexpected {what} response: {str(data)[:100]}')
    return data
