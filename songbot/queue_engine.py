from __future__ import annotations
import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

from .device_activator import DeviceActivator
from .errors import DeviceUnavailable, RemoteEnqueueFailure
from .models import QueueEntry, Rejection, TickOutcome, TickState, Track
from .retry import RetryExhausted, SleepFn, retry_with_backoff
from .settings import DEFAULT_MESSAGES
from .song_queue import SongQueue
from .spotify_client import SpotifyClient
from .track_resolver import TrackResolver

logger = logging.getLogger(__name__)

AnnounceFn = Callable[[str], Awaitable[None]]

ENQUEUE_ATTEMPTS = 5
ENQUEUE_BASE_DELAY = 2.0


class QueueEngine:
    """Moves song requests from the local queue onto the Spotify queue.

    Each ``tick`` handles the head entry only: resolve (with content
    screening), activate a device, append to the Spotify queue. Success and
    rejection remove the entry; anything transient moves it to the tail.
    ``tick`` never raises.
    """

    def __init__(
        self,
        queue: SongQueue,
        resolver: TrackResolver,
        activator: DeviceActivator,
        spotify: SpotifyClient,
        *,
        announce: Optional[AnnounceFn] = None,
        messages: Optional[Dict[str, str]] = None,
        max_attempts: int = ENQUEUE_ATTEMPTS,
        base_delay: float = ENQUEUE_BASE_DELAY,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.queue = queue
        self.resolver = resolver
        self.activator = activator
        self.spotify = spotify
        self.announce = announce
        self.messages = messages or DEFAULT_MESSAGES
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.sleep = sleep
        self.state = TickState.IDLE

    # ---- command surface ----
    def add(self, username: str, raw_text: str) -> QueueEntry:
        return self.queue.add(username, raw_text)

    def list_entries(self) -> List[QueueEntry]:
        return self.queue.snapshot()

    def clear(self) -> int:
        return self.queue.clear()

    def remove_at(self, position: int) -> QueueEntry:
        return self.queue.remove_at(position)

    # ---- processing ----
    async def tick(self) -> TickOutcome:
        entry = self.queue.head()
        if entry is None:
            logger.debug('Song queue is empty - nothing to process')
            return TickOutcome.IDLE
        try:
            return await self._process(entry)
        except Exception:
            logger.exception('Unexpected error processing "%s" from %s', entry.song_name, entry.username)
            self.queue.move_to_tail(entry)
            return TickOutcome.REQUEUED
        finally:
            self.state = TickState.IDLE

    async def _process(self, entry: QueueEntry) -> TickOutcome:
        logger.info('Processing song request: %s from %s', entry.song_name, entry.username)
        self.state = TickState.RESOLVING
        result = await self.resolver.resolve(entry.song_name)

        if isinstance(result, Rejection):
            logger.info('Rejected "%s" from %s', entry.song_name, entry.username)
            self.queue.remove(entry)
            await self._say('song_rejected', message=result.message, song=entry.song_name, user=entry.username)
            return TickOutcome.REMOVED

        if result is None:
            logger.warning('Could not resolve "%s"; moving to the end of the queue', entry.song_name)
            self.queue.move_to_tail(entry)
            await self._say('song_not_found', song=entry.song_name, user=entry.username)
            return TickOutcome.REQUEUED

        try:
            await self._enqueue(result)
        except RemoteEnqueueFailure as exc:
            logger.error('Failed to add "%s" to Spotify queue: %s', entry.song_name, exc)
            self.queue.move_to_tail(entry)
            await self._say('song_failed', song=entry.song_name, user=entry.username)
            return TickOutcome.REQUEUED

        self.queue.remove(entry)
        await self._say(
            'song_queued',
            song=entry.song_name,
            title=result.name,
            artist=result.artist_names,
            user=entry.username,
        )
        return TickOutcome.SUCCEEDED

    async def _enqueue(self, track: Track) -> None:
        async def attempt() -> None:
            self.state = TickState.ACTIVATING_DEVICE
            device = await self.activator.ensure_active_device()
            logger.info('Using Spotify device: %s (%s)', device.name, device.type)
            self.state = TickState.ENQUEUING
            await self.spotify.add_to_queue(track.uri, device.id)

        try:
            await retry_with_backoff(
                attempt,
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                sleep=self.sleep,
                label=f'Spotify enqueue of {track.uri}',
            )
        except RetryExhausted as exc:
            if isinstance(exc.last_error, DeviceUnavailable):
                message = f'no playback device ({exc.last_error.reason}) after {exc.attempts} attempts'
            else:
                message = f'Spotify rejected {track.uri} after {exc.attempts} attempts'
            raise RemoteEnqueueFailure(message, exc.last_error) from exc

    async def _say(self, key: str, **values: object) -> None:
        if not self.announce:
            return
        template = self.messages.get(key) or DEFAULT_MESSAGES[key]
        try:
            text = template.format(**values)
        except (KeyError, IndexError):
            text = template
        await self.announce(text)
