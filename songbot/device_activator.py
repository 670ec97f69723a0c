from __future__ import annotations
import asyncio
import logging
from typing import List, Optional

from .errors import DeviceUnavailable
from .models import Device
from .retry import RetryExhausted, SleepFn, retry_with_backoff
from .spotify_client import SpotifyClient

logger = logging.getLogger(__name__)


class DeviceActivator:
    """Makes sure a Spotify playback device is active before queueing.

    Devices are listed fresh on every call; nothing is cached between ticks.
    """

    def __init__(
        self,
        spotify: SpotifyClient,
        *,
        list_attempts: int = 3,
        list_delay: float = 2.0,
        settle_delay: float = 5.0,
        verify_attempts: int = 3,
        verify_delay: float = 2.0,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.spotify = spotify
        self.list_attempts = list_attempts
        self.list_delay = list_delay
        self.settle_delay = settle_delay
        self.verify_attempts = verify_attempts
        self.verify_delay = verify_delay
        self.sleep = sleep

    async def ensure_active_device(self) -> Device:
        try:
            devices = await retry_with_backoff(
                self.spotify.get_devices,
                max_attempts=self.list_attempts,
                base_delay=self.list_delay,
                factor=1.0,
                succeeded=bool,
                sleep=self.sleep,
                label='Spotify device listing',
            )
        except RetryExhausted as exc:
            raise DeviceUnavailable(DeviceUnavailable.NO_DEVICES, f'No Spotify devices found: {exc}') from exc

        logger.info('Available Spotify devices: %s', ', '.join(f'{d.name} ({d.type})' for d in devices))
        active = _find_active(devices)
        if active:
            return active

        target = devices[0]
        logger.info('No active Spotify device; transferring playback to %s', target.name)
        try:
            await self.spotify.transfer_playback(target.id, play=False)
        except Exception as exc:
            raise DeviceUnavailable(
                DeviceUnavailable.ACTIVATION_FAILED,
                f'Transfer to {target.name} failed: {exc}',
            ) from exc
        await self.sleep(self.settle_delay)

        try:
            devices = await retry_with_backoff(
                self.spotify.get_devices,
                max_attempts=self.verify_attempts,
                base_delay=self.verify_delay,
                factor=1.0,
                succeeded=lambda found: _find_active(found, target.id) is not None,
                sleep=self.sleep,
                label='Spotify device activation check',
            )
        except RetryExhausted as exc:
            raise DeviceUnavailable(
                DeviceUnavailable.ACTIVATION_FAILED,
                f'{target.name} did not become active after transfer',
            ) from exc
        logger.info('Successfully transferred playback and verified %s is active', target.name)
        return _find_active(devices, target.id)


def _find_active(devices: List[Device], device_id: Optional[str] = None) -> Optional[Device]:
    for device in devices:
        if device.is_active and (device_id is None or device.id == device_id):
            return device
    return None
