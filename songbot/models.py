from __future__ import annotations
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

_NORMALIZE_RE = re.compile(r'[^\w\s]')


def normalize_song_name(text: str) -> str:
    return _NORMALIZE_RE.sub('', text.casefold())


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class QueueEntry:
    username: str
    song_name: str
    timestamp: int = field(default_factory=now_ms)
    raw_text: Optional[str] = field(default=None, compare=False, repr=False)

    @property
    def normalized(self) -> str:
        return normalize_song_name(self.song_name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'username': self.username,
            'songName': self.song_name,
            'timestamp': self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'QueueEntry':
        username = data['username']
        song_name = data['songName']
        if not isinstance(username, str) or not isinstance(song_name, str):
            raise ValueError('username and songName must be strings')
        timestamp = data.get('timestamp')
        if not isinstance(timestamp, (int, float)) or isinstance(timestamp, bool):
            timestamp = 0
        return cls(username=username, song_name=song_name, timestamp=int(timestamp))


@dataclass(frozen=True)
class Track:
    id: str
    uri: str
    name: str
    artists: List[str]

    @property
    def primary_artist(self) -> str:
        return self.artists[0] if self.artists else ''

    @property
    def artist_names(self) -> str:
        return ', '.join(self.artists) or 'Unknown Artist'

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> 'Track':
        artists = [a.get('name', '') for a in item.get('artists') or [] if isinstance(a, dict)]
        return cls(
            id=str(item.get('id') or item.get('uri') or ''),
            uri=item.get('uri') or '',
            name=item.get('name') or '',
            artists=artists,
        )


@dataclass(frozen=True)
class Device:
    id: str
    name: str
    type: str = 'Unknown'
    is_active: bool = False

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> 'Device':
        return cls(
            id=str(item.get('id') or ''),
            name=item.get('name') or '',
            type=item.get('type') or 'Unknown',
            is_active=bool(item.get('is_active')),
        )


@dataclass(frozen=True)
class NowPlaying:
    track: Track
    progress_ms: int = 0
    is_playing: bool = False


@dataclass(frozen=True)
class Rejection:
    message: str


@dataclass(frozen=True)
class GateVerdict:
    allowed: bool
    message: Optional[str] = None


class TickOutcome(str, Enum):
    IDLE = 'idle'
    SUCCEEDED = 'succeeded'
    REQUEUED = 'requeued'
    REMOVED = 'removed'


class TickState(str, Enum):
    IDLE = 'idle'
    RESOLVING = 'resolving'
    ACTIVATING_DEVICE = 'activating_device'
    ENQUEUING = 'enqueuing'
