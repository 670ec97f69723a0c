from __future__ import annotations
import logging
import re
from typing import Iterator, List, Optional

from .errors import DuplicateRequest, InvalidPosition, InvalidRequest, PersistenceError
from .models import QueueEntry, now_ms
from .queue_store import QueueStore

logger = logging.getLogger(__name__)

_ZERO_WIDTH_RE = re.compile(r'[\u200b-\u200d\ufeff]')
_WHITESPACE_RE = re.compile(r'\s+')
_DISALLOWED_RE = re.compile(r'''[^\w\s\-'",.!?]''')


def clean_request(text: str) -> str:
    """Trim, drop zero-width characters, collapse whitespace and strip
    punctuation other than ``- ' " , . ! ?``."""
    cleaned = _ZERO_WIDTH_RE.sub('', (text or '').strip())
    cleaned = _DISALLOWED_RE.sub('', cleaned)
    cleaned = _WHITESPACE_RE.sub(' ', cleaned)
    return cleaned.strip()


class SongQueue:
    """Ordered pending song requests, persisted after every structural change.

    Entries are matched by identity for removal and requeueing, so an entry
    removed by a chat command while a tick is in flight is simply skipped.
    """

    def __init__(self, store: QueueStore, entries: Optional[List[QueueEntry]] = None):
        self.store = store
        self._entries: List[QueueEntry] = list(entries or [])

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[QueueEntry]:
        return iter(list(self._entries))

    def load(self) -> None:
        self._entries = self.store.load()

    def save(self) -> bool:
        try:
            self.store.save(self._entries)
        except PersistenceError as exc:
            # in-memory queue stays authoritative for this process
            logger.error('%s', exc)
            return False
        return True

    def snapshot(self) -> List[QueueEntry]:
        return list(self._entries)

    def head(self) -> Optional[QueueEntry]:
        return self._entries[0] if self._entries else None

    def find_duplicate(self, normalized: str) -> Optional[QueueEntry]:
        for entry in self._entries:
            if entry.normalized == normalized:
                return entry
        return None

    def add(self, username: str, raw_text: str) -> QueueEntry:
        song_name = clean_request(raw_text)
        if not song_name:
            raise InvalidRequest('please provide a valid song name')
        entry = QueueEntry(username=username, song_name=song_name, timestamp=now_ms(), raw_text=raw_text)
        if self.find_duplicate(entry.normalized):
            raise DuplicateRequest(song_name)
        self._entries.append(entry)
        self.save()
        logger.info('Queued "%s" for %s (%d pending)', song_name, username, len(self._entries))
        return entry

    def clear(self) -> int:
        removed = len(self._entries)
        self._entries.clear()
        self.save()
        return removed

    def remove_at(self, position: int) -> QueueEntry:
        if not isinstance(position, int) or position < 1 or position > len(self._entries):
            raise InvalidPosition(position, len(self._entries))
        entry = self._entries.pop(position - 1)
        self.save()
        return entry

    def _index_of(self, entry: QueueEntry) -> Optional[int]:
        for index, candidate in enumerate(self._entries):
            if candidate is entry:
                return index
        return None

    def remove(self, entry: QueueEntry) -> bool:
        index = self._index_of(entry)
        if index is None:
            return False
        del self._entries[index]
        self.save()
        return True

    def move_to_tail(self, entry: QueueEntry) -> bool:
        index = self._index_of(entry)
        if index is None:
            return False
        self._entries.append(self._entries.pop(index))
        self.save()
        return True
