from __future__ import annotations
import contextlib
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import List, Sequence, Union

from .errors import PersistenceError
from .models import QueueEntry

logger = logging.getLogger(__name__)


class QueueStore:
    """JSON file holding the pending song requests, rewritten in full on save."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> List[QueueEntry]:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.info('No song queue file at %s; starting empty', self.path)
            return []
        except (OSError, ValueError) as exc:
            logger.error('Error loading song queue from %s: %s', self.path, exc)
            return []
        if not isinstance(data, list):
            logger.error('Song queue file %s does not hold a list; starting empty', self.path)
            return []
        entries: List[QueueEntry] = []
        for item in data:
            try:
                entries.append(QueueEntry.from_dict(item))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning('Skipping malformed queue record %r: %s', item, exc)
        logger.info('Loaded existing song queue with %d items', len(entries))
        return entries

    def save(self, entries: Sequence[QueueEntry]) -> None:
        payload = json.dumps([entry.to_dict() for entry in entries], indent=2, ensure_ascii=False)
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(prefix=f'.{self.path.name}.', suffix='.tmp', dir=directory)
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                with contextlib.suppress(FileNotFoundError):
                    os.unlink(tmp_path)
                raise
        except OSError as exc:
            raise PersistenceError(f'Error saving song queue to {self.path}: {exc}') from exc
        logger.debug('Saved song queue with %d items', len(entries))
