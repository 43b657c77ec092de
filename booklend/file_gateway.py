"""JSON file backed gateway.

All four collections live in simple JSON files under one data directory.
The whole store is kept in memory and rewritten atomically after every
committed write, so the locking and atomic transitions of
:class:`~booklend.gateway.MemoryGateway` carry over unchanged.  When a write
to disk fails, memory goes back to the last state that reached the disk.
"""

from __future__ import annotations

import itertools
import json
import logging
import os
from dataclasses import replace
from pathlib import Path

from .domain import Book, BorrowRequest, Notification, User
from .errors import Unavailable
from .gateway import MemoryGateway

logger = logging.getLogger(__name__)

COLLECTIONS = {
    'users': ('_users', User),
    'books': ('_books', Book),
    'requests': ('_requests', BorrowRequest),
    'notifications': ('_notifications', Notification),
}


def _load_json(path: Path, default: object) -> object:
    """Load JSON from the given file.  If it doesn't exist, return default.

    A file that does not parse is renamed to ``<name>.corrupt`` so the next
    write cannot overwrite it.
    """
    if not path.exists():
        return default
    with open(path, 'r', encoding='utf-8') as f:
        try:
            return json.load(f)
        except json.JSONDecodeError:
            pass
    aside = path.with_name(path.name + '.corrupt')
    os.replace(path, aside)
    logger.error(f'Corrupt data file moved to {aside}, starting {path.name} empty')
    return default


def _save_json(path: Path, data: object) -> None:
    """Write data as JSON to the given file atomically."""
    tmp_path = path.with_suffix('.tmp')
    with open(tmp_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, ensure_ascii=False, indent=2)
    os.replace(tmp_path, path)


class FileGateway(MemoryGateway):
    def __init__(self, data_dir) -> None:
        super().__init__()
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._load()

    def _path(self, name):
        return self.data_dir / f'{name}.json'

    def _load(self):
        with self._lock:
            for name, (attr, record_cls) in COLLECTIONS.items():
                raw = _load_json(self._path(name), default=[])
                store = {item['id']: record_cls.from_dict(item) for item in raw}
                setattr(self, attr, store)
                self._ids[name] = itertools.count(max(store, default=0) + 1)
            self._saved = self._snapshot()
            logger.debug(f'Loaded file store from {self.data_dir}: {len(self._books)} books, {len(self._users)} users')

    def _snapshot(self):
        return {
            attr: {key: replace(record) for key, record in getattr(self, attr).items()}
            for attr, _ in COLLECTIONS.values()
        }

    def _changed(self):
        try:
            for name, (attr, _) in COLLECTIONS.items():
                _save_json(self._path(name), [record.to_dict() for record in getattr(self, attr).values()])
        except OSError as e:
            logger.error(f'Failed to write file store {self.data_dir}: {str(e)}')
            for attr, records in self._saved.items():
                setattr(self, attr, records)
            self._saved = self._snapshot()
            raise Unavailable('Storage is temporarily unavailable') from e
        self._saved = self._snapshot()
