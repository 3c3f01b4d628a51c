"""
Local Sources - JSON Export and Filesystem Blobs

Backends for offline use (CLI, tests): records from a JSON export of the
document store, upload bytes from a directory tree.
"""

import asyncio
import copy
import json
from pathlib import Path
from typing import Any, Dict, List

from finance_buddy.errors import BlobError, BlobNotFoundError, BlobTooLargeError, RecordError
from finance_buddy.sources.base import BlobStorage, RecordKind, RecordSource
from finance_buddy.utils.logger import get_logger

logger = get_logger('sources.static')


class StaticRecordSource(RecordSource):
    """
    Records held in memory.

    Data layout:
        {"users": {"<uid>": {"expenses": [...], "goals": [...],
                             "profile": {...}, "uploads": [...]}}}
    """

    def __init__(self, data: Dict[str, Any]):
        users = data.get("users") if isinstance(data, dict) else None
        if not isinstance(users, dict):
            raise RecordError("Record export must contain a 'users' mapping")
        self._users: Dict[str, Dict[str, Any]] = users

    @classmethod
    def from_json_file(cls, path: str) -> 'StaticRecordSource':
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise RecordError(f"Cannot read record export {path}: {e}") from e

        logger.info(f"Loaded record export from {path}")
        return cls(data)

    @property
    def user_ids(self) -> List[str]:
        return list(self._users.keys())

    async def fetch_records(self, user_id: str, kind: RecordKind) -> List[Dict[str, Any]]:
        user = self._users.get(user_id) or {}
        value = user.get(kind.value)

        if kind == RecordKind.PROFILE:
            return [copy.deepcopy(value)] if value else []

        if value is None:
            return []
        if not isinstance(value, list):
            raise RecordError(f"'{kind.value}' for {user_id} must be a list")
        return copy.deepcopy(value)


class LocalBlobStorage(BlobStorage):
    """Blobs stored as files under a root directory"""

    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.root / path.lstrip('/')).resolve()
        if target != self.root and self.root not in target.parents:
            raise BlobNotFoundError(f"Blob path escapes storage root: {path}")
        return target

    def _read(self, path: str, max_bytes: int) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise BlobNotFoundError(f"No blob at {path}")

        try:
            size = target.stat().st_size
            if size > max_bytes:
                raise BlobTooLargeError(f"Blob {path} is {size} bytes, limit {max_bytes}")
            with open(target, 'rb') as f:
                data = f.read(max_bytes + 1)
        except OSError as e:
            raise BlobError(f"Cannot read blob {path}: {e}") from e

        if len(data) > max_bytes:
            raise BlobTooLargeError(f"Blob {path} exceeds limit {max_bytes}")
        return data

    async def download(self, path: str, max_bytes: int) -> bytes:
        return await asyncio.to_thread(self._read, path, max_bytes)
