"""
External Boundaries - Record Source and Blob Storage

The service reads a tenant's records and uploaded file bytes through these
two interfaces; the concrete backends (cloud document store, object storage,
local JSON export) live outside the RAG core.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List


class RecordKind(Enum):
    """Record collections of one tenant"""
    EXPENSES = "expenses"
    GOALS = "goals"
    PROFILE = "profile"
    UPLOADS = "uploads"


class RecordSource(ABC):
    """Per-tenant record reader"""

    @abstractmethod
    async def fetch_records(self, user_id: str, kind: RecordKind) -> List[Dict[str, Any]]:
        """
        Fetch all records of one kind for a tenant.

        Args:
            user_id: Tenant
            kind: Collection to read

        Returns:
            Raw record mappings. PROFILE yields zero or one mapping.
        """
        pass


class BlobStorage(ABC):
    """Read-only access to uploaded file bytes"""

    @abstractmethod
    async def download(self, path: str, max_bytes: int) -> bytes:
        """
        Download one blob.

        Raises:
            BlobNotFoundError: no blob at path
            BlobTooLargeError: blob exceeds max_bytes
        """
        pass
