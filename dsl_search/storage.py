"""
Thread-safe storage for saved searches.

Persists named raw queries to a JSON file with schema:
{
    "id": string,
    "name": string,
    "description": string,
    "query": string | object,
    "created_at": ISO8601 datetime,
    "updated_at": ISO8601 datetime
}
"""

import json
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

RawQuery = Union[str, Dict[str, Any]]


class SavedSearchCreate(BaseModel):
    """Request to save a search."""
    name: str = Field(..., min_length=1, description="Search name")
    description: str = Field("", description="Search description")
    query: RawQuery = Field(..., description="Query document or compact query string")


class SavedSearchUpdate(BaseModel):
    """Fields to change on a saved search."""
    name: Optional[str] = None
    description: Optional[str] = None
    query: Optional[RawQuery] = None


class SavedSearch(BaseModel):
    """A saved search."""
    id: str
    name: str
    description: str
    query: RawQuery
    created_at: str
    updated_at: str


class SavedSearchStorage:
    """Thread-safe JSON-file storage for saved searches."""

    def __init__(self, storage_path: str | Path = "saved_searches.json"):
        """Initialize the storage.

        Args:
            storage_path: Path to the saved searches JSON file
        """
        self.storage_path = Path(storage_path)
        self._lock = threading.RLock()
        self._ensure_file_exists()

    def _ensure_file_exists(self) -> None:
        with self._lock:
            if not self.storage_path.exists():
                self.storage_path.parent.mkdir(parents=True, exist_ok=True)
                self._write_file([])

    def _read_file(self) -> List[Dict[str, Any]]:
        try:
            with open(self.storage_path, 'r') as f:
                content = f.read().strip()
                if not content:
                    return []
                return json.loads(content)
        except (FileNotFoundError, json.JSONDecodeError):
            return []

    def _write_file(self, searches: List[Dict[str, Any]]) -> None:
        with open(self.storage_path, 'w') as f:
            json.dump(searches, f, indent=2)

    def get_all(self) -> List[SavedSearch]:
        """Get all saved searches."""
        with self._lock:
            return [SavedSearch(**record) for record in self._read_file()]

    def get_by_id(self, search_id: str) -> Optional[SavedSearch]:
        """Get a saved search by ID.

        Args:
            search_id: The saved search ID

        Returns:
            The saved search or None if not found
        """
        with self._lock:
            for record in self._read_file():
                if record.get("id") == search_id:
                    return SavedSearch(**record)
            return None

    def create(self, request: SavedSearchCreate) -> SavedSearch:
        """Save a new search with a generated ID and timestamps."""
        with self._lock:
            records = self._read_file()

            now = datetime.now(timezone.utc).isoformat()
            saved = SavedSearch(
                id=str(uuid.uuid4()),
                name=request.name,
                description=request.description,
                query=request.query,
                created_at=now,
                updated_at=now,
            )

            records.append(saved.model_dump())
            self._write_file(records)
            return saved

    def update(self, search_id: str, request: SavedSearchUpdate) -> Optional[SavedSearch]:
        """Update an existing saved search.

        Args:
            search_id: The saved search ID
            request: Fields to change; unset fields are left alone

        Returns:
            The updated search or None if not found
        """
        with self._lock:
            records = self._read_file()

            for record in records:
                if record.get("id") == search_id:
                    record.update(request.model_dump(exclude_none=True))
                    record["updated_at"] = datetime.now(timezone.utc).isoformat()

                    self._write_file(records)
                    return SavedSearch(**record)

            return None

    def delete(self, search_id: str) -> bool:
        """Delete a saved search.

        Returns:
            True if it was deleted, False if not found
        """
        with self._lock:
            records = self._read_file()
            remaining = [r for r in records if r.get("id") != search_id]

            if len(remaining) < len(records):
                self._write_file(remaining)
                return True

            return False

    def export(self) -> str:
        """Export all saved searches as a JSON string."""
        with self._lock:
            return json.dumps(self._read_file(), indent=2)
