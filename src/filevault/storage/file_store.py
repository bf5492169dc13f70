"""File metadata store."""

from typing import Dict, List, Optional

from filevault.models.files import FileRecord


class FileStore:
    """In-memory store for file metadata records."""

    def __init__(self):
        self._files: Dict[str, FileRecord] = {}

    def create(self, record: FileRecord) -> FileRecord:
        """Store a new file record.

        Raises:
            ValueError: If a record with the same id already exists
        """
        if record.id in self._files:
            raise ValueError(f"File record {record.id} already exists")
        self._files[record.id] = record
        return record

    def get(self, file_id: str) -> Optional[FileRecord]:
        return self._files.get(file_id)

    def delete(self, file_id: str) -> Optional[FileRecord]:
        """Remove a file record, returning it if it existed."""
        return self._files.pop(file_id, None)

    def list_all(self, folder_id: Optional[str] = None) -> List[FileRecord]:
        """List file records, optionally restricted to one folder."""
        records = list(self._files.values())
        if folder_id is not None:
            records = [r for r in records if r.folder_id == folder_id]
        return records
