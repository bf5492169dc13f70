"""Tests for queue message schemas."""

import pytest
from pydantic import ValidationError

from filevault.models.events import (
    EventType,
    FileEvent,
    FolderEvent,
    ProgressEvent,
    parse_message,
)
from filevault.models.progress import UploadProgress, UploadStatus


def test_progress_event_round_trips_camel_case():
    event = ProgressEvent(
        event=EventType.UPLOAD_PROGRESS,
        upload_id="u1",
        status=UploadStatus.UPLOADING,
        progress=12.5,
        uploaded_bytes=125,
        file_size=1000,
        file_name="a.pdf",
    )

    wire = event.to_wire()

    assert wire["uploadId"] == "u1"
    assert wire["uploadedBytes"] == 125
    assert wire["event"] == "UPLOAD_PROGRESS"
    assert isinstance(wire["at"], int)
    assert parse_message("progress", wire) == event


def test_progress_event_requires_upload_id():
    with pytest.raises(ValidationError):
        parse_message("progress", {"event": "UPLOAD_PROGRESS", "status": "uploading"})
    with pytest.raises(ValidationError):
        parse_message("progress", {"event": "UPLOAD_PROGRESS", "status": "uploading", "uploadId": ""})


@pytest.mark.parametrize(
    "changes",
    [
        {"event": "FILE_CREATED"},
        {"status": "paused"},
        {"progress": 101},
        {"progress": -1},
    ],
)
def test_progress_event_rejects_invalid_fields(changes):
    payload = {"event": "UPLOAD_PROGRESS", "uploadId": "u1", "status": "uploading", **changes}
    with pytest.raises(ValidationError):
        parse_message("progress", payload)


def test_unknown_keys_are_allowed():
    event = parse_message("progress", {"event": "UPLOAD_FAILED", "uploadId": "u1", "status": "failed", "reason": "x"})
    assert event.is_terminal


def test_from_record():
    record = UploadProgress(upload_id="u1", status=UploadStatus.COMPLETED, progress=100, uploaded_bytes=9)
    event = ProgressEvent.from_record(record)

    assert event.event is EventType.UPLOAD_COMPLETED
    assert event.progress == 100
    assert event.is_terminal


def test_file_event():
    event = parse_message("file", {"event": "FILE_DELETED", "fileId": "f1", "folderId": "root"})
    assert isinstance(event, FileEvent)

    with pytest.raises(ValidationError):
        parse_message("file", {"event": "FILE_CREATED"})
    with pytest.raises(ValidationError):
        parse_message("file", {"event": "FOLDER_CREATED", "fileId": "f1"})


def test_folder_events():
    event = parse_message("folder", {"event": "FOLDER_CREATED", "folderId": "d1", "name": "Docs"})
    assert isinstance(event, FolderEvent)

    tree = parse_message(
        "folder",
        {"event": "FOLDER_TREE_DELETED", "rootFolderId": "d1", "deletedFolderIds": ["d1", "d2"]},
    )
    assert tree.deleted_folder_ids == ["d1", "d2"]

    with pytest.raises(ValidationError):
        parse_message("folder", {"event": "FOLDER_TREE_DELETED", "folderId": "d1"})
    with pytest.raises(ValidationError):
        parse_message("folder", {"event": "FOLDER_UPDATED"})


def test_unknown_kind():
    with pytest.raises(KeyError):
        parse_message("billing", {})
