"""
Tests for the folder-per-meeting store and its on-disk formats.
"""

import json
import os
import re
import shutil

import pytest

from mint.services.meeting_store import (
    METADATA_FILE,
    NOTES_FILE,
    TRANSCRIPT_FILE,
    MeetingNotFoundError,
    MeetingStore,
    PersistenceError,
    format_timestamp,
    parse_notes_markdown,
    parse_transcript_markdown,
    render_notes_markdown,
    slugify,
)
from mint.services.models import ActionItem, MeetingStatus, Notes, TranscriptEntry


def _read(store, meeting_id, name):
    with open(os.path.join(store.storage_path, meeting_id, name), "r", encoding="utf-8") as f:
        return f.read()


class TestFormatting:
    def test_timestamp_floors_and_pads(self):
        assert format_timestamp(0.0) == "00:00"
        assert format_timestamp(0.8) == "00:00"
        assert format_timestamp(65.9) == "01:05"

    def test_timestamp_minutes_past_two_digits(self):
        assert format_timestamp(6000) == "100:00"

    def test_negative_timestamp_clamps(self):
        assert format_timestamp(-3.2) == "00:00"

    def test_slugify(self):
        assert slugify("Weekly Sync: Q3 / Plans!") == "weekly-sync-q3-plans"

    def test_notes_markdown_layout(self):
        notes = Notes(
            summary="We planned the release.",
            decisions=["Ship Friday"],
            action_items=[
                ActionItem(task="Write changelog", assignee="Ana", due_date="2024-05-01"),
                ActionItem(task="Tag build"),
            ],
        )
        assert render_notes_markdown("Release", notes) == (
            "# Notes — Release\n"
            "\n"
            "## Summary\n"
            "We planned the release.\n"
            "\n"
            "## Decisions\n"
            "- Ship Friday\n"
            "\n"
            "## Action Items\n"
            "- [ ] Write changelog — Ana (due: 2024-05-01)\n"
            "- [ ] Tag build\n"
        )

    def test_empty_notes_use_none_placeholders(self):
        text = render_notes_markdown("Empty", Notes(summary=""))
        assert "## Decisions\n- None\n" in text
        assert "## Action Items\n- [ ] None\n" in text
        assert parse_notes_markdown(text) == Notes(summary="", decisions=[], action_items=[])

    def test_notes_parse_back(self):
        notes = Notes(
            summary="Two lines\nof summary.",
            decisions=["A", "B"],
            action_items=[ActionItem(task="Call vendor", assignee="Raj"), ActionItem(task="Book room", due_date="Friday")],
        )
        assert parse_notes_markdown(render_notes_markdown("T", notes)) == notes

    def test_transcript_parse_skips_header_and_noise(self):
        markdown = "# Transcript — Demo\n\n[00:03] **You**: Hi\nnot a line\n[01:02] **Unknown**: Who?\n"
        entries = parse_transcript_markdown(markdown)
        assert entries == [
            TranscriptEntry(speaker="You", content="Hi", timestamp_start=3.0, timestamp_end=3.0),
            TranscriptEntry(speaker=None, content="Who?", timestamp_start=62.0, timestamp_end=62.0),
        ]


class TestMeetingLifecycleOnDisk:
    def test_create_meeting_layout(self, store, buffers):
        meeting = store.create_meeting("Design Review")

        assert re.match(r"^\d{4}-\d{2}-\d{2}T\d{2}-\d{2}-\d{2}_design-review$", meeting.id)
        assert meeting.status == MeetingStatus.RECORDING
        assert re.match(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$", meeting.started_at)
        assert _read(store, meeting.id, TRANSCRIPT_FILE) == "# Transcript — Design Review\n\n"
        assert buffers.has(meeting.id)

    def test_metadata_record_format(self, store):
        meeting = store.create_meeting("Standup")
        raw = _read(store, meeting.id, METADATA_FILE)

        assert not raw.endswith("\n")
        assert list(json.loads(raw).keys()) == ["id", "title", "status", "startedAt", "endedAt"]
        assert raw == json.dumps(meeting.to_record(), indent=2)

    def test_colliding_ids_get_suffix(self, store):
        first = store.create_meeting("Same")
        second = store.create_meeting("Same")

        assert second.id != first.id
        if second.id.startswith(first.id):
            assert second.id == f"{first.id}-2"

    def test_update_status_sets_ended_at_once(self, store):
        meeting = store.create_meeting("Status")
        store.update_status(meeting.id, MeetingStatus.PROCESSING)
        updated = store.update_status(meeting.id, MeetingStatus.COMPLETED, ended_at="2024-01-01T00:00:00.000Z")

        assert updated.status == MeetingStatus.COMPLETED
        assert store.get_meeting(meeting.id).ended_at == "2024-01-01T00:00:00.000Z"

    def test_list_meetings_skips_invalid_folders(self, store):
        meeting = store.create_meeting("Real")
        os.makedirs(os.path.join(store.storage_path, "stray-folder"))
        with open(os.path.join(store.storage_path, "loose.txt"), "w") as f:
            f.write("x")

        assert [m.id for m in store.list_meetings()] == [meeting.id]

    def test_list_meetings_missing_storage(self, tmp_path):
        assert MeetingStore(str(tmp_path / "nowhere")).list_meetings() == []

    def test_storage_path_can_change_at_runtime(self, tmp_path):
        current = {"path": str(tmp_path / "a")}
        store = MeetingStore(lambda: current["path"])
        store.create_meeting("First")
        current["path"] = str(tmp_path / "b")

        assert store.list_meetings() == []
        store.create_meeting("Second")
        assert os.listdir(tmp_path / "b")

    def test_rename_keeps_id(self, store):
        meeting = store.create_meeting("Old")
        renamed = store.rename_meeting(meeting.id, "New")
        assert renamed.id == meeting.id
        assert store.get_meeting(meeting.id).title == "New"

    def test_title_line_breaks_do_not_leak_into_transcript(self, store):
        meeting = store.create_meeting("Sync\n[00:05] **Eve**: injected")

        assert meeting.title == "Sync [00:05] **Eve**: injected"
        assert _read(store, meeting.id, TRANSCRIPT_FILE) == "# Transcript — Sync [00:05] **Eve**: injected\n\n"
        assert store.read_transcript_entries(meeting.id) == []

    def test_rename_collapses_line_breaks(self, store):
        meeting = store.create_meeting("Plain")
        renamed = store.rename_meeting(meeting.id, "Two\r\nlines ")
        assert renamed.title == "Two lines"

    def test_delete_removes_folder_and_buffer(self, store, buffers):
        meeting = store.create_meeting("Gone")
        store.append_transcript_entry(meeting.id, TranscriptEntry("You", "bye", 1.0, 2.0))
        buffers.append(meeting.id, TranscriptEntry("You", "bye", 1.0, 2.0))

        store.delete_meeting(meeting.id)

        assert not os.path.exists(os.path.join(store.storage_path, meeting.id))
        assert not buffers.has(meeting.id)
        with pytest.raises(MeetingNotFoundError):
            store.get_meeting(meeting.id)

    def test_missing_meeting_raises_not_found(self, store):
        with pytest.raises(MeetingNotFoundError):
            store.get_meeting("2020-01-01T00-00-00_nope")
        with pytest.raises(MeetingNotFoundError):
            store.delete_meeting("2020-01-01T00-00-00_nope")

    def test_path_traversal_is_rejected(self, store):
        with pytest.raises(MeetingNotFoundError):
            store.get_meeting("../outside")

    def test_tags_sidecar(self, store):
        meeting = store.create_meeting("Tagged")
        assert store.get_tags(meeting.id) == []

        assert store.set_tags(meeting.id, ["b", "a", "a", " "]) == ["a", "b"]
        assert store.get_tags(meeting.id) == ["a", "b"]
        assert "tagIds" not in json.loads(_read(store, meeting.id, METADATA_FILE))

        store.set_tags(meeting.id, [])
        assert store.get_tags(meeting.id) == []


class TestTranscriptPersistence:
    def test_round_trip_at_second_precision(self, store):
        meeting = store.create_meeting("Round Trip")
        entries = [
            TranscriptEntry("You", "Hello there.", 0.4, 1.9),
            TranscriptEntry("Others", "Hi, how are you?", 2.0, 3.5),
            TranscriptEntry(None, "Background voice", 61.7, 63.0),
            TranscriptEntry("You", "Late in the meeting", 6001.2, 6003.0),
        ]
        for entry in entries:
            store.append_transcript_entry(meeting.id, entry)

        restored = store.read_transcript_entries(meeting.id)

        assert [(e.speaker, e.content) for e in restored] == [(e.speaker, e.content) for e in entries]
        assert [e.timestamp_start for e in restored] == [0.0, 2.0, 61.0, 6001.0]

    def test_append_line_format(self, store):
        meeting = store.create_meeting("Lines")
        store.append_transcript_entry(meeting.id, TranscriptEntry("You", "Hello", 0.0, 0.8))
        assert _read(store, meeting.id, TRANSCRIPT_FILE).endswith("[00:00] **You**: Hello\n")

    def test_append_to_missing_folder_raises_persistence_error(self, store):
        meeting = store.create_meeting("Vanishing")
        shutil.rmtree(os.path.join(store.storage_path, meeting.id))
        with pytest.raises(PersistenceError):
            store.append_transcript_entry(meeting.id, TranscriptEntry("You", "lost", 0.0, 1.0))

    def test_full_transcript_prefers_buffer(self, store, buffers):
        meeting = store.create_meeting("Buffered")
        store.append_transcript_entry(meeting.id, TranscriptEntry("You", "on disk", 0.0, 1.0))
        buffers.append(meeting.id, TranscriptEntry("You", "in memory", 0.0, 1.0))

        assert store.get_full_transcript(meeting.id) == "You: in memory"

    def test_full_transcript_falls_back_to_disk(self, store, buffers):
        meeting = store.create_meeting("Disk")
        store.append_transcript_entry(meeting.id, TranscriptEntry("You", "first", 0.0, 1.0))
        store.append_transcript_entry(meeting.id, TranscriptEntry(None, "second", 1.0, 2.0))
        store.clear_transcript_buffer(meeting.id)

        assert store.get_full_transcript(meeting.id) == "You: first\nUnknown: second"

    def test_empty_transcript_is_empty_string(self, store):
        meeting = store.create_meeting("Silent")
        assert store.get_full_transcript(meeting.id) == ""


class TestNotesPersistence:
    def test_notes_absent_until_saved(self, store):
        meeting = store.create_meeting("Notes")
        assert store.get_notes(meeting.id) is None

    def test_save_overwrites(self, store):
        meeting = store.create_meeting("Notes")
        store.save_notes(meeting.id, Notes(summary="first"))
        store.save_notes(meeting.id, Notes(summary="second", decisions=["d"]))

        assert store.get_notes(meeting.id) == Notes(summary="second", decisions=["d"])
        assert _read(store, meeting.id, NOTES_FILE).startswith("# Notes — Notes\n")
