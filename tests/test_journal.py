"""Tests for the request journal."""

import json
from pathlib import Path

from bramble.journal import RequestJournal
from bramble.models import Request, ServeEvent, StubMapping, SubEvent


def _event(url: str = "/a") -> ServeEvent:
    return ServeEvent.of(Request(method="GET", url=url), StubMapping())


def test_events_newest_first() -> None:
    journal = RequestJournal()
    for url in ("/1", "/2", "/3"):
        journal.record(_event(url))

    assert [e.request.url for e in journal.events()] == ["/3", "/2", "/1"]
    assert [e.request.url for e in journal.events(limit=2)] == ["/3", "/2"]


def test_bounded_journal_drops_oldest() -> None:
    """Once full, the oldest events should be discarded."""
    journal = RequestJournal(max_entries=2)
    for url in ("/1", "/2", "/3"):
        journal.record(_event(url))

    assert len(journal) == 2
    assert [e.request.url for e in journal.events()] == ["/3", "/2"]


def test_events_with_errors() -> None:
    """Only events carrying an error sub-event should be returned."""
    journal = RequestJournal()
    ok = _event("/ok")
    failed = _event("/failed")
    failed.append_sub_event(SubEvent.error("boom"))
    journal.record(ok)
    journal.record(failed)

    assert [e.request.url for e in journal.events_with_errors()] == ["/failed"]


def test_reset() -> None:
    journal = RequestJournal()
    journal.record(_event())
    journal.reset()
    assert len(journal) == 0


def test_event_log_written_as_jsonl(tmp_path: Path) -> None:
    """Events should be appended to the JSON Lines log."""
    log_path = tmp_path / "logs" / "events.jsonl"
    journal = RequestJournal(log_path=log_path)
    event = _event("/logged")
    event.append_sub_event(SubEvent.error("boom"))
    journal.record(event)
    journal.record(_event("/second"))

    lines = log_path.read_text().strip().split("\n")
    assert len(lines) == 2
    first = json.loads(lines[0])
    assert first["request"]["url"] == "/logged"
    assert first["sub_events"][0]["data"]["message"] == "boom"
