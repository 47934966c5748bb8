"""FieldAutoSaveScheduler — debounce, baseline and cancellation behaviour.

Tests cover:
    - A burst of edits to one field commits once, with the last value
    - previous_value is the last committed value, not the last observed one
    - Different fields commit independently
    - Superseded handles are cancelled
    - Candidate values are snapshots
    - Commit failures go to the error hook and leave the baseline untouched
    - Commit failures are logged with the typed AutoSaveError
    - close() and the session token stop pending and in-flight work
    - Same-field commits never overlap
"""

import asyncio
from datetime import timedelta

from formkeeper.core.errors import AutoSaveError
from formkeeper.core.field_config import FieldAutoSaveConfig
from formkeeper.services.autosave_scheduler import FieldAutoSaveScheduler

from tests.services.fakes import settle

CFG_100 = FieldAutoSaveConfig(enabled=True, delay=timedelta(milliseconds=100))


def _make(recorder, scheduler, baseline=None, token=None, on_error=None):
    return FieldAutoSaveScheduler(
        recorder.commit,
        token or asyncio.Event(),
        baseline=baseline if baseline is not None else {"title": "orig", "body": ""},
        scheduler=scheduler,
        on_error=on_error or recorder.on_autosave_error,
        session_id="test",
    )


# ─── Debounce ────────────────────────────────────────────────────

async def test_single_edit_commits_after_delay(recorder, scheduler):
    autosave = _make(recorder, scheduler)
    autosave.schedule("title", "A", CFG_100)

    await scheduler.advance(0.05)
    assert recorder.commits == []
    assert autosave.pending_fields == {"title"}

    await scheduler.advance(0.06)
    assert recorder.commits == [("title", "orig", "A")]
    assert autosave.pending_fields == frozenset()
    assert autosave.last_committed("title") == "A"


async def test_burst_of_edits_commits_last_value_once(recorder, scheduler):
    autosave = _make(recorder, scheduler)
    for value in ("A", "AB", "ABC", "ABCD"):
        autosave.schedule("title", value, CFG_100)
        await scheduler.advance(0.03)

    await scheduler.advance(0.5)
    assert recorder.commits == [("title", "orig", "ABCD")]


async def test_previous_value_is_last_committed_value(recorder, scheduler):
    autosave = _make(recorder, scheduler)
    autosave.schedule("title", "A", CFG_100)
    await scheduler.advance(0.2)
    autosave.schedule("title", "B", CFG_100)
    autosave.schedule("title", "BC", CFG_100)
    await scheduler.advance(0.2)

    assert recorder.commits == [
        ("title", "orig", "A"),
        ("title", "A", "BC"),
    ]


async def test_unknown_baseline_reports_none_as_previous(recorder, scheduler):
    autosave = _make(recorder, scheduler, baseline={})
    autosave.schedule("title", "A", CFG_100)
    await scheduler.advance(0.2)
    assert recorder.commits == [("title", None, "A")]


async def test_distinct_fields_commit_independently(recorder, scheduler):
    autosave = _make(recorder, scheduler)
    autosave.schedule("title", "T1", CFG_100)
    await scheduler.advance(0.05)
    autosave.schedule("body", "B1", CFG_100)
    autosave.schedule("title", "T2", CFG_100)

    await scheduler.advance(0.3)
    assert sorted(recorder.commits) == [
        ("body", "", "B1"),
        ("title", "orig", "T2"),
    ]


async def test_superseded_handle_is_cancelled(recorder, scheduler):
    autosave = _make(recorder, scheduler)
    first = autosave.schedule("title", "A", CFG_100)
    second = autosave.schedule("title", "AB", CFG_100)

    assert first.handle.cancelled()
    assert not second.handle.cancelled()
    assert autosave.pending("title") is second


async def test_stale_callback_of_superseded_entry_is_ignored(recorder, scheduler):
    autosave = _make(recorder, scheduler)
    first = autosave.schedule("title", "A", CFG_100)
    autosave.schedule("title", "AB", CFG_100)

    # A timer that ignores cancel() still must not commit the old value
    first.handle.callback()
    await settle()
    assert recorder.started == []


async def test_candidate_value_is_snapshot(recorder, scheduler):
    autosave = _make(recorder, scheduler, baseline={"tags": []})
    tags = ["a"]
    autosave.schedule("tags", tags, CFG_100)
    tags.append("b")

    await scheduler.advance(0.2)
    assert recorder.commits == [("tags", [], ["a"])]


async def test_zero_delay_commits_on_next_advance(recorder, scheduler):
    autosave = _make(recorder, scheduler)
    autosave.schedule("title", "now", FieldAutoSaveConfig(enabled=True, delay=timedelta(0)))
    await scheduler.advance(0)
    assert recorder.commits == [("title", "orig", "now")]


# ─── Failures ────────────────────────────────────────────────────

async def test_commit_failure_reported_to_error_hook(recorder, scheduler):
    recorder.commit_error = RuntimeError("disk full")
    autosave = _make(recorder, scheduler)
    autosave.schedule("title", "A", CFG_100)
    await scheduler.advance(0.2)

    assert len(recorder.autosave_errors) == 1
    field, error = recorder.autosave_errors[0]
    assert field == "title"
    assert isinstance(error, AutoSaveError)
    assert error.field_name == "title"
    assert isinstance(error.cause, RuntimeError)
    assert error.recoverable
    assert autosave.last_committed("title") == "orig"


async def test_commit_failure_logs_typed_error(recorder, scheduler, caplog):
    recorder.commit_error = RuntimeError("disk full")
    autosave = _make(recorder, scheduler)
    autosave.schedule("title", "A", CFG_100)
    with caplog.at_level("WARNING", logger="formkeeper.services.autosave_scheduler"):
        await scheduler.advance(0.2)

    [record] = [r for r in caplog.records if r.getMessage().startswith("Autosave failed")]
    error = record.exc_info[1]
    assert isinstance(error, AutoSaveError)
    assert error.context.field_name == "title"
    assert error.__cause__ is recorder.commit_error


async def test_failure_keeps_previous_baseline_for_next_commit(recorder, scheduler):
    recorder.commit_error = RuntimeError("offline")
    autosave = _make(recorder, scheduler)
    autosave.schedule("title", "A", CFG_100)
    await scheduler.advance(0.2)

    recorder.commit_error = None
    autosave.schedule("title", "AB", CFG_100)
    await scheduler.advance(0.2)
    assert recorder.commits == [("title", "orig", "AB")]


async def test_failure_of_one_field_does_not_affect_another(scheduler):
    commits = []

    async def commit(field, previous, candidate):
        if field == "title":
            raise ValueError("bad title")
        commits.append(field)

    errors = []

    async def on_error(field, error):
        errors.append(field)

    autosave = FieldAutoSaveScheduler(
        commit, asyncio.Event(), baseline={}, scheduler=scheduler, on_error=on_error,
    )
    autosave.schedule("title", "x", CFG_100)
    autosave.schedule("body", "y", CFG_100)
    await scheduler.advance(0.2)

    assert commits == ["body"]
    assert errors == ["title"]


async def test_failing_error_hook_is_swallowed(recorder, scheduler):
    recorder.commit_error = RuntimeError("offline")

    async def broken_hook(field, error):
        raise KeyError("hook bug")

    autosave = _make(recorder, scheduler, on_error=broken_hook)
    autosave.schedule("title", "A", CFG_100)
    await scheduler.advance(0.2)

    # Still usable afterwards
    recorder.commit_error = None
    autosave.schedule("title", "B", CFG_100)
    await scheduler.advance(0.2)
    assert recorder.commits == [("title", "orig", "B")]


async def test_sync_commit_hook_is_supported(scheduler):
    seen = []
    autosave = FieldAutoSaveScheduler(
        lambda f, p, c: seen.append((f, p, c)), asyncio.Event(),
        baseline={"title": ""}, scheduler=scheduler,
    )
    autosave.schedule("title", "sync", CFG_100)
    await scheduler.advance(0.2)
    assert seen == [("title", "", "sync")]


# ─── Cancellation ────────────────────────────────────────────────

async def test_close_cancels_pending_commits(recorder, scheduler):
    autosave = _make(recorder, scheduler)
    pending = autosave.schedule("title", "A", CFG_100)
    autosave.close()

    await scheduler.advance(1.0)
    assert recorder.started == []
    assert pending.handle.cancelled()
    assert autosave.closed


async def test_schedule_after_close_is_noop(recorder, scheduler):
    autosave = _make(recorder, scheduler)
    autosave.close()
    assert autosave.schedule("title", "A", CFG_100) is None
    assert scheduler.handles == []


async def test_close_is_idempotent(recorder, scheduler):
    autosave = _make(recorder, scheduler)
    autosave.schedule("title", "A", CFG_100)
    autosave.close()
    assert autosave.close() == []


async def test_token_set_suppresses_firing(recorder, scheduler):
    token = asyncio.Event()
    autosave = _make(recorder, scheduler, token=token)
    pending = autosave.schedule("title", "A", CFG_100)
    token.set()

    pending.handle.callback()
    await scheduler.advance(1.0)
    assert recorder.started == []


async def test_close_cancels_in_flight_commit(recorder, scheduler):
    recorder.commit_gate = asyncio.Event()
    autosave = _make(recorder, scheduler)
    autosave.schedule("title", "A", CFG_100)
    await scheduler.advance(0.2)
    assert autosave.in_flight_fields == {"title"}

    tasks = autosave.close()
    await asyncio.gather(*tasks, return_exceptions=True)

    assert all(t.cancelled() for t in tasks)
    assert recorder.commits == []
    assert recorder.autosave_errors == []
    assert autosave.last_committed("title") == "orig"


async def test_cancel_single_field(recorder, scheduler):
    autosave = _make(recorder, scheduler)
    autosave.schedule("title", "A", CFG_100)
    autosave.schedule("body", "B", CFG_100)

    assert autosave.cancel("title")
    assert not autosave.cancel("title")
    await scheduler.advance(0.2)
    assert recorder.commits == [("body", "", "B")]


# ─── Same-field ordering ────────────────────────────────────────

async def test_same_field_commits_never_overlap(recorder, scheduler):
    recorder.commit_gate = asyncio.Event()
    autosave = _make(recorder, scheduler)

    autosave.schedule("title", "A", CFG_100)
    await scheduler.advance(0.2)
    autosave.schedule("title", "B", CFG_100)
    await scheduler.advance(0.2)

    # Second commit fired but waits for the first to finish
    assert recorder.started == [("title", "orig", "A")]

    recorder.commit_gate.set()
    await autosave.drain()
    assert recorder.commits == [
        ("title", "orig", "A"),
        ("title", "A", "B"),
    ]


async def test_commit_finishing_after_schedule_moves_previous(recorder, scheduler):
    recorder.commit_gate = asyncio.Event()
    autosave = _make(recorder, scheduler)
    autosave.schedule("title", "A", CFG_100)
    await scheduler.advance(0.12)
    second = autosave.schedule("title", "AB", CFG_100)
    assert second.previous_value == "orig"

    recorder.commit_gate.set()
    await settle()
    await scheduler.advance(0.2)
    assert second.previous_value == "A"
    assert recorder.commits == [
        ("title", "orig", "A"),
        ("title", "A", "AB"),
    ]


async def test_drain_waits_for_in_flight_commits(recorder, scheduler):
    recorder.commit_gate = asyncio.Event()
    autosave = _make(recorder, scheduler)
    autosave.schedule("title", "A", CFG_100)
    await scheduler.advance(0.2)

    drain = asyncio.create_task(autosave.drain())
    await settle()
    assert not drain.done()

    recorder.commit_gate.set()
    await drain
    assert recorder.commits == [("title", "orig", "A")]
    assert autosave.in_flight_fields == frozenset()
