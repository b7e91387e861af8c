# Tests for ActionJournal recording and undo

import pytest
from unittest.mock import AsyncMock

from coach.errors import JournalError
from journal import ActionJournal, SetSnapshot, UpdateSetSnapshot, parse_set_id
from journal.journal import CONFLICT_MESSAGE, MISSING_TARGET_MESSAGE, RESTORED_CONFLICT_MESSAGE

USER_ID = "user_1"
OTHER_USER_ID = "user_2"

async def _logged_set(activity, journal, turn_id="turn_a", reps=10, performed_at=1_000):
    exercise, _ = await activity.ensure_exercise(USER_ID, "push-ups")
    record = await activity.insert_set(USER_ID, exercise.id, reps=reps, performed_at=performed_at)
    action_id = await journal.record(
        user_id=USER_ID,
        turn_id=turn_id,
        action_kind="log_set",
        affected_ids=[record.id],
        before_snapshot=SetSnapshot.of(record),
        performed_at=performed_at,
    )
    return record, action_id

async def _edited_set(activity, journal, record, changes, turn_id="turn_a", performed_at=2_000):
    updated = await activity.patch_set(record.id, changes)
    action_id = await journal.record(
        user_id=USER_ID,
        turn_id=turn_id,
        action_kind="update_set",
        affected_ids=[record.id],
        before_snapshot=UpdateSetSnapshot(before=SetSnapshot.of(record), after=SetSnapshot.of(updated)),
        performed_at=performed_at,
    )
    return updated, action_id

def test_parse_set_id():
    assert parse_set_id("set_" + "a" * 32) == "set_" + "a" * 32
    assert parse_set_id("set_123") is None
    assert parse_set_id(42) is None
    assert parse_set_id(None) is None

@pytest.mark.asyncio
async def test_undo_log_set_removes_the_set(activity, journal):
    record, action_id = await _logged_set(activity, journal)

    outcome = await journal.undo_one(USER_ID, action_id)

    assert outcome.ok
    assert outcome.action_id == action_id
    assert outcome.turn_id == "turn_a"
    assert await activity.get_set(record.id) is None
    stored = await journal.store.get_action(action_id)
    assert stored.status == "undone"
    assert stored.undone_at is not None

@pytest.mark.asyncio
async def test_undo_is_idempotent(activity, journal):
    _, action_id = await _logged_set(activity, journal)

    first = await journal.undo_one(USER_ID, action_id)
    second = await journal.undo_one(USER_ID, action_id)

    assert first.ok and not first.already_undone
    assert second.ok and second.already_undone

@pytest.mark.asyncio
async def test_undo_unknown_action_is_invalid(journal):
    outcome = await journal.undo_one(USER_ID, "act_missing")
    assert not outcome.ok
    assert outcome.reason == "invalid_action"
    assert outcome.message == "Action not found."

@pytest.mark.asyncio
async def test_foreign_action_looks_missing(activity, journal):
    record, action_id = await _logged_set(activity, journal)

    outcome = await journal.undo_one(OTHER_USER_ID, action_id)

    assert not outcome.ok
    assert outcome.reason == "invalid_action"
    assert await activity.get_set(record.id) is not None
    assert await journal.list_actions_for_turn(OTHER_USER_ID, "turn_a") == []

@pytest.mark.asyncio
async def test_undo_after_third_party_edit_is_a_conflict(activity, journal):
    record, action_id = await _logged_set(activity, journal)
    await activity.patch_set(record.id, {"reps": 12})

    outcome = await journal.undo_one(USER_ID, action_id)

    assert not outcome.ok
    assert outcome.reason == "conflict"
    assert outcome.message == CONFLICT_MESSAGE
    assert (await activity.get_set(record.id)).reps == 12
    assert (await journal.store.get_action(action_id)).status == "active"

@pytest.mark.asyncio
async def test_undo_of_deleted_target_is_missing(activity, journal):
    record, action_id = await _logged_set(activity, journal)
    await activity.delete_set(record.id)

    outcome = await journal.undo_one(USER_ID, action_id)

    assert outcome.reason == "missing_target"
    assert outcome.message == MISSING_TARGET_MESSAGE

@pytest.mark.asyncio
async def test_undo_of_purged_target_is_missing(activity, journal):
    record, action_id = await _logged_set(activity, journal)
    activity.purge_set(record.id)

    outcome = await journal.undo_one(USER_ID, action_id)

    assert outcome.reason == "missing_target"

@pytest.mark.asyncio
async def test_undo_update_restores_previous_values(activity, journal):
    record, _ = await _logged_set(activity, journal, turn_id="turn_log")
    _, action_id = await _edited_set(activity, journal, record, {"reps": 15}, turn_id="turn_edit")

    outcome = await journal.undo_one(USER_ID, action_id)

    assert outcome.ok
    assert (await activity.get_set(record.id)).reps == 10

@pytest.mark.asyncio
async def test_update_without_snapshot_is_invalid(activity, journal):
    record, _ = await _logged_set(activity, journal, turn_id="turn_log")
    action_id = await journal.record(
        user_id=USER_ID, turn_id="turn_edit", action_kind="update_set", affected_ids=[record.id],
    )

    outcome = await journal.undo_one(USER_ID, action_id)

    assert outcome.reason == "invalid_action"

@pytest.mark.asyncio
async def test_undo_delete_restores_the_set(activity, journal):
    record, _ = await _logged_set(activity, journal, turn_id="turn_log")
    await activity.delete_set(record.id)
    action_id = await journal.record(
        user_id=USER_ID, turn_id="turn_del", action_kind="delete_set",
        affected_ids=[record.id], before_snapshot=SetSnapshot.of(record),
    )

    outcome = await journal.undo_one(USER_ID, action_id)

    assert outcome.ok
    assert (await activity.get_set(record.id)).reps == 10

@pytest.mark.asyncio
async def test_undo_delete_after_manual_restore_conflicts(activity, journal):
    record, _ = await _logged_set(activity, journal, turn_id="turn_log")
    await activity.delete_set(record.id)
    action_id = await journal.record(
        user_id=USER_ID, turn_id="turn_del", action_kind="delete_set",
        affected_ids=[record.id], before_snapshot=SetSnapshot.of(record),
    )
    await activity.restore_set(record.id)

    outcome = await journal.undo_one(USER_ID, action_id)

    assert outcome.reason == "conflict"
    assert outcome.message == RESTORED_CONFLICT_MESSAGE

@pytest.mark.asyncio
async def test_undo_delete_of_purged_set_is_missing(activity, journal):
    record, _ = await _logged_set(activity, journal, turn_id="turn_log")
    await activity.delete_set(record.id)
    action_id = await journal.record(
        user_id=USER_ID, turn_id="turn_del", action_kind="delete_set",
        affected_ids=[record.id], before_snapshot=SetSnapshot.of(record),
    )
    activity.purge_set(record.id)

    outcome = await journal.undo_one(USER_ID, action_id)

    assert outcome.reason == "missing_target"

@pytest.mark.asyncio
async def test_invalid_affected_ids(journal):
    action_id = await journal.record(user_id=USER_ID, turn_id="t", action_kind="log_set", affected_ids=["not-a-set"])
    empty_id = await journal.record(user_id=USER_ID, turn_id="t", action_kind="log_set", affected_ids=[])
    unknown_kind = await journal.record(user_id=USER_ID, turn_id="t", action_kind="rename_exercise", affected_ids=["x"])

    assert (await journal.undo_one(USER_ID, action_id)).reason == "invalid_action"
    assert (await journal.undo_one(USER_ID, empty_id)).reason == "invalid_action"
    assert (await journal.undo_one(USER_ID, unknown_kind)).reason == "invalid_action"

@pytest.mark.asyncio
async def test_legacy_expected_snapshot_still_detects_conflicts(activity, journal):
    exercise, _ = await activity.ensure_exercise(USER_ID, "squats")
    record = await activity.insert_set(USER_ID, exercise.id, reps=5)
    action_id = await journal.record(
        user_id=USER_ID, turn_id="turn_a", action_kind="log_set",
        affected_ids=[record.id], expected_snapshot=SetSnapshot.of(record),
    )
    stored = await journal.store.get_action(action_id)
    assert stored.before_snapshot is None
    assert stored.args["expected_snapshot"]["reps"] == 5

    await activity.patch_set(record.id, {"reps": 6})
    assert (await journal.undo_one(USER_ID, action_id)).reason == "conflict"

@pytest.mark.asyncio
async def test_unparseable_snapshot_skips_the_comparison(activity, journal):
    record, _ = await _logged_set(activity, journal, turn_id="turn_log")
    action_id = await journal.record(
        user_id=USER_ID, turn_id="turn_b", action_kind="log_set",
        affected_ids=[record.id], before_snapshot={"reps": "ten"},
    )
    await activity.patch_set(record.id, {"reps": 11})

    outcome = await journal.undo_one(USER_ID, action_id)

    assert outcome.ok
    assert await activity.get_set(record.id) is None

@pytest.mark.asyncio
async def test_turn_undo_reverts_everything(activity, journal):
    first, _ = await _logged_set(activity, journal, performed_at=1_000)
    second, _ = await _logged_set(activity, journal, reps=20, performed_at=1_500)

    assert len(await journal.active_action_ids(USER_ID, "turn_a")) == 2
    outcome = await journal.undo_turn(USER_ID, "turn_a")

    assert outcome.ok
    assert outcome.undone_count == 2
    assert await activity.get_set(first.id) is None
    assert await activity.get_set(second.id) is None
    assert await journal.active_action_ids(USER_ID, "turn_a") == []

@pytest.mark.asyncio
async def test_turn_undo_is_all_or_nothing(activity, journal):
    first, _ = await _logged_set(activity, journal, performed_at=1_000)
    second, second_action = await _logged_set(activity, journal, reps=20, performed_at=1_500)
    await activity.patch_set(first.id, {"reps": 99})

    outcome = await journal.undo_turn(USER_ID, "turn_a")

    assert not outcome.ok
    assert outcome.reason == "conflict"
    assert outcome.turn_id is None
    assert outcome.action_id is not None and outcome.action_id != second_action
    # nothing was reverted, not even the untouched newer set
    assert (await activity.get_set(second.id)).reps == 20
    assert (await activity.get_set(first.id)).reps == 99
    assert len(await journal.active_action_ids(USER_ID, "turn_a")) == 2

@pytest.mark.asyncio
async def test_turn_undo_handles_log_then_edit_in_one_turn(activity, journal):
    record, _ = await _logged_set(activity, journal, performed_at=1_000)
    await _edited_set(activity, journal, record, {"reps": 12}, performed_at=2_000)

    outcome = await journal.undo_turn(USER_ID, "turn_a")

    assert outcome.ok
    assert outcome.undone_count == 2
    assert await activity.get_set(record.id) is None

@pytest.mark.asyncio
async def test_turn_undo_with_nothing_active(activity, journal):
    _, action_id = await _logged_set(activity, journal)
    await journal.undo_one(USER_ID, action_id)

    outcome = await journal.undo_turn(USER_ID, "turn_a")

    assert outcome.ok
    assert outcome.undone_count == 0

@pytest.mark.asyncio
async def test_turn_undo_is_scoped_to_the_user(activity, journal):
    record, _ = await _logged_set(activity, journal)

    outcome = await journal.undo_turn(OTHER_USER_ID, "turn_a")

    assert outcome.ok
    assert outcome.undone_count == 0
    assert await activity.get_set(record.id) is not None

@pytest.mark.asyncio
async def test_list_actions_newest_first(activity, journal):
    record, first = await _logged_set(activity, journal, performed_at=1_000)
    _, second = await _edited_set(activity, journal, record, {"reps": 12}, performed_at=2_000)

    actions = await journal.list_actions_for_turn(USER_ID, "turn_a")

    assert [action.id for action in actions] == [second, first]

@pytest.mark.asyncio
async def test_record_wraps_store_failures(activity):
    store = AsyncMock()
    store.insert_action.side_effect = RuntimeError("disk full")
    journal = ActionJournal(store, activity)

    with pytest.raises(JournalError):
        await journal.record(user_id=USER_ID, turn_id="t", action_kind="log_set", affected_ids=[])

    action_id, notices = await journal.record_best_effort(
        user_id=USER_ID, turn_id="t", action_kind="log_set", affected_ids=[],
    )
    assert action_id is None
    assert notices[0].title == "Undo unavailable"

@pytest.mark.asyncio
async def test_legacy_expected_snapshot_undoes(activity, journal):
    exercise, _ = await activity.ensure_exercise(USER_ID, "squats")
    record = await activity.insert_set(USER_ID, exercise.id, reps=5)
    action_id = await journal.record(
        user_id=USER_ID, turn_id="turn_a", action_kind="log_set",
        affected_ids=[record.id], expected_snapshot=SetSnapshot.of(record).model_dump(),
    )

    outcome = await journal.undo_one(USER_ID, action_id)

    assert outcome.ok
    assert await activity.get_set(record.id) is None

@pytest.mark.asyncio
async def test_turn_undo_applies_newest_first(activity, journal):
    first, _ = await _logged_set(activity, journal, performed_at=1_000)
    second, _ = await _logged_set(activity, journal, reps=20, performed_at=2_000)
    reverted = []
    delete_set = activity.delete_set

    async def tracking_delete(set_id):
        reverted.append(set_id)
        await delete_set(set_id)

    activity.delete_set = tracking_delete

    outcome = await journal.undo_turn(USER_ID, "turn_a")

    assert outcome.ok
    assert reverted == [second.id, first.id]

@pytest.mark.asyncio
async def test_same_millisecond_actions_keep_insertion_order(activity, journal):
    record, logged = await _logged_set(activity, journal, performed_at=5_000)
    _, edited = await _edited_set(activity, journal, record, {"reps": 12}, performed_at=5_000)

    actions = await journal.list_actions_for_turn(USER_ID, "turn_a")
    assert [action.id for action in actions] == [edited, logged]
    assert actions[0].seq > actions[1].seq

    outcome = await journal.undo_turn(USER_ID, "turn_a")

    assert outcome.ok
    assert outcome.undone_count == 2
    assert await activity.get_set(record.id) is None
