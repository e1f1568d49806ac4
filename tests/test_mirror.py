from groundops.models.entities import ForumPost, ForumReply, Task, TaskStatus
from groundops.models.tables import FORUM_POSTS, FORUM_REPLIES, TASKS
from groundops.store.provider import ChangeEvent, ChangeOperation, build_event

from conftest import make_mirror, make_user


def task_row(task_id="t1", **fields):
    row = {"id": task_id, "title": "Refuel A320", "status": "pending", "department": "Operations"}
    row.update(fields)
    return row


def test_duplicate_insert_is_idempotent():
    _, mirror, _ = make_mirror(make_user())
    first = mirror.apply_event(build_event(TASKS, "insert", task_row()))
    second = mirror.apply_event(build_event(TASKS, "insert", task_row()))
    assert first.operation == ChangeOperation.INSERT
    assert second is None
    assert len(mirror.items(TASKS)) == 1


def test_newest_rows_go_first_in_descending_tables():
    _, mirror, _ = make_mirror(make_user())
    mirror.apply_event(build_event(TASKS, "insert", task_row("t1")))
    mirror.apply_event(build_event(TASKS, "insert", task_row("t2")))
    assert [t.id for t in mirror.items(TASKS)] == ["t2", "t1"]


def test_update_merges_into_existing_record():
    _, mirror, _ = make_mirror(make_user())
    mirror.apply_event(build_event(TASKS, "insert", task_row(location="Gate 12")))
    change = mirror.apply_event(build_event(TASKS, "update", {"id": "t1", "status": "completed"}))
    assert change.before.status == TaskStatus.PENDING
    assert change.after.status == TaskStatus.COMPLETED
    assert mirror.get(TASKS, "t1").location == "Gate 12"


def test_partial_update_before_insert_is_parked_then_applied():
    _, mirror, _ = make_mirror(make_user())
    assert mirror.apply_event(build_event(TASKS, "update", {"id": "t1", "status": "completed"})) is None
    assert mirror.items(TASKS) == []

    change = mirror.apply_event(build_event(TASKS, "insert", task_row()))
    assert change.operation == ChangeOperation.INSERT
    assert mirror.get(TASKS, "t1").status == TaskStatus.COMPLETED


def test_complete_update_before_insert_creates_the_record():
    _, mirror, _ = make_mirror(make_user())
    change = mirror.apply_event(build_event(TASKS, "update", task_row(status="blocked")))
    assert change.before is None
    assert mirror.get(TASKS, "t1").status == TaskStatus.BLOCKED


def test_insert_after_update_keeps_newer_fields():
    _, mirror, _ = make_mirror(make_user())
    mirror.apply_event(build_event(TASKS, "update", task_row(status="completed")))
    mirror.apply_event(build_event(TASKS, "insert", task_row(status="pending", created_at="2024-05-01T08:00:00Z")))
    task = mirror.get(TASKS, "t1")
    assert task.status == TaskStatus.COMPLETED
    assert task.created_at is not None


def test_delete_of_unknown_record_is_a_no_op():
    _, mirror, _ = make_mirror(make_user())
    assert mirror.apply_event(build_event(TASKS, "delete", {}, {"id": "missing"})) is None


def test_bad_events_are_dropped():
    _, mirror, _ = make_mirror(make_user())
    assert mirror.apply_event(build_event(TASKS, "insert", {"id": "t1"})) is None
    assert mirror.apply_event(build_event(TASKS, "insert", {"title": "no key"})) is None
    unknown = ChangeEvent(table="hangars", operation=ChangeOperation.INSERT, record={"id": "h1"})
    assert mirror.apply_event(unknown) is None
    assert mirror.items(TASKS) == []


def post_row(post_id="p1"):
    return {"id": post_id, "author_id": "u1", "author_name": "Sam", "title": "Stand 4", "content": "Lights out"}


def test_replies_merge_into_their_post():
    _, mirror, _ = make_mirror(make_user())
    mirror.apply_event(build_event(FORUM_POSTS, "insert", post_row()))
    reply = {"id": "r1", "post_id": "p1", "author_name": "Mona", "content": "On it"}
    change = mirror.apply_event(build_event(FORUM_REPLIES, "insert", reply))
    assert change.parent.replies[0].content == "On it"
    assert mirror.apply_event(build_event(FORUM_REPLIES, "insert", reply)) is None

    # delete payloads may carry only the reply id
    mirror.apply_event(build_event(FORUM_REPLIES, "delete", {}, {"id": "r1"}))
    assert mirror.get(FORUM_POSTS, "p1").replies == []


def test_reply_for_unloaded_post_is_dropped():
    _, mirror, _ = make_mirror(make_user())
    reply = {"id": "r1", "post_id": "nope", "author_name": "Mona", "content": "?"}
    assert mirror.apply_event(build_event(FORUM_REPLIES, "insert", reply)) is None


def test_upsert_and_restore_roll_back():
    _, mirror, _ = make_mirror(make_user())
    mirror.replace_all(TASKS, [Task.model_validate(task_row("t1")), Task.model_validate(task_row("t2"))])

    snapshot = mirror.upsert(TASKS, Task.model_validate(task_row("t2", status="completed")))
    assert mirror.get(TASKS, "t2").status == TaskStatus.COMPLETED
    mirror.restore(snapshot)
    assert mirror.get(TASKS, "t2").status == TaskStatus.PENDING

    snapshot = mirror.upsert(TASKS, Task.model_validate(task_row("t3")))
    mirror.restore(snapshot)
    assert mirror.get(TASKS, "t3") is None

    snapshot = mirror.remove(TASKS, "t2")
    assert mirror.get(TASKS, "t2") is None
    mirror.restore(snapshot)
    assert [t.id for t in mirror.items(TASKS)] == ["t1", "t2"]


def test_restore_keeps_feed_changes_that_landed_meanwhile():
    _, mirror, _ = make_mirror(make_user())
    mirror.replace_all(TASKS, [Task.model_validate(task_row("t1"))])

    snapshot = mirror.upsert(TASKS, Task.model_validate(task_row("t1", status="completed", location="Bay 3")))
    mirror.apply_event(build_event(TASKS, "update", {"id": "t1", "title": "Refuel A321", "location": "Bay 5"}))
    mirror.restore(snapshot)

    task = mirror.get(TASKS, "t1")
    assert task.title == "Refuel A321"
    assert task.location == "Bay 5"
    assert task.status == TaskStatus.PENDING


def test_restore_leaves_rows_deleted_or_recreated_meanwhile():
    _, mirror, _ = make_mirror(make_user())
    mirror.replace_all(TASKS, [Task.model_validate(task_row("t1")), Task.model_validate(task_row("t2"))])

    snapshot = mirror.upsert(TASKS, Task.model_validate(task_row("t1", status="blocked")))
    mirror.apply_event(build_event(TASKS, "delete", {}, {"id": "t1"}))
    mirror.restore(snapshot)
    assert mirror.get(TASKS, "t1") is None

    snapshot = mirror.remove(TASKS, "t2")
    mirror.apply_event(build_event(TASKS, "update", task_row("t2", status="in_progress")))
    mirror.restore(snapshot)
    assert [t.status for t in mirror.items(TASKS)] == [TaskStatus.IN_PROGRESS]


def test_reply_rollback_keeps_other_replies():
    _, mirror, _ = make_mirror(make_user())
    mirror.apply_event(build_event(FORUM_POSTS, "insert", post_row()))
    mine = ForumReply(id="r1", post_id="p1", author_name="Sam", content="Ladder needed")
    snapshot = mirror.upsert(FORUM_REPLIES, mine)
    theirs = {"id": "r2", "post_id": "p1", "author_name": "Mona", "content": "Sent one over"}
    mirror.apply_event(build_event(FORUM_REPLIES, "insert", theirs))
    mirror.restore(snapshot)
    assert [r.id for r in mirror.get(FORUM_POSTS, "p1").replies] == ["r2"]


def test_replace_all_drops_parked_updates():
    _, mirror, _ = make_mirror(make_user())
    mirror.apply_event(build_event(TASKS, "update", {"id": "t1", "status": "completed"}))
    mirror.replace_all(TASKS, [])
    mirror.apply_event(build_event(TASKS, "insert", task_row()))
    assert mirror.get(TASKS, "t1").status == TaskStatus.PENDING


def test_clear_empties_every_collection():
    _, mirror, _ = make_mirror(make_user())
    mirror.apply_event(build_event(TASKS, "insert", task_row()))
    mirror.upsert(FORUM_POSTS, ForumPost.model_validate(post_row()))
    mirror.clear()
    assert mirror.items(TASKS) == []
    assert mirror.items(FORUM_POSTS) == []
