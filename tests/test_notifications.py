import datetime as dt

import pytest

from groundops.errors import NotFound
from groundops.models.entities import (
    LeaveRequest,
    LeaveStatus,
    NotificationKind,
    NotificationSeverity,
    Task,
    TaskStatus,
)
from groundops.models.tables import DOCUMENTS, LEAVE_REQUESTS, MESSAGES, SAFETY_REPORTS, TASKS, USERS
from groundops.services.context import SessionContext
from groundops.services.notifications import NotificationCenter, evaluate
from groundops.store.provider import build_event

from conftest import BROADCAST_ID, FakeClock, make_mirror, make_user


MANAGER = make_user("m", "Mona Manager", role="manager", department="Operations")
STAFF = make_user("s", "Sam Staff", role="staff", department="Operations", manager_id="m")
SAFETY = make_user("y", "Sara Safety", role="safety_manager", department="Security")


def setup(user):
    context, mirror, directory = make_mirror(user)
    mirror.replace_all(USERS, [MANAGER, STAFF, SAFETY])
    return context, mirror, directory


def rule_for(user, table, operation, record, old=None, prime=None):
    context, mirror, directory = setup(user)
    if prime is not None:
        mirror.replace_all(table, [prime])
    change = mirror.apply_event(build_event(table, operation, record, old or {}))
    return evaluate(change, context, directory)


def msg(sender, recipient_id, text="Gate change"):
    return {"id": "msg-1", "sender_id": sender.id, "recipient_id": recipient_id, "sender_name": sender.name, "text": text}


def test_broadcast_notifies_everyone_but_the_sender():
    rule = rule_for(STAFF, MESSAGES, "insert", msg(MANAGER, BROADCAST_ID))
    assert rule.kind == NotificationKind.BROADCAST
    assert rule.severity(None) == NotificationSeverity.URGENT
    assert rule_for(MANAGER, MESSAGES, "insert", msg(MANAGER, BROADCAST_ID)) is None


def test_direct_message_notifies_only_the_recipient():
    rule = rule_for(STAFF, MESSAGES, "insert", msg(MANAGER, STAFF.id, "hi"))
    assert rule.title == "New Secure Message"
    assert rule_for(SAFETY, MESSAGES, "insert", msg(MANAGER, STAFF.id)) is None


def test_safety_reports_alert_reviewers_with_severity():
    report = {"id": "r1", "reporter_id": STAFF.id, "description": "Fuel leak at stand 4", "severity": "high"}
    rule = rule_for(SAFETY, SAFETY_REPORTS, "insert", report)
    assert rule.title == "Safety Intelligence Alert"
    context, mirror, directory = setup(SAFETY)
    record = mirror.apply_event(build_event(SAFETY_REPORTS, "insert", report)).after
    assert rule.severity(record) == NotificationSeverity.URGENT
    assert rule_for(STAFF, SAFETY_REPORTS, "insert", report) is None


def test_document_upload_is_suppressed_for_the_uploader():
    doc = {"id": "d1", "name": "De-icing SOP", "uploaded_by": "Mona Manager"}
    assert rule_for(STAFF, DOCUMENTS, "insert", doc).title == "Manual Updated"
    assert rule_for(MANAGER, DOCUMENTS, "insert", doc) is None


def test_task_assignment_and_progress():
    row = {"id": "t1", "title": "Tow", "assigned_to": "Sam Staff", "status": "pending"}
    assert rule_for(STAFF, TASKS, "insert", row).title == "New Duty Assignment"
    assert rule_for(MANAGER, TASKS, "insert", row) is None

    prime = Task.model_validate(row)
    progressed = rule_for(STAFF, TASKS, "update", {"id": "t1", "status": "in_progress"}, prime=prime)
    assert progressed.title == "Task Synchronized"
    assert rule_for(STAFF, TASKS, "update", {"id": "t1", "status": "blocked"}, prime=prime) is None
    assert rule_for(STAFF, TASKS, "update", {"id": "t1", "title": "Tow!"}, prime=prime) is None


def test_late_update_for_an_unknown_record_is_not_news():
    row = {"id": "t1", "title": "Tow", "assigned_to": "Sam Staff", "status": "completed"}
    assert rule_for(STAFF, TASKS, "update", row) is None


def leave_request(status=LeaveStatus.PENDING):
    return LeaveRequest(
        id="l1",
        staff_id=STAFF.staff_id,
        staff_name=STAFF.name,
        start_date=dt.date(2024, 6, 1),
        end_date=dt.date(2024, 6, 5),
        status=status,
    )


def test_leave_requests_notify_deciders_and_then_the_owner():
    row = leave_request().model_dump(mode="json")
    assert rule_for(MANAGER, LEAVE_REQUESTS, "insert", row).title == "New Leave Request"
    assert rule_for(STAFF, LEAVE_REQUESTS, "insert", row) is None
    assert rule_for(SAFETY, LEAVE_REQUESTS, "insert", row) is None

    rule = rule_for(STAFF, LEAVE_REQUESTS, "update", {"id": "l1", "status": "rejected"}, prime=leave_request())
    assert rule.title == "Leave Status Updated"
    assert rule.severity(leave_request(LeaveStatus.REJECTED)) == NotificationSeverity.URGENT
    assert rule.severity(leave_request(LeaveStatus.APPROVED)) == NotificationSeverity.INFO


def center(ttl=8.0):
    context = SessionContext(user=STAFF, broadcast_user_id=BROADCAST_ID, toast_ttl_seconds=ttl)
    clock = FakeClock()
    return NotificationCenter(context, clock), clock


def test_center_keeps_newest_first_and_counts_unread():
    notes, _ = center()
    first = notes.push(NotificationKind.TASK, "One", "first")
    second = notes.push(NotificationKind.FORUM, "Two", "second")
    assert [n.id for n in notes.items()] == [second.id, first.id]
    assert notes.unread_count == 2

    assert notes.mark_read(first.id).is_read
    assert notes.unread_count == 1
    notes.mark_all_read()
    assert notes.unread_count == 0

    notes.dismiss(second.id)
    assert [n.id for n in notes.items()] == [first.id]
    with pytest.raises(NotFound):
        notes.mark_read("missing")


def test_toast_expires_on_the_clock():
    notes, clock = center(ttl=8.0)
    note = notes.push(NotificationKind.BROADCAST, "Alert", "Evacuate stand 3", NotificationSeverity.URGENT)
    assert notes.active_toast().id == note.id
    clock.advance(7.9)
    assert notes.active_toast() is not None
    clock.advance(0.2)
    assert notes.active_toast() is None
    # expiry hides the toast, not the notification
    assert notes.items()[0].id == note.id


def test_dismissing_the_toasted_notification_clears_the_toast():
    notes, _ = center()
    note = notes.push(NotificationKind.DOC, "Doc", "new")
    notes.dismiss(note.id)
    assert notes.active_toast() is None
    assert notes.items() == []


def test_status_transition_without_change_is_silent():
    prime = Task(id="t1", title="Tow", assigned_to="Sam Staff", status=TaskStatus.IN_PROGRESS)
    assert rule_for(STAFF, TASKS, "update", {"id": "t1", "status": "in_progress"}, prime=prime) is None
