import asyncio

import pytest
from structlog.testing import capture_logs

from groundops.errors import ActionFailed, PermissionDenied
from groundops.models.entities import (
    ANONYMOUS_REPORTER,
    MessageStatus,
    ReportStatus,
    Severity,
    TaskPriority,
    TaskStatus,
    UserStatus,
)
from groundops.models.tables import DOCUMENTS, MESSAGES, TASKS, USERS
from groundops.services import documents, forum, messaging, safety, tasks, users
from groundops.services.messaging import MISSING_BROADCAST_USER
from groundops.services.sessions import SessionManager
from groundops.storage.local_provider import LocalStorageProvider
from groundops.store.local_provider import LocalRemoteStore
from groundops.store.provider import MutationResult

from conftest import (
    BROADCAST_ID,
    MANAGER_ID,
    PASSWORD,
    STAFF_ID,
    FakeAnalyzer,
    FakeClock,
    make_cfg,
    settle,
    user_rows,
)


def run(coro):
    return asyncio.run(coro)


def test_new_assignment_reaches_the_assignee_only(manager):
    async def scenario():
        boss = await manager.login("managerm", PASSWORD)
        staff = await manager.login("staffs", PASSWORD)
        task = await tasks.create_task(
            boss, title="Marshal flight EK201", assigned_to="Sam Staff", priority=TaskPriority.CRITICAL
        )
        await settle()
        assert [t.id for t in staff.visibility.tasks()] == [task.id]
        (note,) = staff.notifications.items()
        assert note.title == "New Duty Assignment"
        assert note.severity.value == "urgent"
        assert boss.notifications.items() == []
        assert staff.mirror.get(TASKS, task.id).created_at is not None

        await tasks.set_task_status(staff, task.id, TaskStatus.IN_PROGRESS)
        await settle()
        assert boss.mirror.get(TASKS, task.id).status == TaskStatus.IN_PROGRESS
        # the assignee made the change, so no "Task Synchronized" for them
        assert len(staff.notifications.items()) == 1

    run(scenario())


def test_failed_write_rolls_back_the_mirror(manager, store):
    async def scenario():
        boss = await manager.login("managerm", PASSWORD)
        task = await tasks.create_task(boss, title="Pushback", assigned_to="Sam Staff")
        store.online = False

        with pytest.raises(ActionFailed) as info:
            await tasks.create_task(boss, title="Never lands")
        assert info.value.kind == "connectivity"
        assert info.value.status_code == 502
        assert [t.id for t in boss.visibility.tasks()] == [task.id]

        with pytest.raises(ActionFailed):
            await tasks.set_task_status(boss, task.id, TaskStatus.BLOCKED)
        assert boss.mirror.get(TASKS, task.id).status == TaskStatus.PENDING

        with pytest.raises(ActionFailed):
            await tasks.delete_task(boss, task.id)
        assert boss.mirror.get(TASKS, task.id) is not None

    run(scenario())


def test_rollback_keeps_edits_another_session_made_meanwhile(manager, store, monkeypatch):
    async def scenario():
        boss = await manager.login("managerm", PASSWORD)
        admin = await manager.login("admina", PASSWORD)
        task = await tasks.create_task(boss, title="Pushback", assigned_to="Sam Staff")
        await settle()
        real_mutate = store.mutate

        async def rename_then_fail(table, op, payload=None, match=None):
            monkeypatch.setattr(store, "mutate", real_mutate)
            await tasks.update_task(admin, task.id, {"title": "Pushback stand 9"})
            await settle()
            return MutationResult.failure("connectivity", "Connection error")

        monkeypatch.setattr(store, "mutate", rename_then_fail)
        with pytest.raises(ActionFailed):
            await tasks.set_task_status(boss, task.id, TaskStatus.BLOCKED)

        mirrored = boss.mirror.get(TASKS, task.id)
        assert mirrored.title == "Pushback stand 9"
        assert mirrored.status == TaskStatus.PENDING

    run(scenario())


def test_resync_keeps_tables_the_store_cannot_serve(manager, store):
    async def scenario():
        boss = await manager.login("managerm", PASSWORD)
        await tasks.create_task(boss, title="Chocks on")
        store.online = False
        await boss.resync()
        assert len(boss.visibility.tasks()) == 1

    run(scenario())


def test_staff_cannot_create_tasks_or_cross_departments(manager):
    async def scenario():
        staff = await manager.login("staffs", PASSWORD)
        boss = await manager.login("managerm", PASSWORD)
        with pytest.raises(PermissionDenied):
            await tasks.create_task(staff, title="Nope")
        with pytest.raises(PermissionDenied):
            await tasks.create_task(boss, title="Other dept", department="Maintenance")

    run(scenario())


def test_anonymous_report_hides_the_reporter_but_still_alerts(manager):
    async def scenario():
        staff = await manager.login("staffs", PASSWORD)
        reviewer = await manager.login("safetys", PASSWORD)
        report = await safety.submit_report(
            staff, description="Fuel leak at stand 4", severity=Severity.HIGH, anonymous=True
        )
        await settle()
        assert report.reporter_id == ANONYMOUS_REPORTER
        assert report.ai_analysis.startswith("Fuel spill")
        assert report.entities.locations == ["Stand 4"]
        assert reviewer.visibility.reporter_name(report) is None
        (alert,) = reviewer.notifications.items()
        assert alert.title == "Safety Intelligence Alert"
        assert alert.severity.value == "urgent"

        with pytest.raises(PermissionDenied):
            await safety.set_report_status(staff, report.id, ReportStatus.RESOLVED)
        resolved = await safety.set_report_status(reviewer, report.id, ReportStatus.INVESTIGATING)
        assert resolved.status == ReportStatus.INVESTIGATING

    run(scenario())


def test_anonymous_report_log_line_carries_no_identity(manager):
    async def scenario():
        staff = await manager.login("staffs", PASSWORD)
        with capture_logs() as logs:
            report = await safety.submit_report(staff, description="Loose panel on belt loader", anonymous=True, analyze=False)
            await safety.submit_report(staff, description="Cone missing at stand 2", analyze=False)
        anonymous, named = [e for e in logs if e["event"] == "safety_report_submit"]
        assert anonymous["anonymous"] is True
        assert "user_id" not in anonymous
        assert "session_id" not in anonymous
        assert report.id not in anonymous.values()
        assert named["user_id"] == STAFF_ID

    run(scenario())


def test_slow_analysis_does_not_block_the_report(store):
    slow = SessionManager(store, make_cfg(ANALYSIS_TIMEOUT_S=0.01), analyzer=FakeAnalyzer(delay=1))

    async def scenario():
        staff = await slow.login("staffs", PASSWORD)
        report = await safety.submit_report(staff, description="Broken light on taxiway B")
        assert report.ai_analysis is None
        assert report.reporter_id == STAFF_ID

    run(scenario())


def test_deactivation_revokes_the_live_session(manager):
    async def scenario():
        admin = await manager.login("admina", PASSWORD)
        staff = await manager.login("staffs", PASSWORD)
        await users.set_user_status(admin, STAFF_ID, UserStatus.INACTIVE)
        await settle(6)
        assert staff.revoked
        assert staff.closed
        assert manager.get(staff.id) is None
        assert manager.get(admin.id) is admin

    run(scenario())


def test_own_profile_changes_flow_into_the_session(manager):
    async def scenario():
        admin = await manager.login("admina", PASSWORD)
        staff = await manager.login("staffs", PASSWORD)
        await users.update_user(admin, STAFF_ID, {"department": "Baggage"})
        await settle()
        assert staff.user.department == "Baggage"

    run(scenario())


def test_broadcast_fans_out_to_every_session(manager):
    async def scenario():
        boss = await manager.login("managerm", PASSWORD)
        staff = await manager.login("staffs", PASSWORD)
        other = await manager.login("othero", PASSWORD)
        sent = await messaging.broadcast(boss, "Thunderstorm: all ramp staff indoors")
        await settle()
        for session in (staff, other):
            assert [m.id for m in session.visibility.broadcasts()] == [sent.id]
            assert session.notifications.items()[0].title == "🚨 EMERGENCY BROADCAST"
        # the sender only gets the confirmation
        assert [n.title for n in boss.notifications.items()] == ["Broadcast Sent"]

        with pytest.raises(PermissionDenied):
            await messaging.broadcast(staff, "hello all")

    run(scenario())


def test_broadcast_without_the_broadcast_account(cfg):
    rows = [r for r in user_rows() if r["id"] != BROADCAST_ID]
    manager = SessionManager(LocalRemoteStore({USERS: rows}), cfg)

    async def scenario():
        boss = await manager.login("managerm", PASSWORD)
        with pytest.raises(ActionFailed) as info:
            await messaging.broadcast(boss, "Fire drill")
        assert info.value.message == MISSING_BROADCAST_USER
        assert boss.visibility.broadcasts() == []

    run(scenario())


def test_direct_messages_and_read_receipts(manager, store):
    async def scenario():
        boss = await manager.login("managerm", PASSWORD)
        staff = await manager.login("staffs", PASSWORD)
        await messaging.send_message(boss, STAFF_ID, "Go to gate 7")
        await messaging.send_message(boss, STAFF_ID, "Bring the tug")
        await settle()
        assert messaging.unread_count(staff) == 2
        (contact,) = messaging.contacts(staff)
        assert contact.id == MANAGER_ID
        assert contact.unread_count == 2
        assert contact.last_message.text == "Bring the tug"

        assert await messaging.mark_conversation_read(staff, MANAGER_ID) == 2
        await settle()
        assert messaging.unread_count(staff) == 0
        assert {r["status"] for r in store.rows(MESSAGES)} == {MessageStatus.READ.value}
        assert await messaging.summarize_conversation(staff, MANAGER_ID) == "2 messages exchanged."

    run(scenario())


def test_forum_replies_reach_other_sessions(manager):
    async def scenario():
        staff = await manager.login("staffs", PASSWORD)
        boss = await manager.login("managerm", PASSWORD)
        post = await forum.create_post(staff, title="Stand 4 lights", content="Out since 02:00")
        await settle()
        assert boss.notifications.items()[0].message == "Sam Staff posted: Stand 4 lights"
        await forum.add_reply(boss, post.id, "Electrician on the way")
        await settle()
        assert [r.content for r in staff.visibility.forum_posts()[0].replies] == ["Electrician on the way"]

        with pytest.raises(PermissionDenied):
            await forum.delete_post(staff, post.id)
        await forum.delete_post(boss, post.id)
        await settle()
        assert staff.visibility.forum_posts() == []

    run(scenario())


def test_document_blob_is_removed_when_the_row_fails(store, cfg, tmp_path):
    storage = LocalStorageProvider(str(tmp_path))
    manager = SessionManager(store, cfg, storage=storage)

    async def scenario():
        boss = await manager.login("managerm", PASSWORD)
        store.online = False
        with pytest.raises(ActionFailed):
            await documents.upload_document(boss, data=b"%PDF-1.4", filename="deicing.pdf", name="De-icing SOP")
        assert list((tmp_path / "uploads").iterdir()) == []
        assert boss.visibility.documents() == []

        store.online = True
        doc = await documents.upload_document(boss, data=b"%PDF-1.4", filename="deicing.pdf", name="De-icing SOP")
        assert doc.type == "PDF"
        assert doc.file_path.endswith("-de-icing-sop.pdf")
        assert await storage.exists(doc.file_path)
        assert (await documents.download_url(boss, doc.id)).endswith(doc.file_path)

        await documents.delete_document(boss, doc.id)
        assert not await storage.exists(doc.file_path)
        assert store.rows(DOCUMENTS) == []

    run(scenario())


def test_closing_a_session_unsubscribes(manager, store):
    async def scenario():
        staff = await manager.login("staffs", PASSWORD)
        assert store.subscriber_count == 1
        await manager.logout(staff.id)
        assert store.subscriber_count == 0
        assert manager.get(staff.id) is None
        assert staff.mirror.items(TASKS) == []

    run(scenario())


def test_sessions_past_their_token_lifetime_are_closed(store):
    clock = FakeClock()
    manager = SessionManager(store, make_cfg(JWT_TTL=600), analyzer=FakeAnalyzer(), clock=clock)

    async def scenario():
        first = await manager.login("staffs", PASSWORD)
        clock.advance(300)
        second = await manager.login("staffs", PASSWORD)
        assert len(manager) == 2
        assert store.subscriber_count == 2

        clock.advance(301)
        assert manager.get(first.id) is None
        assert manager.get(second.id) is second
        await settle()
        assert first.closed
        assert store.subscriber_count == 1

        clock.advance(600)
        await manager.login("managerm", PASSWORD)
        assert second.closed
        assert len(manager) == 1
        assert store.subscriber_count == 1

    run(scenario())
