import asyncio

import pytest

from groundops.auth.security import verify_password
from groundops.errors import Conflict, NotFound, PermissionDenied, PortalError
from groundops.models.entities import UserRole, UserStatus
from groundops.models.tables import USERS
from groundops.services import users
from groundops.services.hierarchy import get_manager_chain

from conftest import (
    ADMIN_ID,
    BROADCAST_ID,
    MANAGER_ID,
    OTHER_STAFF_ID,
    PASSWORD,
    STAFF_ID,
    SUPERVISOR_ID,
    settle,
)


def run(coro):
    return asyncio.run(coro)


def stored(store, user_id):
    return next(r for r in store.rows(USERS) if r["id"] == user_id)


def test_compute_username():
    assert users.compute_username("Sam Staff") == "staffs"
    assert users.compute_username("Nour Al-Amin", 2) == "alaminn2"
    assert users.compute_username("Zoë") == "zoez"


def test_created_users_start_on_the_default_password(manager, store):
    async def scenario():
        admin = await manager.login("admina", PASSWORD)
        created = await users.create_user(admin, name="Sam Stone", staff_id="STF-9")
        assert created.username == "stones"
        assert created.must_change_password
        assert created.department == "Operations"
        row = stored(store, created.id)
        assert verify_password("123456", row["password"])
        assert row["password"] != "123456"

        clash = await users.create_user(admin, name="Simon Staff", staff_id="STF-10")
        assert clash.username == "staffs1"
        with pytest.raises(Conflict):
            await users.create_user(admin, name="Dup", staff_id="STF-9")

        first_login = await manager.login("stones", "123456")
        assert first_login.user.must_change_password

    run(scenario())


def test_only_admins_manage_users(manager):
    async def scenario():
        boss = await manager.login("managerm", PASSWORD)
        with pytest.raises(PermissionDenied):
            await users.create_user(boss, name="X Y", staff_id="X-1")
        with pytest.raises(PermissionDenied):
            await users.delete_user(boss, STAFF_ID)

    run(scenario())


def test_admins_cannot_lock_themselves_out(manager):
    async def scenario():
        admin = await manager.login("admina", PASSWORD)
        with pytest.raises(PermissionDenied):
            await users.delete_user(admin, ADMIN_ID)
        with pytest.raises(PermissionDenied):
            await users.set_user_status(admin, ADMIN_ID, UserStatus.INACTIVE)
        with pytest.raises(PermissionDenied):
            await users.update_user(admin, ADMIN_ID, {"role": UserRole.MANAGER})
        with pytest.raises(NotFound):
            await users.update_user(admin, BROADCAST_ID, {"name": "x"})

    run(scenario())


def test_toggle_and_reset_password(manager, store):
    async def scenario():
        admin = await manager.login("admina", PASSWORD)
        toggled = await users.toggle_user_status(admin, OTHER_STAFF_ID)
        assert toggled.status == UserStatus.INACTIVE
        toggled = await users.toggle_user_status(admin, OTHER_STAFF_ID)
        assert toggled.status == UserStatus.ACTIVE

        with pytest.raises(PortalError):
            await users.reset_password(admin, OTHER_STAFF_ID, "123")
        reset = await users.reset_password(admin, OTHER_STAFF_ID, "temp-pass")
        assert reset.must_change_password
        assert verify_password("temp-pass", stored(store, OTHER_STAFF_ID)["password"])

    run(scenario())


def test_changing_ones_own_password(manager, store):
    async def scenario():
        staff = await manager.login("staffs", PASSWORD)
        with pytest.raises(PortalError):
            await users.change_own_password(staff, "short")
        with pytest.raises(PortalError):
            await users.change_own_password(staff, PASSWORD)
        updated = await users.change_own_password(staff, "new-runway-7")
        assert not updated.must_change_password
        await settle()
        assert verify_password("new-runway-7", stored(store, STAFF_ID)["password"])
        assert not staff.user.must_change_password

    run(scenario())


def test_manager_assignment_rules(manager):
    async def scenario():
        admin = await manager.login("admina", PASSWORD)
        with pytest.raises(PermissionDenied):
            await users.assign_manager(admin, MANAGER_ID, STAFF_ID)
        with pytest.raises(PermissionDenied):
            await users.assign_manager(admin, MANAGER_ID, MANAGER_ID)

        await users.assign_manager(admin, MANAGER_ID, SUPERVISOR_ID)
        # supervisor reports to manager would now close a loop
        with pytest.raises(PermissionDenied):
            await users.assign_manager(admin, SUPERVISOR_ID, STAFF_ID)
        with pytest.raises(PermissionDenied):
            await users.assign_manager(admin, SUPERVISOR_ID, MANAGER_ID)
        assert get_manager_chain(STAFF_ID, admin.directory) == [MANAGER_ID, SUPERVISOR_ID]

        with pytest.raises(PermissionDenied):
            await users.update_user(admin, MANAGER_ID, {"role": UserRole.STAFF})

        cleared = await users.assign_manager(admin, STAFF_ID, None)
        assert cleared.manager_id is None

    run(scenario())


def test_org_chart_nests_reports(manager):
    async def scenario():
        admin = await manager.login("admina", PASSWORD)
        chart = {node.user.id: node for node in users.org_chart(admin)}
        assert BROADCAST_ID not in chart
        assert [r.user.id for r in chart[MANAGER_ID].reports] == [STAFF_ID]
        assert [r.user.id for r in chart[SUPERVISOR_ID].reports] == [OTHER_STAFF_ID]
        assert STAFF_ID not in chart

    run(scenario())


def test_deleting_a_user(manager, store):
    async def scenario():
        admin = await manager.login("admina", PASSWORD)
        await users.delete_user(admin, OTHER_STAFF_ID)
        assert all(r["id"] != OTHER_STAFF_ID for r in store.rows(USERS))
        with pytest.raises(NotFound):
            await users.delete_user(admin, OTHER_STAFF_ID)

    run(scenario())
