import asyncio
import datetime as dt

import pytest

from groundops.auth.security import get_password_hash
from groundops.config import Settings
from groundops.models.entities import ExtractedEntities, User
from groundops.models.tables import USERS
from groundops.services.analysis import SafetyAnalysis
from groundops.services.context import SessionContext
from groundops.services.directory import Directory
from groundops.services.mirror import LocalMirror
from groundops.services.sessions import SessionManager
from groundops.store.local_provider import LocalRemoteStore


BROADCAST_ID = "00000000-0000-0000-0000-000000000000"
PASSWORD = "runway42"

ADMIN_ID = "u-admin"
MANAGER_ID = "u-manager"
SUPERVISOR_ID = "u-supervisor"
STAFF_ID = "u-staff"
OTHER_STAFF_ID = "u-other"
SAFETY_ID = "u-safety"


def make_cfg(**overrides) -> Settings:
    values = {
        "STORE_PROVIDER": "local",
        "STORAGE_PROVIDER": "local",
        "JWT_SECRET": "test-secret",
        "BROADCAST_USER_ID": BROADCAST_ID,
        "RATE_LIMIT": "1000/minute",
        "GEMINI_API_KEY": None,
    }
    values.update(overrides)
    return Settings(**values)


def user_rows(password: str = PASSWORD):
    hashed = get_password_hash(password)
    return [
        {"id": BROADCAST_ID, "name": "SYSTEM BROADCAST", "username": "system_broadcast", "password": hashed,
         "role": "admin", "staff_id": "SYS-000", "department": "Operations", "status": "inactive"},
        {"id": ADMIN_ID, "name": "Alice Admin", "username": "admina", "password": hashed,
         "role": "admin", "staff_id": "ADM-1", "department": "Operations", "status": "active"},
        {"id": MANAGER_ID, "name": "Mona Manager", "username": "managerm", "password": hashed,
         "role": "manager", "staff_id": "MGR-1", "department": "Operations", "status": "active"},
        {"id": SUPERVISOR_ID, "name": "Sid Supervisor", "username": "supervisors", "password": hashed,
         "role": "supervisor", "staff_id": "SUP-1", "department": "Maintenance", "status": "active"},
        {"id": STAFF_ID, "name": "Sam Staff", "username": "staffs", "password": hashed,
         "role": "staff", "staff_id": "STF-1", "department": "Operations", "status": "active",
         "manager_id": MANAGER_ID},
        {"id": OTHER_STAFF_ID, "name": "Omar Other", "username": "othero", "password": hashed,
         "role": "staff", "staff_id": "STF-2", "department": "Maintenance", "status": "active",
         "manager_id": SUPERVISOR_ID},
        {"id": SAFETY_ID, "name": "Sara Safety", "username": "safetys", "password": hashed,
         "role": "safety_manager", "staff_id": "SAF-1", "department": "Security", "status": "active"},
    ]


def make_user(user_id="u-1", name="Test User", role="staff", department="Operations", **fields) -> User:
    return User(
        id=user_id,
        name=name,
        username=fields.pop("username", user_id),
        role=role,
        staff_id=fields.pop("staff_id", f"S-{user_id}"),
        department=department,
        **fields,
    )


def make_mirror(user: User):
    context = SessionContext(user=user, broadcast_user_id=BROADCAST_ID, toast_ttl_seconds=8.0)
    mirror = LocalMirror(context)
    return context, mirror, Directory(mirror, BROADCAST_ID)


async def settle(rounds: int = 3) -> None:
    """Let scheduled change-feed echoes run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeAnalyzer:
    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.calls = []

    async def analyze_safety_report(self, description):
        self.calls.append(description)
        if self.delay:
            await asyncio.sleep(self.delay)
        return SafetyAnalysis(
            summary="Fuel spill near the stand; cordon off and call the fire service.",
            entities=ExtractedEntities(locations=["Stand 4"], equipment=["Fuel truck"], personnel=[]),
        )

    async def translate(self, text, target_lang):
        return f"[{target_lang}] {text}"

    async def summarize_chat(self, messages):
        return f"{len(messages)} messages exchanged." if messages else None

    async def shift_briefing(self, tasks):
        return f"{len(tasks)} open tasks." if tasks else None


class FakeClock:
    def __init__(self, start=None):
        self.now = start or dt.datetime(2024, 5, 1, 8, 0, tzinfo=dt.timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += dt.timedelta(seconds=seconds)


@pytest.fixture
def cfg():
    return make_cfg()


@pytest.fixture
def store():
    return LocalRemoteStore({USERS: user_rows()})


@pytest.fixture
def manager(store, cfg):
    return SessionManager(store, cfg, analyzer=FakeAnalyzer())
