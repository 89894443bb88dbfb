import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
API = ROOT / "apps" / "api"
if str(API) not in sys.path:
    sys.path.insert(0, str(API))

from tests.helpers import START, FakeAnswerProvider, FakeClock, RecordingListener  # noqa: E402
from models.doubt import Author  # noqa: E402
from services.doubt_service import DoubtService  # noqa: E402
from services.doubt_store import MemoryDoubtStore  # noqa: E402
from services.escalation_policy import DwellTimes  # noqa: E402
from services.notification_service import NotificationDispatcher  # noqa: E402


@pytest.fixture
def clock():
    return FakeClock(START)


@pytest.fixture
def store():
    return MemoryDoubtStore()


@pytest.fixture
def provider():
    return FakeAnswerProvider("Photosynthesis turns light into chemical energy.")


@pytest.fixture
def listener():
    return RecordingListener()


@pytest.fixture
def dwell():
    return DwellTimes()


@pytest.fixture
def service(store, provider, listener, clock, dwell):
    return DoubtService(
        store=store,
        answer_provider=provider,
        dispatcher=NotificationDispatcher([listener]),
        dwell=dwell,
        clock=clock,
        store_timeout=1.0,
        answer_timeout=1.0,
    )


@pytest.fixture
def student():
    return Author(name="Asha", user_id="student-1")
