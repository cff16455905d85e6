import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

SRC = ROOT / "src"
if SRC.exists() and str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from bitespeed.identity.config import get_settings  # noqa: E402
from bitespeed.identity.repository import InMemoryContactStore  # noqa: E402
from bitespeed.identity.services import IdentityResolver  # noqa: E402
from bitespeed.identity.types import Contact, LinkPrecedence  # noqa: E402

BASE_TIME = datetime(2024, 4, 1, 9, 0, tzinfo=timezone.utc)


class StepClock:
    """Returns strictly increasing timestamps, one second apart."""

    def __init__(self, start: datetime = BASE_TIME, step: timedelta = timedelta(seconds=1)) -> None:
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current += self.step
        return value


def make_contact(
    contact_id: int,
    email: str | None,
    phone_number: str | None,
    *,
    linked_id: int | None = None,
    minutes: int = 0,
) -> Contact:
    created = BASE_TIME - timedelta(days=1) + timedelta(minutes=minutes)
    return Contact(
        id=contact_id,
        email=email,
        phone_number=phone_number,
        linked_id=linked_id,
        link_precedence=LinkPrecedence.SECONDARY if linked_id is not None else LinkPrecedence.PRIMARY,
        created_at=created,
        updated_at=created,
    )


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store() -> InMemoryContactStore:
    return InMemoryContactStore(clock=StepClock())


@pytest.fixture
def resolver(store) -> IdentityResolver:
    return IdentityResolver(store)
