import pytest

from timetable_sync.services.core.snapshot_store import SnapshotStore


GERMAN_DAYS = ["Montag", "Dienstag", "Mittwoch", "Donnerstag", "Freitag"]
PERIOD_LABELS = [
    "1.08:10 - 08:55", "2.08:55 - 09:40", "3.10:00 - 10:45", "4.10:45 - 11:30",
    "5.11:50 - 12:35", "6.12:35 - 13:20", "7.14:00 - 14:45", "8.14:45 - 15:30",
]


class FakeClock:
    """Управляемые часы для проверок TTL и троттлинга."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def snapshot_store(tmp_path):
    return SnapshotStore(str(tmp_path / "snapshot.json"))


@pytest.fixture
def structured_payload():
    return {
        "days": list(GERMAN_DAYS),
        "periods": list(PERIOD_LABELS),
        "classes": [{"day": 0, "period": 0, "subject": "M", "room": "101"}],
    }
