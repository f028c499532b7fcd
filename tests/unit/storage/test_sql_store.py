"""Test SqlUtilityStore transaction handling with stubbed repositories."""
from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from utility_ingestion.errors import PersistenceError
from utility_ingestion.models.schema import BillCharge, UtilityType
from utility_ingestion.storage import store as store_module
from utility_ingestion.storage.store import SqlUtilityStore
from tests.factories import at, make_meter_read, make_unit


class FakeTransaction:
    def __init__(self, outcomes):
        self._outcomes = outcomes

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self._outcomes.append("rollback" if exc_type else "commit")
        return False


class FakeSession:
    """Stands in for an AsyncSession; records how each transaction ended."""

    def __init__(self):
        self.transactions = []

    def begin(self):
        return FakeTransaction(self.transactions)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class RecordingReadingRepo:
    created = []

    def __init__(self, session):
        pass

    async def create_many(self, rows):
        RecordingReadingRepo.created.extend(rows)
        return rows


class FailingChargeRepo:
    def __init__(self, session):
        pass

    async def upsert(self, charge):
        raise OperationalError("INSERT INTO utility_bill_charge", {}, Exception("connection reset"))


@pytest.fixture
def session(monkeypatch):
    RecordingReadingRepo.created = []
    monkeypatch.setattr(store_module, "MeterReadingRepo", RecordingReadingRepo)
    monkeypatch.setattr(store_module, "BillChargeRepo", FailingChargeRepo)
    return FakeSession()


class TestRecordBill:
    @pytest.mark.asyncio
    async def test_charge_failure_rolls_back_readings(self, session):
        house = make_unit("House")
        sql_store = SqlUtilityStore(lambda: session)
        charge = BillCharge(
            unit_id=house.id,
            utility_type=UtilityType.GAS,
            bill_id="B-2025-01",
            period_start=date(2025, 1, 1),
            period_end=date(2025, 1, 31),
            total_charges_cad=98.41,
        )
        reading = make_meter_read(house.id, 1000, at("2025-01-01"), utility_type=UtilityType.GAS)

        with pytest.raises(PersistenceError) as exc_info:
            await sql_store.record_bill([reading], [charge])

        assert exc_info.value.details == {"operation": "record_bill"}
        assert len(RecordingReadingRepo.created) == 1
        assert session.transactions == ["rollback"]
