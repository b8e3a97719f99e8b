from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
import uuid

import pytest

from production_flow import crud, models
from production_flow.exceptions import (
    InsufficientBalance, InvalidAllocation, NotFound, UnitMismatch
)
from production_flow.services.calculations import round_half_up, to_quantity, to_units
from production_flow.services.lot_ledger import LotMaterialLedger
from production_flow.services.transition_validator import StageTransitionValidator


@pytest.fixture
def ledger(db):
    return LotMaterialLedger(db)


def test_quantity_helpers():
    assert to_quantity("10.005") == Decimal("10.01")
    assert to_quantity(3) == Decimal("3.00")
    assert to_units("12.34") == 1234
    assert round_half_up(Decimal("2.5")) == 3
    assert round_half_up(12.5) == 13
    assert round_half_up(Decimal("12.49")) == 12


def test_register_production_creates_balance(db, ledger, make_stage):
    source = make_stage(input_quantity="200")
    ledger.register_production("LOT-001", source.id, "120.50", "meters", actor_id="operator-1")
    ledger.register_production("LOT-001", source.id, "30", "meters", actor_id="operator-1")

    assert ledger.available_balance("LOT-001", source.id) == Decimal("150.50")
    balance = db.query(models.LotSourceBalance).filter_by(source_stage_instance_id=source.id).one()
    assert balance.produced_units == 15050
    assert balance.allocated_units == 0


def test_balance_of_a_stage_without_output_is_zero(ledger, make_stage):
    source = make_stage()
    assert ledger.available_balance("LOT-001", source.id) == Decimal("0")


def test_balance_of_unknown_stage(ledger):
    with pytest.raises(NotFound):
        ledger.available_balance("LOT-001", uuid.uuid4())


def test_allocate_reduces_available_and_grows_consumer_input(db, ledger, make_stage, completed_source):
    source = completed_source("100")
    consumer = make_stage(process_type=models.ProcessType.WASHING)

    entry = ledger.allocate("LOT-001", source.id, consumer.id, "40", actor_id="planner-1")

    assert entry.kind == models.LedgerEntryKind.ALLOCATED.value
    assert entry.consuming_stage_instance_id == consumer.id
    assert entry.quantity == Decimal("40")
    assert ledger.available_balance("LOT-001", source.id) == Decimal("60")
    assert crud.stage_instance.get(db, consumer.id).input_quantity == Decimal("40")


def test_allocate_whole_balance(ledger, make_stage, completed_source):
    source = completed_source("100")
    consumer = make_stage(process_type=models.ProcessType.WASHING)

    ledger.allocate("LOT-001", source.id, consumer.id, "100")
    assert ledger.available_balance("LOT-001", source.id) == Decimal("0")


def test_insufficient_balance_leaves_no_trace(db, ledger, make_stage, completed_source):
    source = completed_source("100")
    consumer = make_stage(process_type=models.ProcessType.WASHING)
    ledger.allocate("LOT-001", source.id, consumer.id, "70")

    with pytest.raises(InsufficientBalance) as exc_info:
        ledger.allocate("LOT-001", source.id, consumer.id, "30.01")

    assert exc_info.value.details == {"requested": "30.01", "available": "30.00"}
    assert ledger.available_balance("LOT-001", source.id) == Decimal("30")
    assert len(ledger.entries("LOT-001", source.id)) == 2
    assert crud.stage_instance.get(db, consumer.id).input_quantity == Decimal("70")


def test_allocate_before_any_production(ledger, make_stage):
    source = make_stage()
    consumer = make_stage(process_type=models.ProcessType.WASHING)

    with pytest.raises(InsufficientBalance):
        ledger.allocate("LOT-001", source.id, consumer.id, "1")


@pytest.mark.parametrize("quantity", ["0", "-5"])
def test_allocate_non_positive_quantity(ledger, make_stage, completed_source, quantity):
    source = completed_source("100")
    consumer = make_stage(process_type=models.ProcessType.WASHING)
    with pytest.raises(InvalidAllocation):
        ledger.allocate("LOT-001", source.id, consumer.id, quantity)


def test_allocate_to_self(ledger, completed_source):
    source = completed_source("100")
    with pytest.raises(InvalidAllocation):
        ledger.allocate("LOT-001", source.id, source.id, "10")


def test_allocate_across_lots(ledger, make_stage, completed_source):
    source = completed_source("100")
    consumer = make_stage(lot_number="LOT-002", process_type=models.ProcessType.WASHING)

    with pytest.raises(InvalidAllocation):
        ledger.allocate("LOT-001", source.id, consumer.id, "10")
    with pytest.raises(InvalidAllocation):
        ledger.allocate("LOT-002", source.id, consumer.id, "10")


def test_allocate_to_closed_consumer(db, ledger, make_stage, completed_source):
    source = completed_source("100")
    consumer = make_stage(process_type=models.ProcessType.WASHING)
    StageTransitionValidator(db).request_transition(
        consumer.id, models.StageStatus.CANCELLED, "planner-1", notes="Not needed"
    )

    with pytest.raises(InvalidAllocation):
        ledger.allocate("LOT-001", source.id, consumer.id, "10")


def test_allocate_unknown_stages(ledger, completed_source):
    source = completed_source("100")
    with pytest.raises(NotFound):
        ledger.allocate("LOT-001", source.id, uuid.uuid4(), "10")
    with pytest.raises(NotFound):
        ledger.allocate("LOT-001", uuid.uuid4(), source.id, "10")


def test_unit_mismatch(ledger, make_stage, completed_source):
    source = completed_source("100")
    consumer = make_stage(process_type=models.ProcessType.CUTTING_PACKING, unit=models.QuantityUnit.PIECES)

    with pytest.raises(UnitMismatch):
        ledger.allocate("LOT-001", source.id, consumer.id, "10")


def test_requested_unit_must_match_source(ledger, make_stage, completed_source):
    source = completed_source("100")
    consumer = make_stage(process_type=models.ProcessType.WASHING)

    with pytest.raises(UnitMismatch):
        ledger.allocate("LOT-001", source.id, consumer.id, "10", unit="pieces")
    assert ledger.allocate("LOT-001", source.id, consumer.id, "10", unit="meters").unit == "meters"


class TestRelease:

    def test_release_restores_balance(self, db, ledger, make_stage, completed_source):
        source = completed_source("100")
        consumer = make_stage(process_type=models.ProcessType.WASHING)
        allocation = ledger.allocate("LOT-001", source.id, consumer.id, "40")

        released = ledger.release(allocation.id, actor_id="planner-1")

        assert released.kind == models.LedgerEntryKind.RELEASED.value
        assert released.released_entry_id == allocation.id
        assert released.quantity == Decimal("40")
        assert ledger.available_balance("LOT-001", source.id) == Decimal("100")
        assert crud.stage_instance.get(db, consumer.id).input_quantity == Decimal("0")
        balance = db.query(models.LotSourceBalance).filter_by(source_stage_instance_id=source.id).one()
        assert balance.allocated_units == 0

    def test_release_twice(self, ledger, make_stage, completed_source):
        source = completed_source("100")
        consumer = make_stage(process_type=models.ProcessType.WASHING)
        allocation = ledger.allocate("LOT-001", source.id, consumer.id, "40")
        ledger.release(allocation.id)

        with pytest.raises(InvalidAllocation):
            ledger.release(allocation.id)
        assert ledger.available_balance("LOT-001", source.id) == Decimal("100")

    def test_release_non_allocation(self, ledger, completed_source):
        source = completed_source("100")
        produced = ledger.entries("LOT-001", source.id)[0]

        with pytest.raises(InvalidAllocation):
            ledger.release(produced.id)

    def test_release_unknown_entry(self, ledger):
        with pytest.raises(NotFound):
            ledger.release(uuid.uuid4())

    def test_consumed_material_cannot_be_released(self, db, ledger, make_stage, completed_source):
        source = completed_source("100")
        consumer = make_stage(process_type=models.ProcessType.WASHING)
        allocation = ledger.allocate("LOT-001", source.id, consumer.id, "40")

        validator = StageTransitionValidator(db)
        validator.start_stage(consumer.id, "operator-1")
        validator.complete_stage(consumer.id, "operator-1", produced_quantity="38",
                                 defect_quantity="2", notes="Washed")

        with pytest.raises(InvalidAllocation):
            ledger.release(allocation.id)

    def test_outstanding_allocations(self, ledger, make_stage, completed_source):
        source = completed_source("100")
        consumer = make_stage(process_type=models.ProcessType.WASHING)
        first = ledger.allocate("LOT-001", source.id, consumer.id, "10")
        second = ledger.allocate("LOT-001", source.id, consumer.id, "20")
        ledger.release(first.id)

        assert [a.id for a in ledger.outstanding_allocations(consumer.id)] == [second.id]


class TestLotViews:

    def test_lot_summary(self, ledger, make_stage, completed_source):
        source = completed_source("100")
        consumer = make_stage(process_type=models.ProcessType.WASHING)
        ledger.allocate("LOT-001", source.id, consumer.id, "35.5")

        summary = ledger.lot_summary("LOT-001")

        assert summary == [{
            "source_stage_instance_id": source.id,
            "process_type": "dyeing",
            "produced_quantity": Decimal("100.00"),
            "allocated_quantity": Decimal("35.50"),
            "available_quantity": Decimal("64.50"),
            "unit": "meters",
        }]

    def test_summary_of_unknown_lot(self, ledger):
        with pytest.raises(NotFound):
            ledger.lot_summary("LOT-404")

    def test_entries_are_oldest_first(self, ledger, make_stage, completed_source):
        source = completed_source("100")
        consumer = make_stage(process_type=models.ProcessType.WASHING)
        allocation = ledger.allocate("LOT-001", source.id, consumer.id, "10")
        ledger.release(allocation.id)

        kinds = [entry.kind for entry in ledger.entries("LOT-001")]
        assert kinds == ["produced", "allocated", "released"]


class TestConcurrentAllocation:

    def test_racing_allocations_never_overdraw(self, db, session_factory, make_stage, completed_source):
        source = completed_source("100")
        consumers = [make_stage(process_type=models.ProcessType.WASHING).id for _ in range(10)]
        source_id = source.id
        db.close()

        def allocate(consumer_id):
            session = session_factory()
            try:
                LotMaterialLedger(session).allocate("LOT-001", source_id, consumer_id, "15", actor_id="planner")
                return True
            except InsufficientBalance:
                return False
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=10) as pool:
            results = list(pool.map(allocate, consumers))

        assert results.count(True) == 6
        check = session_factory()
        try:
            ledger = LotMaterialLedger(check)
            assert ledger.available_balance("LOT-001", source_id) == Decimal("10")
            balance = check.query(models.LotSourceBalance).filter_by(source_stage_instance_id=source_id).one()
            assert balance.produced_units - balance.allocated_units == 1000
        finally:
            check.close()

    def test_different_sources_do_not_interfere(self, db, session_factory, make_stage, completed_source):
        first = completed_source("50").id
        second = completed_source("50").id
        consumers = [make_stage(process_type=models.ProcessType.WASHING).id for _ in range(4)]
        db.close()

        def allocate(args):
            source_id, consumer_id = args
            session = session_factory()
            try:
                LotMaterialLedger(session).allocate("LOT-001", source_id, consumer_id, "25")
            finally:
                session.close()

        jobs = [(first, consumers[0]), (second, consumers[1]), (first, consumers[2]), (second, consumers[3])]
        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(allocate, jobs))

        check = session_factory()
        try:
            ledger = LotMaterialLedger(check)
            assert ledger.available_balance("LOT-001", first) == Decimal("0")
            assert ledger.available_balance("LOT-001", second) == Decimal("0")
        finally:
            check.close()
