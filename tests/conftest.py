import os

# The module-level engine in production_flow.database must not touch a real database
os.environ.setdefault("DATABASE_URL", "sqlite://")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from production_flow import crud, models, schemas
from production_flow.database import Base, build_engine, get_db
from production_flow.main import app
from production_flow.services.transition_validator import StageTransitionValidator


@pytest.fixture
def engine(tmp_path):
    # File database so sessions on different threads share it
    engine = build_engine(f"sqlite:///{tmp_path / 'production_flow.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_order(db):
    def _make_order(order_quantity="0", unit=models.QuantityUnit.METERS, customer_name="Test Mills"):
        return crud.production_order.create_order(
            db,
            order_in=schemas.ProductionOrderCreate(
                customer_name=customer_name, order_quantity=Decimal(order_quantity), unit=unit
            )
        )
    return _make_order


@pytest.fixture
def make_stage(db):
    def _make_stage(
        lot_number="LOT-001",
        process_type=models.ProcessType.DYEING,
        input_quantity="0",
        unit=models.QuantityUnit.METERS,
        production_order_id=None,
        stage_number=1
    ):
        return crud.stage_instance.register_stage(
            db,
            stage_in=schemas.StageInstanceCreate(
                lot_number=lot_number,
                production_order_id=production_order_id,
                process_type=process_type,
                stage_number=stage_number,
                unit=unit,
                input_quantity=Decimal(input_quantity),
                created_by="supervisor-1"
            )
        )
    return _make_stage


@pytest.fixture
def completed_source(db, make_stage):
    """A finished stage on LOT-001 with 100 meters of output"""
    def _completed_source(produced="100", lot_number="LOT-001", unit=models.QuantityUnit.METERS):
        stage = make_stage(
            lot_number=lot_number,
            process_type=models.ProcessType.DYEING,
            input_quantity=produced,
            unit=unit
        )
        validator = StageTransitionValidator(db)
        validator.start_stage(stage.id, "operator-1")
        return validator.complete_stage(
            stage.id, "operator-1",
            produced_quantity=produced,
            defect_quantity="0",
            notes="Batch dyed to shade"
        )
    return _completed_source
