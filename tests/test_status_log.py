from datetime import datetime, timedelta
import uuid

from production_flow import crud, models
from production_flow.services.transition_validator import StageTransitionValidator


def test_append_numbers_entries_per_stage(db):
    first_stage = uuid.uuid4()
    second_stage = uuid.uuid4()

    crud.stage_status_log.append(db, stage_instance_id=first_stage, from_status="pending",
                                 to_status="in_progress", actor_id="operator-1")
    crud.stage_status_log.append(db, stage_instance_id=second_stage, from_status="pending",
                                 to_status="cancelled", actor_id="planner-1", notes="Duplicate")
    crud.stage_status_log.append(db, stage_instance_id=first_stage, from_status="in_progress",
                                 to_status="on_hold", actor_id="operator-1", notes="Lunch",
                                 process_data={"machine": "JET-2"})
    db.commit()

    history = crud.stage_status_log.history(db, stage_instance_id=first_stage)
    assert [entry.sequence for entry in history] == [1, 2]
    assert history[1].process_data == {"machine": "JET-2"}
    assert crud.stage_status_log.history(db, stage_instance_id=second_stage)[0].sequence == 1


def test_history_of_a_stage_without_changes_is_empty(db):
    assert crud.stage_status_log.history(db, stage_instance_id=uuid.uuid4()) == []


def test_history_is_restartable(db, make_stage):
    stage = make_stage()
    StageTransitionValidator(db).start_stage(stage.id, "operator-1")

    first = crud.stage_status_log.history(db, stage_instance_id=stage.id)
    second = crud.stage_status_log.history(db, stage_instance_id=stage.id)
    assert [e.id for e in first] == [e.id for e in second]


def test_filtered_listing(db, make_stage):
    validator = StageTransitionValidator(db)
    dyeing = make_stage()
    washing = make_stage(process_type=models.ProcessType.WASHING)

    validator.start_stage(dyeing.id, "operator-1")
    validator.start_stage(washing.id, "operator-2")
    validator.hold_stage(washing.id, "operator-2", notes="Waiting for water softener")

    assert crud.stage_status_log.get_logs_count(db) == 3
    assert crud.stage_status_log.get_logs_count(db, actor_id="operator-2") == 2
    assert crud.stage_status_log.get_logs_count(db, to_status="on_hold") == 1
    assert crud.stage_status_log.get_logs_count(db, stage_instance_id=dyeing.id) == 1

    newest = crud.stage_status_log.get_logs(db, limit=1)
    assert newest[0].to_status == "on_hold"

    today = datetime.utcnow().date()
    assert crud.stage_status_log.get_logs_count(db, start_date=today - timedelta(days=1)) == 3
    assert crud.stage_status_log.get_logs_count(db, end_date=today - timedelta(days=1)) == 0
