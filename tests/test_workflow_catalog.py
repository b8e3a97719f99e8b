import pytest

from production_flow.exceptions import CatalogIntegrityError
from production_flow.models import ProcessType, StageStatus
from production_flow.services.workflow_catalog import StageWorkflowCatalog, catalog

S = StageStatus


def test_every_process_type_has_a_workflow():
    assert set(catalog.process_types()) == set(ProcessType)


@pytest.mark.parametrize("process_type", list(ProcessType))
def test_targets_are_known_statuses_of_the_same_process(process_type):
    statuses = catalog.statuses(process_type)
    assert S.PENDING in statuses
    for status in statuses:
        targets = catalog.allowed_next_statuses(process_type, status)
        assert targets <= statuses
        assert status not in targets


def test_standard_workflow_from_in_progress():
    assert catalog.allowed_next_statuses(ProcessType.DYEING, S.IN_PROGRESS) == frozenset({
        S.COMPLETED, S.ON_HOLD, S.QUALITY_HOLD, S.MACHINE_BREAKDOWN,
        S.MATERIAL_SHORTAGE, S.CHEMICAL_ISSUE, S.CANCELLED,
    })


def test_quality_control_has_no_chemical_or_material_issues():
    targets = catalog.allowed_next_statuses(ProcessType.QUALITY_CONTROL, S.IN_PROGRESS)
    assert S.CHEMICAL_ISSUE not in targets
    assert S.MATERIAL_SHORTAGE not in targets
    assert S.MACHINE_BREAKDOWN in targets


def test_completed_leads_to_ready_for_next_in_wet_processing():
    assert catalog.allowed_next_statuses(ProcessType.WASHING, S.COMPLETED) == frozenset({S.READY_FOR_NEXT})
    assert catalog.is_terminal(ProcessType.WASHING, S.READY_FOR_NEXT)


def test_cutting_packing_completion_is_terminal():
    assert catalog.is_terminal(ProcessType.CUTTING_PACKING, S.COMPLETED)
    assert S.CHEMICAL_ISSUE not in catalog.allowed_next_statuses(ProcessType.CUTTING_PACKING, S.IN_PROGRESS)


@pytest.mark.parametrize("process_type", list(ProcessType))
def test_cancelled_is_terminal_everywhere(process_type):
    assert catalog.allowed_next_statuses(process_type, S.CANCELLED) == frozenset()


def test_unknown_pairs_give_the_empty_set():
    assert catalog.allowed_next_statuses(ProcessType.DISPATCH_INVOICE, S.CHEMICAL_ISSUE) == frozenset()
    assert catalog.allowed_next_statuses("weaving", S.PENDING) == frozenset()
    assert catalog.allowed_next_statuses(ProcessType.DYEING, "teleported") == frozenset()


def test_lookups_accept_plain_values():
    assert catalog.allowed_next_statuses("dyeing", "pending") == frozenset({S.IN_PROGRESS, S.CANCELLED})


def test_as_dict_is_plain_strings():
    table = catalog.as_dict()
    assert table["dyeing"]["pending"] == ["cancelled", "in_progress"]
    assert table["dispatch_invoice"]["completed"] == []


def test_frozen_table_cannot_be_modified():
    with pytest.raises(TypeError):
        catalog._table[ProcessType.DYEING] = {}
    with pytest.raises(TypeError):
        catalog._table[ProcessType.DYEING][S.PENDING] = frozenset()


class TestSelfCheck:

    def test_target_without_entry(self):
        with pytest.raises(CatalogIntegrityError, match="no entry"):
            StageWorkflowCatalog({
                ProcessType.DYEING: {S.PENDING: [S.IN_PROGRESS]},
            })

    def test_self_loop(self):
        with pytest.raises(CatalogIntegrityError, match="lists itself"):
            StageWorkflowCatalog({
                ProcessType.DYEING: {S.PENDING: [S.PENDING]},
            })

    def test_missing_pending(self):
        with pytest.raises(CatalogIntegrityError, match="missing 'pending'"):
            StageWorkflowCatalog({
                ProcessType.DYEING: {S.IN_PROGRESS: [S.COMPLETED], S.COMPLETED: []},
            })

    def test_unknown_status_value(self):
        with pytest.raises(CatalogIntegrityError, match="unknown StageStatus"):
            StageWorkflowCatalog({
                ProcessType.DYEING: {S.PENDING: ["paused"]},
            })

    def test_unknown_process_type(self):
        with pytest.raises(CatalogIntegrityError, match="unknown ProcessType"):
            StageWorkflowCatalog({"weaving": {S.PENDING: []}})

    def test_minimal_valid_table(self):
        small = StageWorkflowCatalog({
            ProcessType.PACKING: {S.PENDING: [S.CANCELLED], S.CANCELLED: []},
        })
        assert small.allowed_next_statuses(ProcessType.PACKING, S.PENDING) == frozenset({S.CANCELLED})
        assert small.allowed_next_statuses(ProcessType.DYEING, S.PENDING) == frozenset()
