"""
Static catalog of legal stage status transitions per process type.

The tables are loaded once at import, checked for internal consistency and
frozen. Request-handling code only ever reads them.
"""
from types import MappingProxyType
from typing import Dict, FrozenSet, Iterable, Mapping, Union
import logging

from ..exceptions import CatalogIntegrityError
from ..models import ProcessType, StageStatus

logger = logging.getLogger(__name__)

S = StageStatus

# Shared by the wet-processing stages
STANDARD_WORKFLOW = {
    S.PENDING: [S.IN_PROGRESS, S.CANCELLED],
    S.IN_PROGRESS: [S.COMPLETED, S.ON_HOLD, S.QUALITY_HOLD, S.MACHINE_BREAKDOWN,
                    S.MATERIAL_SHORTAGE, S.CHEMICAL_ISSUE, S.CANCELLED],
    S.ON_HOLD: [S.IN_PROGRESS, S.CANCELLED],
    S.QUALITY_HOLD: [S.IN_PROGRESS, S.QUALITY_REJECT, S.CANCELLED],
    S.MACHINE_BREAKDOWN: [S.IN_PROGRESS, S.CANCELLED],
    S.MATERIAL_SHORTAGE: [S.IN_PROGRESS, S.CANCELLED],
    S.CHEMICAL_ISSUE: [S.IN_PROGRESS, S.CANCELLED],
    S.QUALITY_REJECT: [S.REWORK, S.CANCELLED],
    S.REWORK: [S.IN_PROGRESS, S.CANCELLED],
    S.COMPLETED: [S.READY_FOR_NEXT],
    S.READY_FOR_NEXT: [],  # Terminal state
    S.CANCELLED: [],  # Terminal state
}

QUALITY_CONTROL_WORKFLOW = {
    S.PENDING: [S.IN_PROGRESS, S.CANCELLED],
    S.IN_PROGRESS: [S.COMPLETED, S.ON_HOLD, S.QUALITY_HOLD, S.MACHINE_BREAKDOWN, S.CANCELLED],
    S.ON_HOLD: [S.IN_PROGRESS, S.CANCELLED],
    S.QUALITY_HOLD: [S.IN_PROGRESS, S.QUALITY_REJECT, S.CANCELLED],
    S.MACHINE_BREAKDOWN: [S.IN_PROGRESS, S.CANCELLED],
    S.QUALITY_REJECT: [S.REWORK, S.CANCELLED],
    S.REWORK: [S.IN_PROGRESS, S.CANCELLED],
    S.COMPLETED: [S.READY_FOR_NEXT],
    S.READY_FOR_NEXT: [],  # Terminal state
    S.CANCELLED: [],  # Terminal state
}

# Completion is final for the end-of-line stages
END_OF_LINE_WORKFLOW = {
    S.PENDING: [S.IN_PROGRESS, S.CANCELLED],
    S.IN_PROGRESS: [S.COMPLETED, S.ON_HOLD, S.QUALITY_HOLD, S.MACHINE_BREAKDOWN,
                    S.MATERIAL_SHORTAGE, S.CANCELLED],
    S.ON_HOLD: [S.IN_PROGRESS, S.CANCELLED],
    S.QUALITY_HOLD: [S.IN_PROGRESS, S.QUALITY_REJECT, S.CANCELLED],
    S.MACHINE_BREAKDOWN: [S.IN_PROGRESS, S.CANCELLED],
    S.MATERIAL_SHORTAGE: [S.IN_PROGRESS, S.CANCELLED],
    S.QUALITY_REJECT: [S.REWORK, S.CANCELLED],
    S.REWORK: [S.IN_PROGRESS, S.CANCELLED],
    S.COMPLETED: [],  # Final terminal state
    S.CANCELLED: [],  # Terminal state
}

GREY_FABRIC_INWARD_WORKFLOW = {
    S.PENDING: [S.IN_PROGRESS, S.CANCELLED],
    S.IN_PROGRESS: [S.COMPLETED, S.ON_HOLD, S.QUALITY_HOLD, S.CANCELLED],
    S.ON_HOLD: [S.IN_PROGRESS, S.CANCELLED],
    S.QUALITY_HOLD: [S.IN_PROGRESS, S.QUALITY_REJECT, S.CANCELLED],
    S.QUALITY_REJECT: [S.CANCELLED],  # Rejected grey goods go back to the supplier
    S.COMPLETED: [S.READY_FOR_NEXT],
    S.READY_FOR_NEXT: [],  # Terminal state
    S.CANCELLED: [],  # Terminal state
}

DISPATCH_WORKFLOW = {
    S.PENDING: [S.IN_PROGRESS, S.CANCELLED],
    S.IN_PROGRESS: [S.COMPLETED, S.ON_HOLD, S.CANCELLED],
    S.ON_HOLD: [S.IN_PROGRESS, S.CANCELLED],
    S.COMPLETED: [],  # Terminal state
    S.CANCELLED: [],  # Terminal state
}

P = ProcessType

DEFAULT_TRANSITIONS = {
    P.GREY_FABRIC_INWARD: GREY_FABRIC_INWARD_WORKFLOW,
    P.PRE_PROCESSING: STANDARD_WORKFLOW,
    P.DYEING: STANDARD_WORKFLOW,
    P.PRINTING: STANDARD_WORKFLOW,
    P.WASHING: STANDARD_WORKFLOW,
    P.FIXING: STANDARD_WORKFLOW,
    P.FINISHING: STANDARD_WORKFLOW,
    P.QUALITY_CONTROL: QUALITY_CONTROL_WORKFLOW,
    P.CUTTING_PACKING: END_OF_LINE_WORKFLOW,
    P.DISPATCH_INVOICE: DISPATCH_WORKFLOW,
    P.FELT: END_OF_LINE_WORKFLOW,
    P.FOLDING_CHECKING: END_OF_LINE_WORKFLOW,
    P.PACKING: END_OF_LINE_WORKFLOW,
}

TransitionTable = Mapping[ProcessType, Mapping[StageStatus, FrozenSet[StageStatus]]]


def _coerce(enum_cls, value, context: str):
    try:
        return enum_cls(value)
    except ValueError:
        raise CatalogIntegrityError(f"{context}: unknown {enum_cls.__name__} '{value}'")


class StageWorkflowCatalog:
    """Read-only lookup of legal next statuses per process type."""

    def __init__(self, table: Mapping):
        self._table: TransitionTable = self._freeze(table)
        logger.info(f"Loaded workflow catalog for {len(self._table)} process types")

    @staticmethod
    def _freeze(table: Mapping) -> TransitionTable:
        """Validate the raw table and return an immutable copy of it."""
        frozen: Dict[ProcessType, Mapping[StageStatus, FrozenSet[StageStatus]]] = {}

        for raw_process, raw_workflow in table.items():
            process_type = _coerce(ProcessType, raw_process, "catalog")
            workflow: Dict[StageStatus, FrozenSet[StageStatus]] = {}

            for raw_status, raw_targets in raw_workflow.items():
                status = _coerce(StageStatus, raw_status, process_type.value)
                targets = frozenset(
                    _coerce(StageStatus, target, f"{process_type.value}.{status.value}")
                    for target in raw_targets
                )
                if status in targets:
                    raise CatalogIntegrityError(
                        f"{process_type.value}: '{status.value}' lists itself as a next status"
                    )
                workflow[status] = targets

            if StageStatus.PENDING not in workflow:
                raise CatalogIntegrityError(f"{process_type.value}: missing '{StageStatus.PENDING.value}' entry")

            # Every status that can be reached must have its own entry
            for status, targets in workflow.items():
                missing = targets - workflow.keys()
                if missing:
                    names = sorted(m.value for m in missing)
                    raise CatalogIntegrityError(
                        f"{process_type.value}: '{status.value}' leads to {names} which have no entry"
                    )

            frozen[process_type] = MappingProxyType(workflow)

        return MappingProxyType(frozen)

    def allowed_next_statuses(
        self,
        process_type: Union[ProcessType, str],
        current_status: Union[StageStatus, str]
    ) -> FrozenSet[StageStatus]:
        """
        Statuses reachable in one step. Unknown process types or statuses
        give the empty set, the same answer as a terminal status.
        """
        try:
            workflow = self._table[ProcessType(process_type)]
            return workflow[StageStatus(current_status)]
        except (KeyError, ValueError):
            return frozenset()

    def is_terminal(self, process_type, status) -> bool:
        return not self.allowed_next_statuses(process_type, status)

    def process_types(self) -> Iterable[ProcessType]:
        return tuple(self._table.keys())

    def statuses(self, process_type) -> FrozenSet[StageStatus]:
        """Statuses a stage of this process type can ever hold."""
        try:
            return frozenset(self._table[ProcessType(process_type)].keys())
        except (KeyError, ValueError):
            return frozenset()

    def as_dict(self) -> Dict[str, Dict[str, list]]:
        """Plain representation for the catalog endpoint."""
        return {
            process_type.value: {
                status.value: sorted(target.value for target in targets)
                for status, targets in workflow.items()
            }
            for process_type, workflow in self._table.items()
        }


# Loaded once per process; a malformed table stops the import
catalog = StageWorkflowCatalog(DEFAULT_TRANSITIONS)
