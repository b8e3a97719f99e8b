from fastapi import APIRouter
from typing import Dict, List

from ..services.workflow_catalog import catalog

router = APIRouter()


@router.get("/workflow-catalog", response_model=Dict[str, Dict[str, List[str]]])
def get_workflow_catalog():
    """Legal next statuses for every process type and status"""
    return catalog.as_dict()
