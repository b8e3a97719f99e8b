from fastapi import HTTPException
import logging

from ..database import get_db
from ..exceptions import FlowEngineError

# Logger setup
logger = logging.getLogger(__name__)


def server_error(action: str, error: Exception) -> HTTPException:
    """Log an unexpected failure and wrap it as a 500"""
    logger.error(f"Error {action}: {error}")
    return HTTPException(status_code=500, detail=str(error))


__all__ = ["get_db", "FlowEngineError", "server_error", "logger"]
