"""
Domain errors raised by the doubt services and their HTTP mapping
"""
from fastapi import HTTPException
import logging

logger = logging.getLogger(__name__)


class DoubtServiceError(Exception):
    """Base class for doubt lifecycle failures"""
    status_code = 500

    def __init__(self, message: str, doubt_id: str = None):
        super().__init__(message)
        self.message = message
        self.doubt_id = doubt_id


class DoubtNotFoundError(DoubtServiceError):
    status_code = 404

    def __init__(self, doubt_id: str):
        super().__init__(f"Doubt {doubt_id} not found", doubt_id)


class NotDoubtOwnerError(DoubtServiceError):
    status_code = 403

    def __init__(self, doubt_id: str, user_id: str):
        super().__init__(f"User {user_id} did not ask doubt {doubt_id}", doubt_id)
        self.user_id = user_id


class InvalidTransitionError(DoubtServiceError):
    """Requested action is not legal from the doubt's current status"""
    status_code = 409

    def __init__(self, doubt_id: str, current_status, action: str):
        current_status = getattr(current_status, "value", current_status)
        super().__init__(
            f"Cannot {action} doubt {doubt_id} while it is {current_status}", doubt_id)
        self.current_status = current_status
        self.action = action


class StoreUnavailableError(DoubtServiceError):
    """Doubt store failed or timed out; safe to retry"""
    status_code = 503


class ErrorHandler:

    @staticmethod
    def to_http_exception(error: Exception) -> HTTPException:
        """Map a service error onto the HTTPException the routers raise"""
        if isinstance(error, DoubtServiceError):
            if error.status_code >= 500:
                logger.error(f"Doubt service failure: {error.message}")
            return HTTPException(status_code=error.status_code, detail=error.message)

        logger.error(f"Unexpected error: {error}")
        return HTTPException(status_code=500, detail="Internal Server Error")
