"""
业务异常到 HTTP 错误的转换
"""
from fastapi import HTTPException, status

from frontdesk.exceptions import InvalidTransition, NotFound


def http_error(e: ValueError) -> HTTPException:
    """NotFound -> 404，InvalidTransition -> 409，其余业务异常 -> 400"""
    if isinstance(e, NotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, InvalidTransition):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": str(e),
                "current_status": e.current_status,
                "target_status": e.target_status,
                "allowed": e.allowed,
            },
        )
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
