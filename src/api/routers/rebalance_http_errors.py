from typing import NoReturn

from fastapi import HTTPException, status

from src.core.errors import RebalancePreconditionError
from src.core.jobs import RebalanceJobNotFoundError

# Starlette renamed the 422 constant and deprecated the old name.
if hasattr(status, "HTTP_422_UNPROCESSABLE_CONTENT"):
    HTTP_422_UNPROCESSABLE = status.HTTP_422_UNPROCESSABLE_CONTENT
else:
    HTTP_422_UNPROCESSABLE = status.HTTP_422_UNPROCESSABLE_ENTITY


def raise_rebalance_http_exception(exc: Exception) -> NoReturn:
    if isinstance(exc, RebalanceJobNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, RebalancePreconditionError):
        raise HTTPException(
            status_code=HTTP_422_UNPROCESSABLE,
            detail=str(exc),
        ) from exc
    raise exc
