from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    @property
    def detail(self) -> Any:
        return self.message


class CatalogMissing(ServiceError):
    """No fee heads configured for the student's class and category."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class RegenerateConflict(ServiceError):
    """Regeneration requested over obligations that already have completed payments."""

    def __init__(self, head_ids: List[str]) -> None:
        super().__init__(
            "Cannot regenerate fee heads with completed payments: " + ", ".join(head_ids),
            status.HTTP_409_CONFLICT,
        )
        self.head_ids = head_ids

    @property
    def detail(self) -> Any:
        return {"message": self.message, "head_ids": self.head_ids}


class InvalidAmount(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_400_BAD_REQUEST)


class NoEligibleHeads(ServiceError):
    """Nothing selected, or every selected head is already settled. Nothing is committed."""

    def __init__(self, message: str, unallocated: Decimal) -> None:
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY)
        self.unallocated = unallocated

    @property
    def detail(self) -> Any:
        return {"message": self.message, "unallocated": f"{self.unallocated:.2f}"}


class StaleBreakdown(ServiceError):
    """Balances changed between breakdown and commit."""

    def __init__(self, stale_ids: List[str], message: Optional[str] = None) -> None:
        super().__init__(
            message or "Fee balances changed since the breakdown was computed; reload and retry",
            status.HTTP_409_CONFLICT,
        )
        self.stale_ids = stale_ids

    @property
    def detail(self) -> Dict[str, Any]:
        return {"message": self.message, "stale": self.stale_ids}


class PersistenceFailure(ServiceError):
    """Opaque storage failure. The transaction was rolled back; safe to retry."""

    def __init__(self, message: str = "Storage failure; no changes were saved") -> None:
        super().__init__(message, status.HTTP_503_SERVICE_UNAVAILABLE)
