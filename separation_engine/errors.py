"""Separation engine exceptions.

Whole-operation failures are raised; row- and cell-level problems are not,
they travel in the ChangeReport as RowProblem entries.
"""

from typing import Any, Dict, List, Optional


class SeparationError(Exception):
    """Base exception for separation engine errors."""
    kind = "SeparationError"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "error": self.message, "details": self.details}


class InputMalformed(SeparationError):
    """Sheet cannot be used at all."""
    kind = "InputMalformed"


class EmptySheet(InputMalformed):
    """No material rows were found."""
    kind = "EmptySheet"


class NoStoresDeclared(InputMalformed):
    """Header row yields no store columns."""
    kind = "NoStoresDeclared"


class NoValidRows(InputMalformed):
    """Every row was skipped, nothing left to apply."""
    kind = "NoValidRows"

    def __init__(self, message: str, problems: Optional[List[Dict[str, Any]]] = None, total_problems: int = 0):
        super().__init__(message, {"problems": problems or [], "total_problems": total_problems})
        self.problems = problems or []
        self.total_problems = total_problems


class ActiveSeparationExists(SeparationError):
    """Owner already has an active separation (409)."""
    kind = "ActiveSeparationExists"
    status_code = 409

    def __init__(self, message: str, separation_id: Optional[int] = None):
        super().__init__(message, {"separation_id": separation_id})
        self.separation_id = separation_id


class NoActiveSeparation(SeparationError):
    """Operation needs an active separation and the owner has none (404)."""
    kind = "NoActiveSeparation"
    status_code = 404


class SeparationNotFound(SeparationError):
    """Separation does not exist or belongs to another owner (404)."""
    kind = "SeparationNotFound"
    status_code = 404


class MaterialNotFound(SeparationError):
    """Material is not part of the separation (404)."""
    kind = "MaterialNotFound"
    status_code = 404


class MaterialNotAllowed(SeparationError):
    """Material is outside the melancia allow-list."""
    kind = "MaterialNotAllowed"


class ExcessiveCutQuantity(SeparationError):
    """Partial cut asks for more than a store holds (422)."""
    kind = "ExcessiveCutQuantity"
    status_code = 422

    def __init__(self, message: str, store_code: str, requested: int, available: int):
        super().__init__(message, {
            "store_code": store_code,
            "requested": requested,
            "available": available,
        })
        self.store_code = store_code
        self.requested = requested
        self.available = available


class NothingToCut(SeparationError):
    """Cut would not change any cell (422)."""
    kind = "NothingToCut"
    status_code = 422


class StorageFailure(SeparationError):
    """Transaction or commit failed; nothing was written (500)."""
    kind = "StorageFailure"
    status_code = 500
