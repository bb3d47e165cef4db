from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .writes import BatchResult

GENERIC_ERROR_MESSAGE = "There was an error updating the rota. Please try refreshing the page."


class RotaError(Exception):
    """Base class for rota engine failures."""


class RotaNotFoundError(RotaError, ValueError):
    def __init__(self, rota_id) -> None:
        super().__init__(f"Rota with id {rota_id} was not found.")
        self.rota_id = rota_id


class AssignmentIndexError(RotaError, ValueError):
    def __init__(self, rota_id, index: int, size: int) -> None:
        super().__init__(f"Assignment index {index} is out of range for rota {rota_id} ({size} assignments).")
        self.rota_id = rota_id
        self.index = index
        self.size = size


class DuplicateAssignmentError(RotaError, ValueError):
    pass


class AssignmentValidationError(RotaError, ValueError):
    pass


class PartialWriteError(RotaError):
    """A sequenced batch stopped part way; earlier writes were not rolled back."""

    def __init__(self, result: "BatchResult", cause: Optional[BaseException] = None) -> None:
        completed = len(result.completed)
        total = completed + len(result.pending) + (1 if result.failed else 0)
        super().__init__(f"Write batch stopped after {completed} of {total} writes: {cause}")
        self.result = result
        self.cause = cause
