from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional, Sequence

from .models import Assignment

if TYPE_CHECKING:
    from .backend import RotaBackend

logger = logging.getLogger(__name__)

APPEND = -1


@dataclass(frozen=True)
class WriteIntent:
    """One positional assignment write. ``index`` of ``APPEND`` creates ``new_assignment``."""

    rota_id: int
    index: int
    pharmacist_id: int
    new_assignment: Optional[Assignment] = None

    def describe(self) -> str:
        target = "append" if self.index == APPEND else f"#{self.index}"
        return f"rota {self.rota_id} {target} -> pharmacist {self.pharmacist_id}"


@dataclass
class BatchResult:
    completed: List[WriteIntent] = field(default_factory=list)
    failed: Optional[WriteIntent] = None
    pending: List[WriteIntent] = field(default_factory=list)
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.failed is None

    @property
    def partial(self) -> bool:
        return self.failed is not None and bool(self.completed)

    def remaining(self) -> List[WriteIntent]:
        """The failed intent followed by everything that never ran."""
        return ([self.failed] if self.failed else []) + list(self.pending)


class WriteSequencer:
    """Runs write intents strictly one after another against the backend.

    A failure stops the batch. Writes that already landed stay in place and
    the result reports which intents completed, which failed and which never
    ran, so the caller can re-sync and retry the remainder.
    """

    def __init__(self, backend: "RotaBackend") -> None:
        self.backend = backend

    async def run(self, intents: Sequence[WriteIntent]) -> BatchResult:
        result = BatchResult()
        intents = list(intents)
        for position, intent in enumerate(intents):
            try:
                await self.backend.update_rota_assignment(
                    intent.rota_id,
                    intent.index,
                    intent.pharmacist_id,
                    intent.new_assignment,
                )
            except Exception as exc:  # noqa: BLE001
                result.failed = intent
                result.error = exc
                result.pending = intents[position + 1 :]
                if result.completed:
                    logger.error(
                        "Write batch failed at %s after %d completed writes; requires reconciliation: %s",
                        intent.describe(),
                        len(result.completed),
                        exc,
                    )
                else:
                    logger.error("Write %s failed: %s", intent.describe(), exc)
                return result
            result.completed.append(intent)
            logger.debug("Applied %s", intent.describe())
        if intents:
            logger.info("Applied %d assignment writes", len(intents))
        return result

    async def retry(self, result: BatchResult) -> BatchResult:
        return await self.run(result.remaining())
