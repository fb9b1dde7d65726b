"""
Compensating actions for workflows that span the object store and the record store.

There are no transactions across the two stores. A workflow registers a
cleanup step after each side effect that a later failure would leave behind;
on failure the registered steps run newest-first. Steps are best effort: a
failing step is logged and reported, never retried, and never masks the
original error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CompensationResult:
    description: str
    succeeded: bool
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {"step": self.description, "succeeded": self.succeeded, "error": self.error}


class CompensationPlan:
    """Ordered list of cleanup steps for one run of a workflow."""

    def __init__(self, workflow: str) -> None:
        self.workflow = workflow
        self._steps: List[Tuple[str, Callable[[], Any]]] = []

    def add(self, description: str, action: Callable[[], Any]) -> None:
        self._steps.append((description, action))

    @property
    def steps(self) -> List[str]:
        return [description for description, _ in self._steps]

    def clear(self) -> None:
        """Forget registered steps once the workflow has committed."""
        self._steps.clear()

    def run(self) -> List[CompensationResult]:
        results: List[CompensationResult] = []
        while self._steps:
            description, action = self._steps.pop()
            logger.warning(f"[{self.workflow}] compensating: {description}")
            try:
                action()
            except Exception as exc:  # noqa: BLE001
                logger.error(f"[{self.workflow}] compensation failed: {description}: {exc}")
                results.append(CompensationResult(description, False, str(exc)))
            else:
                results.append(CompensationResult(description, True))
        return results
