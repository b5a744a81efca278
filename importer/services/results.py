"""
Per-item result types for bulk migration.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional


@dataclass
class ItemResult:
    """Outcome of migrating one staged item."""

    id: int
    success: bool
    created_id: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            return {"id": self.id, "success": True, "created_id": self.created_id}
        return {"id": self.id, "success": False, "error": self.error}


@dataclass
class MigrationReport:
    """Fixed-shape report: one ItemResult per requested item."""

    results: List[ItemResult] = field(default_factory=list)

    def add(self, result: ItemResult):
        self.results.append(result)

    def __len__(self) -> int:
        return len(self.results)

    def __iter__(self) -> Iterator[ItemResult]:
        return iter(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": len(self.results),
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class MigrationOutcome:
    """What migrating one item did to the CMS."""

    record_id: int
    action: str  # created | updated | unchanged
