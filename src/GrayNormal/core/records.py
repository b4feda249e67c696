"""Per-file and per-batch result records."""

from dataclasses import dataclass, field, asdict
from typing import List, Optional

STATUS_OK = "ok"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"


@dataclass
class FileResult:
    """Outcome of one input heightmap."""

    input_path: str
    output_path: Optional[str] = None
    status: str = STATUS_OK
    error: Optional[str] = None
    width: int = 0
    height: int = 0
    elapsed: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status == STATUS_OK

    def to_dict(self) -> dict:
        """Return dataclass fields as a plain dictionary."""
        return asdict(self)


@dataclass
class BatchResult:
    """Aggregate outcome of a batch run."""

    mode: str
    files: List[FileResult] = field(default_factory=list)
    outputs: List[str] = field(default_factory=list)

    def _count(self, status: str) -> int:
        return sum(1 for f in self.files if f.status == status)

    @property
    def succeeded(self) -> int:
        return self._count(STATUS_OK)

    @property
    def failed(self) -> int:
        return self._count(STATUS_FAILED)

    @property
    def cancelled(self) -> int:
        return self._count(STATUS_CANCELLED)

    @property
    def ok(self) -> bool:
        """True when every input succeeded and at least one output was written."""
        return bool(self.outputs) and self.failed == 0 and self.cancelled == 0

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "cancelled": self.cancelled,
            "outputs": list(self.outputs),
            "files": [f.to_dict() for f in self.files],
        }
