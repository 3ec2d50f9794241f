from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from study_guide.utils.json_repair import FAILURE_REASONS, FailureKind

STATUS_OK = "ok"
STATUS_FAILED = "failed"
STATUS_UNPROCESSED = "unprocessed"

UNPROCESSED_REASON = "Not processed before the time budget ran out."


@dataclass(frozen=True)
class RangeStatus:
    start: int
    end: int
    status: str
    error_kind: Optional[str] = None
    detail: Optional[str] = None

    @property
    def slide_count(self) -> int:
        return self.end - self.start + 1

    @property
    def label(self) -> str:
        if self.start == self.end:
            return f"Slide {self.start}"
        return f"Slide {self.start}–{self.end}"

    @property
    def reason(self) -> str:
        if self.status == STATUS_UNPROCESSED:
            return UNPROCESSED_REASON
        if self.error_kind in FailureKind.__members__:
            return FAILURE_REASONS[FailureKind(self.error_kind)]
        return self.detail or "Extraction failed."


@dataclass
class CoverageReport:
    first_slide: int
    last_slide: int
    ranges: List[RangeStatus] = field(default_factory=list)

    @property
    def total(self) -> int:
        if self.last_slide < self.first_slide:
            return 0
        return self.last_slide - self.first_slide + 1

    @property
    def processed(self) -> int:
        return sum(r.slide_count for r in self.ranges if r.status == STATUS_OK)

    @property
    def failed(self) -> List[RangeStatus]:
        return [r for r in self.ranges if r.status == STATUS_FAILED]

    @property
    def unprocessed(self) -> List[RangeStatus]:
        return [r for r in self.ranges if r.status == STATUS_UNPROCESSED]

    @property
    def missing(self) -> List[RangeStatus]:
        return [r for r in self.ranges if r.status != STATUS_OK]

    @property
    def partial(self) -> bool:
        return bool(self.missing)

    # "Slide 16–18: JSON appears truncated."
    def missing_lines(self) -> List[str]:
        return [f"{r.label}: {r.reason}" for r in self.missing]

    # Ranges tile [first, last] exactly once
    def is_exact_partition(self) -> bool:
        cursor = self.first_slide
        for r in sorted(self.ranges, key=lambda r: r.start):
            if r.start != cursor or r.end < r.start:
                return False
            cursor = r.end + 1
        return cursor == self.last_slide + 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "total": self.total,
            "ranges": [asdict(r) for r in self.ranges],
        }
