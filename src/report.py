"""
Cloud check report - problems found by a scan and outcomes of applying them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from problems.base import ProblemHandler


class Disposition(Enum):
    """Final disposition of a problem after an apply run."""

    RESOLVED = "resolved"
    IGNORED = "ignored"
    FAILED = "failed"
    SKIPPED = "skipped"


def problem_id(problem_type: str, resource_id: int) -> str:
    """Stable identifier of a problem across scans."""
    return f"{problem_type}/{resource_id}"


def parse_problem_id(value: str) -> Tuple[str, int]:
    """
    Split a problem identifier into type tag and resource id.

    Raises:
        ValueError: If the identifier is malformed
    """
    problem_type, sep, resource_id = value.rpartition("/")
    if not sep or not problem_type or not resource_id.isdigit():
        raise ValueError(f"Malformed problem id: {value}")
    return problem_type, int(resource_id)


@dataclass
class Problem:
    """An open problem retained by a scan."""

    id: str
    problem_type: str
    resource_id: int
    description: str
    resolutions: List[Tuple[str, str]]
    auto_resolution: str

    @classmethod
    def from_handler(cls, handler: ProblemHandler, auto_resolution: str) -> "Problem":
        return cls(
            id=problem_id(handler.problem_type, handler.resource_id),
            problem_type=handler.problem_type,
            resource_id=handler.resource_id,
            description=handler.description(),
            resolutions=[
                (option.name, option.plan()) for option in handler.resolutions()
            ],
            auto_resolution=auto_resolution,
        )

    @property
    def resolution_names(self) -> List[str]:
        return [name for name, _ in self.resolutions]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.problem_type,
            "resource_id": self.resource_id,
            "description": self.description,
            "resolutions": [
                {"name": name, "plan": plan} for name, plan in self.resolutions
            ],
            "auto_resolution": self.auto_resolution,
        }


@dataclass
class DetectionError:
    """A candidate that could not be turned into a problem."""

    problem_type: str
    resource_id: int
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.problem_type,
            "resource_id": self.resource_id,
            "reason": self.reason,
        }


@dataclass
class ProblemOutcome:
    """Final state of one problem after an apply run."""

    problem_id: str
    problem_type: str
    resource_id: int
    disposition: Disposition
    resolution: Optional[str] = None
    reason: Optional[str] = None
    duration_seconds: Optional[float] = None

    @property
    def success(self) -> bool:
        return self.disposition in (Disposition.RESOLVED, Disposition.IGNORED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "problem_id": self.problem_id,
            "type": self.problem_type,
            "resource_id": self.resource_id,
            "disposition": self.disposition.value,
            "resolution": self.resolution,
            "reason": self.reason,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class CheckReport:
    """Open problems and detection errors from one scan."""

    problems: List[Problem] = field(default_factory=list)
    errors: List[DetectionError] = field(default_factory=list)
    outcomes: List[ProblemOutcome] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.problems)

    def get(self, problem_id: str) -> Optional[Problem]:
        for problem in self.problems:
            if problem.id == problem_id:
                return problem
        return None

    def summary(self) -> Dict[str, int]:
        """Count outcomes by disposition."""
        counts = {d.value: 0 for d in Disposition}
        for outcome in self.outcomes:
            counts[outcome.disposition.value] += 1
        return counts

    def to_dict(self) -> Dict[str, Any]:
        return {
            "problems": [p.to_dict() for p in self.problems],
            "errors": [e.to_dict() for e in self.errors],
            "outcomes": [o.to_dict() for o in self.outcomes],
            "summary": self.summary(),
        }
