"""
Shared parser result types.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional


class ParseIssueSeverity(Enum):
    """Severity level for parse issues."""

    WARNING = "warning"  # Non-fatal: one entry skipped, stream continues
    ERROR = "error"  # Fatal: the export could not be processed further


@dataclass
class ParseIssue:
    """
    Structured parse issue.

    Attributes:
        severity: WARNING (entry skipped) or ERROR (stream aborted)
        message: Human-readable description
        entry_index: Position of the entry in the export array
        external_id: Source conversation id, when it could be read
    """

    severity: ParseIssueSeverity
    message: str
    entry_index: Optional[int] = None
    external_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "severity": self.severity.value,
            "message": self.message,
        }
        if self.entry_index is not None:
            result["entry_index"] = self.entry_index
        if self.external_id:
            result["external_id"] = self.external_id
        return result


@dataclass
class ParseStats:
    """Running counters and issues collected while streaming one export."""

    entries_seen: int = 0
    conversations_yielded: int = 0
    issues: List[ParseIssue] = field(default_factory=list)

    def add_issue(self, issue: ParseIssue) -> None:
        self.issues.append(issue)

    @property
    def warning_count(self) -> int:
        return sum(1 for i in self.issues if i.severity == ParseIssueSeverity.WARNING)

    @property
    def error_count(self) -> int:
        return sum(1 for i in self.issues if i.severity == ParseIssueSeverity.ERROR)

    def issues_to_dict(self) -> dict[str, Any]:
        """Summary suitable for storing in run/batch metrics."""
        return {
            "entries_seen": self.entries_seen,
            "conversations_yielded": self.conversations_yielded,
            "warning_count": self.warning_count,
            "error_count": self.error_count,
            "issues": [i.to_dict() for i in self.issues[:50]],
        }
