"""Schema issue logger.

Collects parsing edge cases and unexpected formats so callers can see when an
agent's transcript format drifts. A logger is passed into parsing calls; there
is no module-level instance.
"""

from collections import deque
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from .models import AgentType, IssueType, SchemaIssue


DEFAULT_MAX_ISSUES = 1000


class SchemaLogger:
    """In-memory sink for SchemaIssue records."""

    def __init__(
        self,
        max_issues: int = DEFAULT_MAX_ISSUES,
        on_issue: Optional[Callable[[SchemaIssue], None]] = None,
    ):
        self._issues: deque[SchemaIssue] = deque(maxlen=max_issues)
        self._counter = 0
        self.on_issue = on_issue

    def record(self, issue: SchemaIssue) -> None:
        """Append an already-built issue, evicting the oldest past max_issues."""
        self._issues.append(issue)
        if self.on_issue is not None:
            self.on_issue(issue)

    def log(
        self,
        agent: AgentType,
        transcript_path: str,
        issue_type: IssueType,
        description: str,
        entry_index: Optional[int] = None,
        raw_entry: Any = None,
    ) -> SchemaIssue:
        """Build an issue with a sequential id and record it."""
        self._counter += 1
        issue = SchemaIssue(
            id=f'schema-issue-{self._counter}',
            timestamp=datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z'),
            agent=agent,
            transcript_path=str(transcript_path),
            issue_type=issue_type,
            description=description,
            entry_index=entry_index,
            raw_entry=raw_entry,
        )
        self.record(issue)
        return issue

    def issues(self) -> list[SchemaIssue]:
        return list(self._issues)

    def stats(self) -> dict:
        """
        Summarize recorded issues.

        Returns dict with:
        - total: number of issues currently held
        - by_agent: count per agent
        - by_type: count per issue type
        """
        by_agent: dict[str, int] = {}
        by_type: dict[str, int] = {}
        for issue in self._issues:
            by_agent[issue.agent] = by_agent.get(issue.agent, 0) + 1
            by_type[issue.issue_type] = by_type.get(issue.issue_type, 0) + 1
        return {
            'total': len(self._issues),
            'by_agent': by_agent,
            'by_type': by_type,
        }

    def clear(self) -> None:
        self._issues.clear()
        self._counter = 0

    def __len__(self) -> int:
        return len(self._issues)
