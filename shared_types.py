# shared_types.py  ──  data shapes shared by the registry, router, API and worker
from dataclasses import dataclass, field
from typing import NamedTuple, Optional

from errors import BatchAssignmentError


class AgentSpec(NamedTuple):
    """One roster entry. Plain tuples of the same shape are accepted too."""
    agent_id: str
    account_id: str
    limit: int


class Conversation(NamedTuple):
    conversation_id: str
    account_id: str


@dataclass
class AgentWorkQueue:
    agent_id: str
    account_id: str
    limit: int
    queue: list = field(default_factory=list)          # conversation ids, len == load
    last_assignment_time: Optional[float] = None       # epoch seconds, None = never

    def has_capacity(self) -> bool:
        return len(self.queue) < self.limit


@dataclass(frozen=True)
class AgentSnapshot:
    agent_id: str
    account_id: str
    limit: int
    queue: tuple
    last_assignment_time: Optional[float]

    @property
    def load(self) -> int:
        return len(self.queue)

    @classmethod
    def of(cls, wq: AgentWorkQueue) -> "AgentSnapshot":
        return cls(
            agent_id=wq.agent_id,
            account_id=wq.account_id,
            limit=wq.limit,
            queue=tuple(wq.queue),
            last_assignment_time=wq.last_assignment_time,
        )


@dataclass
class FailedAssignment:
    conversation: Conversation
    error: Exception


@dataclass
class BatchResult:
    """Outcome of one assign_batch call.

    ``assigned`` holds the winning agent ids in the order their conversations
    succeeded; failed conversations are absent from it and listed in
    ``failures`` instead.
    """
    assigned: list = field(default_factory=list)
    failures: list = field(default_factory=list)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def error(self) -> Optional[BatchAssignmentError]:
        if not self.failures:
            return None
        return BatchAssignmentError(self.failures)

    def raise_for_failures(self) -> None:
        err = self.error
        if err is not None:
            raise err
