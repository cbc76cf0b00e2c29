# errors.py  ──  exception taxonomy for the assignment engine


class AssignmentSystemError(Exception):
    """Base class for everything the assignment engine raises."""


class InvalidLimitError(AssignmentSystemError, ValueError):
    """Raised when an agent's concurrent-work limit is negative."""

    def __init__(self, agent_id: str, limit: int):
        super().__init__(f"agent {agent_id!r} has negative limit {limit}")
        self.agent_id = agent_id
        self.limit = limit


class UnknownAgentError(AssignmentSystemError, KeyError):
    def __init__(self, agent_id: str):
        super().__init__(agent_id)
        self.agent_id = agent_id

    def __str__(self) -> str:
        return f"unknown agent {self.agent_id!r}"


class AssignmentError(AssignmentSystemError):
    """A single conversation could not be placed with any agent."""


class UnknownAccountError(AssignmentError):
    def __init__(self, account_id: str):
        super().__init__(f"no agents registered for account {account_id!r}")
        self.account_id = account_id


class NoEligibleAgentError(AssignmentError):
    def __init__(self, account_id: str):
        super().__init__(f"no available agents to take on work for account {account_id!r}")
        self.account_id = account_id


class BatchAssignmentError(AssignmentSystemError):
    """Aggregate error for a batch; carries the per-item failures as well as the count."""

    def __init__(self, failures: list):
        self.failures = list(failures)
        self.count = len(self.failures)
        super().__init__(f"failed to assign {self.count} conversations")
