# router.py

import logging
import time
from typing import Callable, Iterable, List, Optional

from agent_registry import AgentRegistry
from errors import AssignmentError, NoEligibleAgentError, UnknownAccountError
from shared_types import (
    AgentSnapshot,
    AgentWorkQueue,
    BatchResult,
    Conversation,
    FailedAssignment,
)

logger = logging.getLogger(__name__)

FailureCallback = Callable[[FailedAssignment], None]


# SELECTION STAGES

def eligible_queues(queues: Iterable[AgentWorkQueue]) -> List[AgentWorkQueue]:
    return [wq for wq in queues if wq.has_capacity()]


def least_loaded(queues: List[AgentWorkQueue]) -> List[AgentWorkQueue]:
    if not queues:
        return []
    lowest = min(len(wq.queue) for wq in queues)
    return [wq for wq in queues if len(wq.queue) == lowest]


def least_recently_assigned(queues: List[AgentWorkQueue], now: float) -> Optional[AgentWorkQueue]:
    """
    Pick the longest-idle queue. A queue that was never assigned counts as
    infinitely idle. Candidates are walked in agent_id order so equal
    candidates always resolve to the smallest agent_id.
    """
    best = None
    best_idle = 0.0
    for wq in sorted(queues, key=lambda q: q.agent_id):
        if wq.last_assignment_time is None:
            return wq
        idle = now - wq.last_assignment_time
        if best is None or idle > best_idle:
            best, best_idle = wq, idle
    return best


# ASSIGNMENT SYSTEM

class AssignmentSystem:

    def __init__(self, registry: AgentRegistry, clock: Callable[[], float] = time.time):
        self.registry = registry
        self._clock = clock

    @classmethod
    def initialize(cls, roster: Iterable, clock: Callable[[], float] = time.time) -> "AssignmentSystem":
        return cls(AgentRegistry(roster), clock=clock)

    def set_limit(self, agent_id: str, limit: int) -> None:
        self.registry.set_limit(agent_id, limit)

    def snapshot(self, agent_id: str) -> AgentSnapshot:
        return self.registry.snapshot(agent_id)

    def assign_one(self, conversation: Conversation) -> str:
        """
        Route one conversation to an agent of its account and commit it.

        Eligible agents are those below their limit. Among them the lowest
        load wins; equal loads go to the agent idle the longest. Raises
        UnknownAccountError or NoEligibleAgentError without touching state.
        """
        conversation = Conversation(*conversation)
        with self.registry.lock:
            if not self.registry.has_account(conversation.account_id):
                raise UnknownAccountError(conversation.account_id)

            candidates = eligible_queues(self.registry.agents_for(conversation.account_id))
            if not candidates:
                raise NoEligibleAgentError(conversation.account_id)

            now = self._clock()
            candidates = least_loaded(candidates)
            if len(candidates) == 1:
                winner = candidates[0]
            else:
                winner = least_recently_assigned(candidates, now)

            winner.queue.append(conversation.conversation_id)
            winner.last_assignment_time = now
            return winner.agent_id

    def assign_batch(
        self,
        conversations: Iterable[Conversation],
        on_failure: Optional[FailureCallback] = None,
    ) -> BatchResult:
        """
        Assign conversations strictly in the given order. A failure is
        recorded and the batch carries on; earlier successes are never
        rolled back.
        """
        conversations = list(conversations)
        logger.info("Assigning %d conversations", len(conversations))

        result = BatchResult()
        for conversation in conversations:
            try:
                result.assigned.append(self.assign_one(conversation))
            except AssignmentError as e:
                failed = FailedAssignment(Conversation(*conversation), e)
                result.failures.append(failed)
                logger.debug("Conversation %s not assigned: %s", failed.conversation.conversation_id, e)
                if on_failure is not None:
                    on_failure(failed)

        if result.failures:
            logger.warning(
                "Batch finished with %d assigned, %d failed",
                len(result.assigned), result.failed_count,
            )
        return result
