# agent_registry.py

import logging
import threading
from typing import Dict, Iterable, List

from errors import InvalidLimitError, UnknownAgentError
from shared_types import AgentSnapshot, AgentSpec, AgentWorkQueue

logger = logging.getLogger(__name__)


class AgentRegistry:
    """
    Owns the account index (account -> agent ids, roster order) and every
    agent's work queue. Queues are never handed out to callers; reads go
    through snapshot() which returns an immutable copy.
    """

    def __init__(self, roster: Iterable = ()):
        self.lock = threading.RLock()
        self._account_agents: Dict[str, List[str]] = {}
        self._agents: Dict[str, AgentWorkQueue] = {}

        for entry in roster:
            spec = AgentSpec(*entry)
            self._add(AgentWorkQueue(
                agent_id=spec.agent_id,
                account_id=spec.account_id,
                limit=spec.limit,
            ))

        logger.info(
            "Registry built with %d agents across %d accounts",
            len(self._agents), len(self._account_agents),
        )

    @classmethod
    def with_state(cls, work_queues: Iterable[AgentWorkQueue]) -> "AgentRegistry":
        """Build a registry around queues that already carry load and timestamps."""
        registry = cls()
        with registry.lock:
            for wq in work_queues:
                registry._add(AgentWorkQueue(
                    agent_id=wq.agent_id,
                    account_id=wq.account_id,
                    limit=wq.limit,
                    queue=list(wq.queue),
                    last_assignment_time=wq.last_assignment_time,
                ))
        return registry

    def _add(self, wq: AgentWorkQueue) -> None:
        _check_limit(wq.agent_id, wq.limit)

        previous = self._agents.get(wq.agent_id)
        if previous is not None:
            logger.warning("Duplicate agent %s in roster, later entry wins", wq.agent_id)
            members = self._account_agents[previous.account_id]
            members.remove(wq.agent_id)
            if not members:
                del self._account_agents[previous.account_id]

        self._agents[wq.agent_id] = wq
        self._account_agents.setdefault(wq.account_id, []).append(wq.agent_id)

    # ── Mutation ──────────────────────────────────────────────────────────────

    def set_limit(self, agent_id: str, limit: int) -> None:
        """
        Repoint an agent's limit. Already-queued conversations are kept even
        when the new limit is below the current load; the agent just stops
        being eligible.

        The agent is looked up before the limit is validated, so an unknown
        agent raises UnknownAgentError whatever the limit.
        """
        with self.lock:
            wq = self._get(agent_id)
            _check_limit(agent_id, limit)
            old, wq.limit = wq.limit, limit
        logger.info("Limit for %s changed %d -> %d", agent_id, old, limit)

    # ── Reads ─────────────────────────────────────────────────────────────────

    def _get(self, agent_id: str) -> AgentWorkQueue:
        try:
            return self._agents[agent_id]
        except KeyError:
            raise UnknownAgentError(agent_id) from None

    def agents_for(self, account_id: str) -> List[AgentWorkQueue]:
        """Live queues for an account in roster order. Callers must hold ``lock``."""
        return [self._agents[agent_id] for agent_id in self._account_agents.get(account_id, ())]

    def has_account(self, account_id: str) -> bool:
        return account_id in self._account_agents

    def accounts(self) -> List[str]:
        with self.lock:
            return list(self._account_agents)

    def snapshot(self, agent_id: str) -> AgentSnapshot:
        with self.lock:
            return AgentSnapshot.of(self._get(agent_id))

    def load(self, agent_id: str) -> int:
        return self.snapshot(agent_id).load

    def last_assignment_time(self, agent_id: str):
        return self.snapshot(agent_id).last_assignment_time

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, agent_id) -> bool:
        return agent_id in self._agents


def _check_limit(agent_id: str, limit: int) -> None:
    if limit < 0:
        raise InvalidLimitError(agent_id, limit)
