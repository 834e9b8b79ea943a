"""Per-node failure tracking that takes failing nodes out of rotation."""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class _NodeState:
    failure_count: int
    last_failure: float
    is_healthy: bool


class CircuitBreaker:
    """Tracks failures per node and picks a random node that may be used.

    A node is tripped after ``max_failures`` failures. A tripped node becomes
    eligible again once more than ``retry_interval`` seconds have passed since
    its last failure.
    """

    def __init__(
        self,
        nodes: Iterable[str],
        max_failures: int,
        retry_interval: float,
        *,
        timer: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self._nodes = list(nodes)
        self._max_failures = max_failures
        self._retry_interval = retry_interval
        self._timer = timer
        self._rng = rng or random.Random()
        self._lock = threading.Lock()
        self._state = {node: self._fresh_state() for node in self._nodes}

    def _fresh_state(self) -> _NodeState:
        return _NodeState(
            failure_count=0,
            last_failure=self._timer() - self._retry_interval,
            is_healthy=True,
        )

    def _retry_elapsed(self, state: _NodeState, now: float) -> bool:
        return now - state.last_failure > self._retry_interval

    def get_healthy_node(self) -> str | None:
        """Return a random usable node, or None when every node is tripped."""
        now = self._timer()
        with self._lock:
            candidates = [
                node
                for node, state in self._state.items()
                if state.is_healthy or self._retry_elapsed(state, now)
            ]
        if not candidates:
            logger.warning("No healthy nodes available")
            return None
        return self._rng.choice(candidates)

    def record_failure(self, node: str) -> None:
        """Count a failure against ``node``; unknown nodes are ignored."""
        with self._lock:
            state = self._state.get(node)
            if state is None:
                return
            state.failure_count += 1
            state.last_failure = self._timer()
            if state.failure_count >= self._max_failures:
                state.is_healthy = False
                logger.info("Circuit breaker tripped for node %s", node)

    def add_node(self, node: str) -> None:
        """Start tracking ``node``; an already tracked node keeps its state."""
        with self._lock:
            self._state.setdefault(node, self._fresh_state())
        logger.info("Added node %s", node)

    def reset_unhealthy(self) -> None:
        """Restore tripped nodes whose retry interval has passed."""
        now = self._timer()
        with self._lock:
            for node, state in self._state.items():
                if not state.is_healthy and self._retry_elapsed(state, now):
                    state.is_healthy = True
                    state.failure_count = 0
                    logger.info("Reset node %s", node)

    def get_node_index(self, node: str) -> int | None:
        """Return the position of ``node`` among the nodes given at construction."""
        try:
            return self._nodes.index(node)
        except ValueError:
            return None