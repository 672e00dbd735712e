"""
Realization tracker: poll NSX until an intent path is realized.

Policy (from config):
realization:
  steps: 6            # attempts, default 6
  duration_sec: 1.0   # first sleep
  factor: 2.0         # multiplier per step
  jitter: 0.0         # +[0, jitter*delay) random
  cap_sec: 30.0       # upper bound for one sleep

On failure an optional ``compensate`` callable (normally a delete of the
object just written) runs before the error is raised.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .constants import (
    REALIZED_ENTITY_SUBNET,
    REALIZED_STATE_ERROR,
    REALIZED_STATE_REALIZED,
)
from .errors import (
    CompensationError,
    NsxApiError,
    RealizationError,
    RealizationStateError,
    RealizationTimeoutError,
)
from .model import parse_vpc_resource_path


@dataclass
class BackoffPolicy:
    steps: int = 6
    duration_sec: float = 1.0
    factor: float = 2.0
    jitter: float = 0.0
    cap_sec: float = 30.0

    def __post_init__(self) -> None:
        if self.steps < 1:
            raise ValueError("BackoffPolicy requires steps >= 1")

    def delay(self, attempt: int) -> float:
        d = self.duration_sec * (self.factor ** attempt)
        if self.jitter > 0:
            d += random.uniform(0, self.jitter * d)
        return min(d, self.cap_sec)


class RealizationTracker:
    """Polls the realized-entities endpoint until a terminal state."""

    def __init__(
        self,
        client: Any,
        policy: Optional[BackoffPolicy] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.client = client
        self.policy = policy or BackoffPolicy()
        self._sleep = sleep
        self.log = logger or logging.getLogger("subnetsync.realization")

    def _poll(self, path: str, entity_type: str) -> str:
        """
        One check. Returns the observed state ("" when the entity is missing).
        Raises RealizationStateError on ERROR.
        """
        info = parse_vpc_resource_path(path)
        entities: List[Dict[str, Any]] = self.client.list_realized_entities(info.org_id, info.project_id, path)
        for ent in entities:
            if ent.get("entity_type") != entity_type:
                continue
            state = str(ent.get("state") or "")
            if state == REALIZED_STATE_ERROR:
                details = ent.get("alarms") or ent.get("runtime_status") or ""
                raise RealizationStateError(path, state, str(details))
            return state
        return ""

    def wait(self, path: str, *, policy: Optional[BackoffPolicy] = None, entity_type: str = REALIZED_ENTITY_SUBNET) -> None:
        """
        Poll until ``entity_type`` under ``path`` is REALIZED.
        Raises RealizationStateError on ERROR, RealizationTimeoutError when steps run out.
        """
        pol = policy or self.policy
        last_state = ""
        for attempt in range(pol.steps):
            try:
                last_state = self._poll(path, entity_type)
            except NsxApiError as e:
                # transient read failure: keep polling within the budget
                last_state = f"poll_error: {e}"
                self.log.debug("realization poll failed path=%s attempt=%d: %s", path, attempt + 1, e)
            if last_state == REALIZED_STATE_REALIZED:
                self.log.debug("realized path=%s attempts=%d", path, attempt + 1)
                return
            if attempt < pol.steps - 1:
                self._sleep(pol.delay(attempt))
        raise RealizationTimeoutError(path, pol.steps, last_state)

    def ensure_realized(
        self,
        path: str,
        *,
        policy: Optional[BackoffPolicy] = None,
        entity_type: str = REALIZED_ENTITY_SUBNET,
        compensate: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        :meth:`wait`, then on failure run ``compensate`` and re-raise.

        If ``compensate`` fails too, :class:`CompensationError` carries both.
        """
        try:
            self.wait(path, policy=policy, entity_type=entity_type)
        except RealizationError as err:
            self.log.warning("realization failed path=%s: %s", path, err)
            if compensate is None:
                raise
            try:
                compensate()
            except Exception as cleanup_err:
                self.log.error("compensating delete failed path=%s: %s", path, cleanup_err)
                raise CompensationError(err, cleanup_err) from err
            self.log.info("compensating delete done path=%s", path)
            raise
