"""
app/services/session_service.py

Purpose: Session and state management

- One independent slot map per flow kind
- Fresh session id each time a flow is (re)started
- Priority-ordered lookup of the active flow
- Enforces valid step transitions
- Stale-write detection for abandoned collaborator calls

The store lives in process memory and assumes a single writer: one process
running one event loop. Scaling out requires replacing it with a shared
store behind the same get/set/clear contract.
"""

import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from app.core.logging import get_logger
from app.flow.states import FLOW_PRIORITY, FlowKind, initial_step, is_valid_transition

logger = get_logger(__name__)


@dataclass
class Slot:
    """State of one user within one flow kind."""
    step: str
    data: Dict[str, Any] = field(default_factory=dict)
    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    updated_at: float = field(default_factory=time.time)


class SessionStore:
    """
    Per-user dialogue slots, keyed by flow kind.

    Maps for different flows may overlap for the same user; the dispatcher
    resolves that by checking them in FLOW_PRIORITY order.
    """

    def __init__(self):
        self._maps: Dict[FlowKind, Dict[int, Slot]] = {flow: {} for flow in FlowKind}

    def get(self, user_id: int, flow: FlowKind) -> Optional[Slot]:
        return self._maps[flow].get(user_id)

    def set(self, user_id: int, flow: FlowKind, slot: Slot) -> None:
        slot.updated_at = time.time()
        self._maps[flow][user_id] = slot

    def clear(self, user_id: int, flow: FlowKind) -> bool:
        removed = self._maps[flow].pop(user_id, None)
        if removed is not None:
            logger.debug(f"Cleared {flow.value} slot", extra={"user_id": user_id})
        return removed is not None

    def clear_all(self, user_id: int, except_flows: Tuple[FlowKind, ...] = ()) -> List[FlowKind]:
        """Clears every slot of the user; returns the flows that were set."""
        cleared = []
        for flow in FlowKind:
            if flow in except_flows:
                continue
            if self.clear(user_id, flow):
                cleared.append(flow)
        return cleared

    def start(self, user_id: int, flow: FlowKind, step: Optional[str] = None, data: Optional[Dict[str, Any]] = None) -> Slot:
        """Starts (or restarts) a flow with a fresh session id."""
        slot = Slot(step=step or initial_step(flow), data=dict(data or {}))
        self.set(user_id, flow, slot)
        logger.info(
            f"Started {flow.value} at {slot.step}",
            extra={"user_id": user_id, "flow": flow.value, "step": slot.step}
        )
        return slot

    def advance(self, user_id: int, flow: FlowKind, to_step: str, **data: Any) -> Slot:
        """
        Moves the user's slot to `to_step`, merging `data`.

        Raises:
            ValueError: If there is no slot or the transition is illegal
        """
        slot = self.get(user_id, flow)
        if slot is None:
            raise ValueError(f"No {flow.value} slot for user {user_id}")

        if not is_valid_transition(flow, slot.step, to_step):
            logger.warning(
                f"Invalid transition attempted: {slot.step} -> {to_step}",
                extra={"user_id": user_id, "flow": flow.value}
            )
            raise ValueError(f"Invalid transition for {flow.value}: {slot.step} -> {to_step}")

        updated = replace(slot, step=to_step, data={**slot.data, **data})
        self.set(user_id, flow, updated)
        return updated

    def active(self, user_id: int) -> Optional[Tuple[FlowKind, Slot]]:
        """First set slot in priority order."""
        for flow in FLOW_PRIORITY:
            slot = self._maps[flow].get(user_id)
            if slot is not None:
                return flow, slot
        return None

    def active_flows(self, user_id: int) -> List[Tuple[FlowKind, Slot]]:
        """All set slots in priority order."""
        return [
            (flow, self._maps[flow][user_id])
            for flow in FLOW_PRIORITY
            if user_id in self._maps[flow]
        ]

    def is_current(self, user_id: int, flow: FlowKind, session_id: str) -> bool:
        """
        True if the user's slot still belongs to the session that started
        a collaborator call. A restart or cancel in the meantime makes it False.
        """
        slot = self.get(user_id, flow)
        return slot is not None and slot.session_id == session_id

    def count(self) -> int:
        return sum(len(m) for m in self._maps.values())
