"""
Base state machine class for all flow state machines.

Provides common functionality for transition logging and flow info retrieval.
"""

from typing import Any, Dict, Optional

import structlog
from statemachine import StateMachine


class FlowMachine(StateMachine):
    """
    Base class for all flow state machines.

    Features:
    - Structured logging on every transition
    - get_flow_info() for API responses
    - Ownership guard for per-seller flows
    """

    def __init__(
        self,
        record: Optional[Dict[str, Any]] = None,
        seller_id: Optional[str] = None,
        **kwargs,
    ):
        """
        Initialize flow machine.

        Args:
            record: Store record as dict (e.g., sellers document)
            seller_id: Seller ID for logging and ownership checks
            **kwargs: Additional context passed to StateMachine (start_value, ...)
        """
        self.record = record or {}
        self.seller_id = seller_id
        self.logger = structlog.get_logger(__name__)
        super().__init__(**kwargs)

    def get_flow_info(self) -> Dict[str, Any]:
        """Current state, for API responses."""
        return {"state": self.current_state.id}

    def after_transition(self, event: str, source: Any, target: Any) -> None:
        if source is None or str(event) == "__initial__":
            return
        self.log_transition(str(event), source.id, target.id)

    def log_transition(self, event: str, from_state: str, to_state: str) -> None:
        self.logger.info(
            "state_transition",
            transition_event=event,
            from_state=from_state,
            to_state=to_state,
            seller_id=self.seller_id,
        )

    def is_owner(self, seller_id: str) -> bool:
        """Guard: check if the seller owns this flow."""
        record_seller_id = self.record.get("sellerId")
        return record_seller_id == seller_id or self.seller_id == seller_id
