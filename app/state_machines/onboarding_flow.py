"""
Onboarding Flow State Machine.

Tracks which KYC step a seller is on, which categories already have a persisted
document, and per-category upload progress. Uploaded categories are derived
from the sellers record, not stored separately.
"""

from typing import Any, Dict, Iterable, List, Optional

import structlog
from statemachine import State
from statemachine.exceptions import TransitionNotAllowed

from .base import FlowMachine
from app.domain.schemas import CATEGORY_COUNT, DocumentCategory

logger = structlog.get_logger(__name__)

STEP_ORDER: List[str] = [category.value for category in DocumentCategory.ordered()]


class OnboardingFlowMachine(FlowMachine):
    """
    State machine for the KYC document steps.

    - advance: Step(i) -> Step(i+1), only once category i is uploaded
    - go_back: Step(i) -> Step(i-1), unconditional
    - finish: any step -> submitted, once every category is uploaded
    """

    step_identity = State(initial=True, value="identity")
    step_business = State(value="business")
    step_bank = State(value="bank")
    submitted = State(value="submitted", final=True)

    advance = (
        step_identity.to(step_business, cond="current_category_uploaded")
        | step_business.to(step_bank, cond="current_category_uploaded")
    )
    go_back = step_business.to(step_identity) | step_bank.to(step_business)
    finish = (
        step_identity.to(submitted, cond="all_uploaded")
        | step_business.to(submitted, cond="all_uploaded")
        | step_bank.to(submitted, cond="all_uploaded")
    )

    def __init__(
        self,
        record: Optional[Dict[str, Any]] = None,
        uploaded: Optional[Iterable[str]] = None,
        **kwargs,
    ):
        """
        Initialize onboarding flow machine.

        Args:
            record: sellers record as dict (camelCase keys)
            uploaded: explicit uploaded categories, overrides the record
            **kwargs: Additional context (seller_id, start_value)
        """
        if uploaded is None:
            uploaded = self._derive_uploaded_from_record(record or {})
        self.uploaded_by_category = {category for category in uploaded if category in STEP_ORDER}
        self.progress_by_category: Dict[str, int] = {category: 0 for category in STEP_ORDER}
        if record and record.get("documentsSubmittedAt"):
            kwargs.setdefault("start_value", "submitted")
        super().__init__(record=record, **kwargs)

    @staticmethod
    def _derive_uploaded_from_record(record: Dict[str, Any]) -> List[str]:
        documents = record.get("documents") or {}
        return [category for category in STEP_ORDER if documents.get(category)]

    # Guards

    def current_category_uploaded(self) -> bool:
        return self.current_category in self.uploaded_by_category

    def all_uploaded(self) -> bool:
        return len(self.uploaded_by_category) == CATEGORY_COUNT

    # Queries

    @property
    def current_step_index(self) -> int:
        if self.current_state.value == "submitted":
            return CATEGORY_COUNT - 1
        return STEP_ORDER.index(self.current_state.value)

    @property
    def current_category(self) -> str:
        return STEP_ORDER[self.current_step_index]

    @property
    def completion_percent(self) -> int:
        return int(round(100 * len(self.uploaded_by_category) / CATEGORY_COUNT))

    @property
    def is_complete(self) -> bool:
        """Every category has a persisted document; submission may proceed."""
        return self.all_uploaded()

    @property
    def is_submitted(self) -> bool:
        return self.current_state.value == "submitted"

    def can_go_next(self) -> bool:
        return (
            not self.is_submitted
            and self.current_step_index < CATEGORY_COUNT - 1
            and self.current_category_uploaded()
        )

    def can_go_previous(self) -> bool:
        return not self.is_submitted and self.current_step_index > 0

    # Navigation

    def next(self) -> bool:
        """Move forward one step. A blocked move is a silent no-op."""
        if not self.can_go_next():
            return False
        try:
            self.advance()
        except TransitionNotAllowed:
            return False
        return True

    def previous(self) -> bool:
        if not self.can_go_previous():
            return False
        self.go_back()
        return True

    # Upload bookkeeping

    def mark_uploaded(self, category: str) -> int:
        """Record a persisted document for the category. Returns the new completion percent."""
        self.uploaded_by_category.add(category)
        self.progress_by_category[category] = 0
        logger.info(
            "category_marked_uploaded",
            seller_id=self.seller_id,
            category=category,
            completion_percent=self.completion_percent,
        )
        return self.completion_percent

    def set_progress(self, category: str, percent: int) -> None:
        self.progress_by_category[category] = max(0, min(100, int(percent)))

    def reset_progress(self, category: str) -> None:
        self.progress_by_category[category] = 0

    def mark_submitted(self) -> bool:
        if self.is_submitted:
            return False
        self.finish()
        return True

    def sync_with_record(self, record: Dict[str, Any]) -> None:
        """
        Pick up documents and a submission written to the store since this
        machine was built. Categories already marked locally are kept, since a
        concurrent read may predate this session's own write.
        """
        self.record = record
        for category in self._derive_uploaded_from_record(record):
            if category not in self.uploaded_by_category:
                self.mark_uploaded(category)
        if record.get("documentsSubmittedAt") and self.is_complete and not self.is_submitted:
            self.mark_submitted()

    def on_enter_submitted(self) -> None:
        logger.info("onboarding_flow_submitted", seller_id=self.seller_id)

    def get_flow_info(self) -> Dict[str, Any]:
        info = super().get_flow_info()
        info.update(
            {
                "current_step_index": self.current_step_index,
                "current_category": self.current_category,
                "completion_percent": self.completion_percent,
                "uploaded_by_category": [c for c in STEP_ORDER if c in self.uploaded_by_category],
                "progress_by_category": dict(self.progress_by_category),
                "can_go_next": self.can_go_next(),
                "can_go_previous": self.can_go_previous(),
                "can_submit": self.is_complete and not self.is_submitted,
            }
        )
        return info
