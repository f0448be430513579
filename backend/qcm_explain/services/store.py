from __future__ import annotations
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from ..errors import NotFound, ValidationError
from ..models import STATUS_PENDING, STATUSES, Explanation
from .rewards import RewardEngine

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = ("title", "content_text", "image_urls", "document_url")


class ExplanationStore:
	"""Persistence and queries for explanation records."""

	def __init__(self, db: Session, rewards: Optional[RewardEngine] = None) -> None:
		self.db = db
		self.rewards = rewards

	def get(self, explanation_id: int) -> Explanation:
		explanation = self.db.get(Explanation, explanation_id)
		if explanation is None:
			raise NotFound("Explanation not found", explanation_id=explanation_id)
		return explanation

	def list(
		self,
		*,
		question_id: Optional[int] = None,
		author_id: Optional[str] = None,
		is_ai_generated: Optional[bool] = None,
		status: Optional[str] = None,
	) -> List[Explanation]:
		query = self.db.query(Explanation)
		if question_id is not None:
			query = query.filter(Explanation.question_id == question_id)
		if author_id is not None:
			query = query.filter(Explanation.author_id == author_id)
		if is_ai_generated is not None:
			query = query.filter(Explanation.is_ai_generated.is_(is_ai_generated))
		if status is not None:
			query = query.filter(Explanation.status == status)
		return query.order_by(Explanation.id).all()

	def count_human(self, question_id: int) -> int:
		return (
			self.db.query(func.count(Explanation.id))
			.filter(Explanation.question_id == question_id, Explanation.is_ai_generated.is_(False))
			.scalar()
		)

	def used_slots(self, question_id: int) -> Set[int]:
		rows = (
			self.db.query(Explanation.slot)
			.filter(Explanation.question_id == question_id, Explanation.slot.isnot(None))
			.all()
		)
		return {row.slot for row in rows}

	def find_human_by_author(self, question_id: int, author_id: str) -> Optional[Explanation]:
		return (
			self.db.query(Explanation)
			.filter(
				Explanation.question_id == question_id,
				Explanation.author_id == author_id,
				Explanation.is_ai_generated.is_(False),
			)
			.first()
		)

	def find_ai(self, question_id: int) -> Optional[Explanation]:
		return (
			self.db.query(Explanation)
			.filter(Explanation.question_id == question_id, Explanation.is_ai_generated.is_(True))
			.first()
		)

	def add(self, explanation: Explanation) -> Explanation:
		# Callers handle IntegrityError (slot, author and AI uniqueness)
		self.db.add(explanation)
		self.db.commit()
		self.db.refresh(explanation)
		return explanation

	def update_content(self, explanation_id: int, changes: Dict[str, Any]) -> Explanation:
		explanation = self.get(explanation_id)
		for field in _EDITABLE_FIELDS:
			if field in changes:
				setattr(explanation, field, changes[field])
		self.db.commit()
		self.db.refresh(explanation)
		return explanation

	def delete(self, explanation_id: int) -> None:
		explanation = self.get(explanation_id)
		self.db.delete(explanation)
		self.db.commit()
		logger.info("Deleted explanation %s (question %s)", explanation_id, explanation.question_id)

	def change_status(self, explanation_id: int, new_status: str) -> Tuple[Explanation, bool]:
		"""Move an explanation out of `pending`; returns the record and whether a reward was issued.

		The update is conditional on the status read beforehand, so two concurrent
		approvals produce a single transition and a single reward.
		"""
		if new_status not in STATUSES:
			raise ValidationError("Invalid status value", allowed=list(STATUSES))
		explanation = self.get(explanation_id)
		previous = explanation.status
		if previous == new_status:
			return explanation, False
		if previous != STATUS_PENDING:
			raise ValidationError(
				f"Cannot change status from {previous} to {new_status}",
				current_status=previous,
			)
		res = self.db.execute(
			update(Explanation)
			.where(Explanation.id == explanation_id, Explanation.status == previous)
			.values(status=new_status, updated_at=datetime.utcnow())
			.execution_options(synchronize_session=False)
		)
		self.db.commit()
		self.db.refresh(explanation)
		if res.rowcount != 1:
			# Someone else moved it first
			if explanation.status == new_status:
				return explanation, False
			raise ValidationError(
				f"Cannot change status from {explanation.status} to {new_status}",
				current_status=explanation.status,
			)
		logger.info("Explanation %s status %s -> %s", explanation_id, previous, new_status)
		rewarded = False
		if self.rewards is not None:
			rewarded = self.rewards.on_status_change(explanation, previous, new_status)
		return explanation, rewarded
