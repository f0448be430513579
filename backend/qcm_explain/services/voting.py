from __future__ import annotations
import logging
from datetime import datetime
from typing import Dict

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import InsufficientLevel, RedundantVote, ValidationError
from ..models import STATUS_APPROVED, VOTE_DOWN, VOTE_UP, Explanation, ExplanationVote, UserStats
from ..policy import ExplanationPolicy
from .store import ExplanationStore

logger = logging.getLogger(__name__)


class VotingEngine:
	"""Level-gated, reputation-weighted votes on explanations.

	Totals are only ever changed by SQL increments, and switching sides is a
	conditional update on the previous direction, so concurrent voters cannot
	lose each other's weight.
	"""

	def __init__(self, db: Session, store: ExplanationStore, policy: ExplanationPolicy) -> None:
		self.db = db
		self.store = store
		self.policy = policy

	def current_level(self, user_id: str) -> int:
		stats = self.db.get(UserStats, user_id)
		return stats.overall_level if stats is not None else 0

	def vote_weight(self, user_id: str) -> int:
		approved = (
			self.db.query(Explanation.id)
			.filter(
				Explanation.author_id == user_id,
				Explanation.status == STATUS_APPROVED,
				Explanation.is_ai_generated.is_(False),
			)
			.first()
		)
		return self.policy.high_vote_weight if approved is not None else 1

	def cast_vote(self, explanation_id: int, voter_id: str, direction: str) -> Dict[str, int]:
		if direction not in (VOTE_UP, VOTE_DOWN):
			raise ValidationError("Vote must be 'up' or 'down'", direction=direction)
		explanation = self.store.get(explanation_id)
		level = self.current_level(voter_id)
		if level < self.policy.level_required_for_voting:
			raise InsufficientLevel(self.policy.level_required_for_voting, level)
		weight = self.vote_weight(voter_id)

		# A concurrent vote by the same user makes one attempt fail; the retry sees its row
		for _ in range(2):
			existing = (
				self.db.query(ExplanationVote)
				.filter(ExplanationVote.explanation_id == explanation_id, ExplanationVote.user_id == voter_id)
				.first()
			)
			if existing is not None and existing.vote == direction:
				raise RedundantVote(direction)
			try:
				if existing is None:
					applied = self._add_vote(explanation_id, voter_id, direction, weight)
				else:
					applied = self._switch_vote(existing, direction, weight)
			except IntegrityError:
				self.db.rollback()
				continue
			if not applied:
				self.db.rollback()
				continue
			self.db.commit()
			self.db.refresh(explanation)
			logger.info("User %s voted %s (weight %s) on explanation %s", voter_id, direction, weight, explanation_id)
			return {"upvotes": explanation.upvotes, "downvotes": explanation.downvotes, "weight": weight}
		raise ValidationError("Vote could not be recorded, please retry")

	def _add_vote(self, explanation_id: int, voter_id: str, direction: str, weight: int) -> bool:
		self.db.add(ExplanationVote(
			explanation_id=explanation_id,
			user_id=voter_id,
			vote=direction,
			weight=weight,
			voted_at=datetime.utcnow(),
		))
		self.db.flush()
		delta = {VOTE_UP: 0, VOTE_DOWN: 0}
		delta[direction] = weight
		self._apply(explanation_id, delta[VOTE_UP], delta[VOTE_DOWN])
		return True

	def _switch_vote(self, existing: ExplanationVote, direction: str, weight: int) -> bool:
		old_direction, old_weight = existing.vote, existing.weight
		res = self.db.execute(
			update(ExplanationVote)
			.where(ExplanationVote.id == existing.id, ExplanationVote.vote == old_direction)
			.values(vote=direction, weight=weight, voted_at=datetime.utcnow())
			.execution_options(synchronize_session=False)
		)
		if res.rowcount != 1:
			return False
		if direction == VOTE_UP:
			self._apply(existing.explanation_id, weight, -old_weight)
		else:
			self._apply(existing.explanation_id, -old_weight, weight)
		# Row was updated behind the ORM's back
		self.db.expire(existing)
		return True

	def _apply(self, explanation_id: int, up_delta: int, down_delta: int) -> None:
		self.db.execute(
			update(Explanation)
			.where(Explanation.id == explanation_id)
			.values(
				upvotes=Explanation.upvotes + up_delta,
				downvotes=Explanation.downvotes + down_delta,
			)
			.execution_options(synchronize_session=False)
		)
