from __future__ import annotations
import logging
from datetime import datetime

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import POINT_TYPE_BLUE, STATUS_APPROVED, Explanation, Point, UserStats
from ..policy import ExplanationPolicy

logger = logging.getLogger(__name__)


class RewardEngine:
	"""Credits an author once, when their explanation first becomes approved.

	The ledger entry and the stats upsert share one transaction. The ledger is
	unique per (explanation, type), so replaying a reward is a no-op.
	"""

	def __init__(self, db: Session, policy: ExplanationPolicy) -> None:
		self.db = db
		self.policy = policy

	def on_status_change(self, explanation: Explanation, previous_status: str, new_status: str) -> bool:
		if previous_status == STATUS_APPROVED or new_status != STATUS_APPROVED:
			return False
		# A concurrent insert of the author's stats row loses once; the retry takes the update path
		for _ in range(2):
			try:
				self._credit(explanation)
				return True
			except IntegrityError:
				self.db.rollback()
				if self._already_rewarded(explanation.id):
					logger.info("Explanation %s was already rewarded; skipping", explanation.id)
					return False
			except SQLAlchemyError:
				self.db.rollback()
				logger.exception("Failed to reward author %s for explanation %s", explanation.author_id, explanation.id)
				return False
		logger.error("Could not reward author %s for explanation %s", explanation.author_id, explanation.id)
		return False

	def _credit(self, explanation: Explanation) -> None:
		amount = self.policy.reward_points
		self.db.add(Point(
			user_id=explanation.author_id,
			type=POINT_TYPE_BLUE,
			amount=amount,
			question_id=explanation.question_id,
			explanation_id=explanation.id,
			description=f"Explanation approved for question {explanation.question_id}",
		))
		self.db.flush()
		res = self.db.execute(
			update(UserStats)
			.where(UserStats.user_id == explanation.author_id)
			.values(
				blue_points=UserStats.blue_points + 1,
				total_points=UserStats.total_points + amount,
				updated_at=datetime.utcnow(),
			)
			.execution_options(synchronize_session=False)
		)
		if res.rowcount == 0:
			self.db.add(UserStats(user_id=explanation.author_id, blue_points=1, total_points=amount))
		self.db.commit()
		logger.info("Credited %s points to %s for explanation %s", amount, explanation.author_id, explanation.id)

	def _already_rewarded(self, explanation_id: int) -> bool:
		row = (
			self.db.query(Point.id)
			.filter(Point.explanation_id == explanation_id, Point.type == POINT_TYPE_BLUE)
			.first()
		)
		return row is not None
