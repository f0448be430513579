from __future__ import annotations
import logging
from typing import Any, Dict, List, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..errors import CapacityExceeded, DuplicateContribution, ValidationError
from ..models import STATUS_APPROVED, STATUS_PENDING, Explanation, Question
from ..policy import ExplanationPolicy
from ..schemas import MAX_IMAGES, ExplanationContent
from .questions import QuestionSetResolver, SetRef, parse_question_numbers
from .store import ExplanationStore

logger = logging.getLogger(__name__)


class SlotAllocator:
	"""Admits human explanations into the fixed slots of a question.

	Each human explanation holds a numbered slot; the (question, slot) unique
	index makes the capacity check and the insert atomic. A concurrent writer
	that takes the same slot loses with an IntegrityError and the checks run
	again.
	"""

	def __init__(self, db: Session, store: ExplanationStore, resolver: QuestionSetResolver, policy: ExplanationPolicy) -> None:
		self.db = db
		self.store = store
		self.resolver = resolver
		self.policy = policy

	def submit(self, question_id: int, author_id: str, content: ExplanationContent) -> Tuple[Explanation, int]:
		"""Create a pending explanation; returns it with the number of slots left."""
		_validate_content(content)
		self.resolver.get_question(question_id)
		max_slots = self.policy.max_slots
		for _ in range(max_slots + 1):
			prior = self.store.count_human(question_id)
			if prior >= max_slots:
				raise CapacityExceeded(max_slots)
			if self.store.find_human_by_author(question_id, author_id) is not None:
				raise DuplicateContribution()
			explanation = self._new_explanation(question_id, author_id, content, status=STATUS_PENDING)
			try:
				self.store.add(explanation)
			except IntegrityError:
				self.db.rollback()
				logger.info("Concurrent submission on question %s; re-checking slots", question_id)
				continue
			logger.info("Explanation %s submitted by %s for question %s (slot %s)", explanation.id, author_id, question_id, explanation.slot)
			return explanation, max_slots - prior - 1
		raise CapacityExceeded(max_slots)

	def admin_submit(self, ref: SetRef, question_number_spec: str, author_id: str, content: ExplanationContent) -> Dict[str, Any]:
		"""Create approved explanations for numbered questions of a set.

		The one-per-author rule does not apply here and no reward is issued.
		Capacity still applies; full questions are reported in `errors`.
		"""
		_validate_content(content)
		numbers = parse_question_numbers(question_number_spec)
		if not numbers:
			raise ValidationError("No valid question numbers given", question_numbers=question_number_spec)
		targets, not_found = self.resolver.resolve_numbers(ref, numbers)
		created: List[Explanation] = []
		errors: List[Dict[str, Any]] = []
		for number, question in targets:
			try:
				created.append(self._admin_create(question, author_id, content))
			except CapacityExceeded as err:
				errors.append({"question_number": number, "question_id": question.id, "kind": err.kind, "message": err.message})
		if not_found:
			logger.info("Admin bulk create on %s %s: numbers out of range %s", ref.kind, ref.id, not_found)
		return {"created": created, "errors": errors, "not_found": not_found}

	def _admin_create(self, question: Question, author_id: str, content: ExplanationContent) -> Explanation:
		max_slots = self.policy.max_slots
		for _ in range(max_slots + 1):
			if self.store.count_human(question.id) >= max_slots:
				raise CapacityExceeded(max_slots)
			explanation = self._new_explanation(question.id, author_id, content, status=STATUS_APPROVED)
			explanation.is_admin_authored = True
			try:
				return self.store.add(explanation)
			except IntegrityError:
				self.db.rollback()
		raise CapacityExceeded(max_slots)

	def _new_explanation(self, question_id: int, author_id: str, content: ExplanationContent, *, status: str) -> Explanation:
		return Explanation(
			question_id=question_id,
			author_id=author_id,
			title=content.title,
			content_text=content.content_text,
			image_urls=list(content.image_urls),
			document_url=content.document_url,
			is_ai_generated=False,
			slot=self._free_slot(question_id),
			status=status,
		)

	def _free_slot(self, question_id: int) -> int:
		used = self.store.used_slots(question_id)
		for slot in range(1, self.policy.max_slots + 1):
			if slot not in used:
				return slot
		raise CapacityExceeded(self.policy.max_slots)


def _validate_content(content: ExplanationContent) -> None:
	if content.is_empty():
		raise ValidationError("An explanation needs a title, a text, an image or a document")
	if len(content.image_urls) > MAX_IMAGES:
		raise ValidationError(f"At most {MAX_IMAGES} images are allowed", max_images=MAX_IMAGES)
