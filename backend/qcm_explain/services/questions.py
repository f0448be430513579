from __future__ import annotations
import re
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..errors import NotFound
from ..models import SET_COURSE, SET_EXAM, SET_QCM_BANK, Exam, ExamCourse, Module, QcmBank, Question


SET_MODULE = "module"

_SET_MODELS = {
	SET_EXAM: Exam,
	SET_COURSE: ExamCourse,
	SET_QCM_BANK: QcmBank,
}

_RANGE_TOKEN = re.compile(r"^(\d+)\s*-\s*(\d+)$")


class SetRef(BaseModel):
	"""Points at a question set: one exam, course or QCM bank, or every exam of a module."""

	kind: Literal["exam", "course", "qcm_bank", "module"] = "exam"
	id: int


def parse_question_numbers(spec: str) -> List[int]:
	"""Parse "1-5,7,10-15" into sorted, unique, 1-indexed question numbers.

	Range bounds are inclusive; reversed ranges are accepted. Tokens that are
	not a positive integer or a range of them are ignored.
	"""
	numbers = set()
	for raw in (spec or "").split(","):
		token = raw.strip()
		if not token:
			continue
		match = _RANGE_TOKEN.match(token)
		if match:
			start, end = int(match.group(1)), int(match.group(2))
			if start > end:
				start, end = end, start
			numbers.update(n for n in range(start, end + 1) if n >= 1)
		elif token.isdigit() and int(token) >= 1:
			numbers.add(int(token))
	return sorted(numbers)


def option_label(index: int) -> str:
	return chr(ord("A") + index)


def correct_indexes(question: Question) -> List[int]:
	return [i for i, opt in enumerate(question.options or []) if opt.get("is_correct")]


class QuestionSetResolver:
	"""Resolves question sets and their owning module, one lookup per set kind."""

	def __init__(self, db: Session) -> None:
		self.db = db

	def get_question(self, question_id: int) -> Question:
		question = self.db.get(Question, question_id)
		if question is None:
			raise NotFound(f"Question {question_id} not found", question_id=question_id)
		return question

	def questions_for(self, ref: SetRef) -> List[Question]:
		if ref.kind == SET_MODULE:
			return self._module_questions(ref.id)
		self._get_set(ref.kind, ref.id)
		return (
			self.db.query(Question)
			.filter(Question.set_kind == ref.kind, Question.set_id == ref.id)
			.order_by(Question.id)
			.all()
		)

	def resolve_numbers(self, ref: SetRef, numbers: List[int]) -> Tuple[List[Tuple[int, Question]], List[int]]:
		"""Map 1-indexed numbers onto the set's stable order.

		Returns the (number, question) targets and the numbers outside [1, count].
		"""
		questions = self.questions_for(ref)
		targets: List[Tuple[int, Question]] = []
		not_found: List[int] = []
		for number in numbers:
			if 1 <= number <= len(questions):
				targets.append((number, questions[number - 1]))
			else:
				not_found.append(number)
		return targets, not_found

	def module_for(self, ref: SetRef) -> Optional[int]:
		if ref.kind == SET_MODULE:
			if self.db.get(Module, ref.id) is None:
				raise NotFound(f"Module {ref.id} not found", module_id=ref.id)
			return ref.id
		return self._get_set(ref.kind, ref.id).module_id

	def module_for_question(self, question: Question) -> Optional[int]:
		model = _SET_MODELS.get(question.set_kind)
		if model is None:
			return None
		parent = self.db.get(model, question.set_id)
		return parent.module_id if parent is not None else None

	def _get_set(self, kind: str, set_id: int):
		record = self.db.get(_SET_MODELS[kind], set_id)
		if record is None:
			raise NotFound(f"{kind.replace('_', ' ').capitalize()} {set_id} not found", set_kind=kind, set_id=set_id)
		return record

	def _module_questions(self, module_id: int) -> List[Question]:
		if self.db.get(Module, module_id) is None:
			raise NotFound(f"Module {module_id} not found", module_id=module_id)
		exam_ids = [
			row.id
			for row in self.db.query(Exam.id).filter(Exam.module_id == module_id).order_by(Exam.id)
		]
		if not exam_ids:
			return []
		rank: Dict[int, int] = {exam_id: i for i, exam_id in enumerate(exam_ids)}
		questions = (
			self.db.query(Question)
			.filter(Question.set_kind == SET_EXAM, Question.set_id.in_(exam_ids))
			.all()
		)
		return sorted(questions, key=lambda q: (rank[q.set_id], q.id))
