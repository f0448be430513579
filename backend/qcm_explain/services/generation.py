from __future__ import annotations
import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import AlreadyGenerated, EmptyGeneration, ExplanationError, ProviderError, ValidationError
from ..models import STATUS_APPROVED, Explanation
from ..policy import ExplanationPolicy
from ..schemas import Completion
from .prompts import build_prompt, normalize_language
from .questions import QuestionSetResolver, SetRef, parse_question_numbers
from .store import ExplanationStore

logger = logging.getLogger(__name__)

AI_TITLES = {"fr": "Explication générée par IA", "en": "AI-generated explanation"}


class TextGenerator(Protocol):
	# Default backend name, used when a call fails before any backend answered
	provider_name: str

	async def generate(self, prompt: str) -> Completion: ...


class AIGenerationOrchestrator:
	"""Single and batch AI explanations, at most one per question.

	A question moves from "no AI explanation" to "AI explanation exists" once;
	only deleting the record reopens it. The partial unique index on
	(question_id) for AI rows settles concurrent generations.
	"""

	def __init__(
		self,
		db: Session,
		generator: TextGenerator,
		store: ExplanationStore,
		resolver: QuestionSetResolver,
		policy: ExplanationPolicy,
		*,
		sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
		clock: Callable[[], float] = time.monotonic,
	) -> None:
		self.db = db
		self.generator = generator
		self.store = store
		self.resolver = resolver
		self.policy = policy
		self._sleep = sleep
		self._clock = clock

	async def generate(
		self,
		question_id: int,
		author_id: str,
		language: str = "fr",
		custom_prompt: Optional[str] = None,
		context: str = "",
	) -> Explanation:
		question = self.resolver.get_question(question_id)
		existing = self.store.find_ai(question_id)
		if existing is not None:
			raise AlreadyGenerated(existing)

		prompt = build_prompt(question, language, custom_prompt, context)
		completion = await self._call_provider(prompt)

		explanation = Explanation(
			question_id=question_id,
			author_id=author_id,
			title=AI_TITLES[normalize_language(language)],
			content_text=completion.text,
			image_urls=[],
			is_ai_generated=True,
			ai_provider=completion.provider,
			status=STATUS_APPROVED,
		)
		try:
			self.store.add(explanation)
		except IntegrityError:
			self.db.rollback()
			winner = self.store.find_ai(question_id)
			if winner is None:
				raise
			raise AlreadyGenerated(winner)
		logger.info("AI explanation %s generated for question %s (%s chars)", explanation.id, question_id, len(completion.text))
		return explanation

	async def generate_batch(
		self,
		ref: SetRef,
		question_number_spec: str,
		author_id: str,
		language: str = "fr",
		custom_prompt: Optional[str] = None,
		context: str = "",
	) -> Dict[str, Any]:
		"""Generate sequentially for the numbered questions of a set.

		Every target ends up either saved or failed; one failure never stops
		the run. Provider calls are spaced by the batch delay, and once the
		batch deadline passes the remaining targets are failed without a call.
		"""
		numbers = parse_question_numbers(question_number_spec)
		if not numbers:
			raise ValidationError("No valid question numbers given", question_numbers=question_number_spec)
		targets, not_found = self.resolver.resolve_numbers(ref, numbers)
		logger.info(
			"Batch generation on %s %s: %s target(s), %s out of range",
			ref.kind, ref.id, len(targets), len(not_found),
		)

		explanations: List[Explanation] = []
		errors: List[Dict[str, Any]] = []
		deadline = self.policy.batch_deadline_seconds
		started = self._clock()
		calls = 0
		for number, question in targets:
			item = {"question_number": number, "question_id": question.id}
			if deadline and self._clock() - started > deadline:
				errors.append({**item, "kind": "DeadlineExceeded", "message": "batch deadline exceeded"})
				continue
			if self.store.find_ai(question.id) is not None:
				errors.append({**item, "kind": AlreadyGenerated.kind, "message": "already exists"})
				continue
			if calls:
				await self._sleep(self.policy.batch_delay_seconds)
			calls += 1
			try:
				explanations.append(await self.generate(question.id, author_id, language, custom_prompt, context))
			except AlreadyGenerated:
				errors.append({**item, "kind": AlreadyGenerated.kind, "message": "already exists"})
			except ExplanationError as err:
				logger.warning("Batch item %s (question %s) failed: %s", number, question.id, err.message)
				errors.append({**item, "kind": err.kind, "message": err.message})
			except SQLAlchemyError as err:
				self.db.rollback()
				logger.exception("Batch item %s (question %s) could not be saved", number, question.id)
				errors.append({**item, "kind": "PersistenceError", "message": f"could not save explanation ({err.__class__.__name__})"})

		logger.info("Batch generation done: %s saved, %s failed", len(explanations), len(errors))
		return {
			"saved": len(explanations),
			"failed": len(errors),
			"explanations": explanations,
			"errors": errors,
			"not_found": not_found,
		}

	async def test_connection(self) -> bool:
		probe = getattr(self.generator, "test_connection", None)
		if probe is not None:
			return bool(await probe())
		try:
			await self._call_provider("Hello, this is a test.")
		except ExplanationError as err:
			logger.error("AI provider connection test failed: %s", err.message)
			return False
		return True

	async def _call_provider(self, prompt: str) -> Completion:
		provider = getattr(self.generator, "provider_name", None)
		timeout = self.policy.generation_timeout_seconds
		try:
			completion = await asyncio.wait_for(self.generator.generate(prompt), timeout=timeout)
		except asyncio.TimeoutError:
			raise ProviderError(f"no answer within {timeout:g}s", provider=provider)
		except ExplanationError:
			raise
		except Exception as err:
			logger.error("AI provider error: %s", err)
			raise ProviderError(str(err), provider=provider) from err
		text = (completion.text or "").strip()
		if not text:
			raise EmptyGeneration()
		return Completion(text, completion.provider or provider)
