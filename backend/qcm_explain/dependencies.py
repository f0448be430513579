from __future__ import annotations
import logging
from typing import AsyncIterator, Optional

from fastapi import Depends
from sqlalchemy.orm import Session

from .db import get_db
from .errors import ProviderError
from .gemini_client import GeminiClient
from .policy import ExplanationPolicy
from .services.context import ContextAggregator, DocumentExtractor
from .services.generation import AIGenerationOrchestrator, TextGenerator
from .services.questions import QuestionSetResolver
from .services.rewards import RewardEngine
from .services.slots import SlotAllocator
from .services.store import ExplanationStore
from .services.voting import VotingEngine
from .settings import settings

logger = logging.getLogger(__name__)


def get_policy() -> ExplanationPolicy:
	return ExplanationPolicy.from_settings(settings)


def get_resolver(db: Session = Depends(get_db)) -> QuestionSetResolver:
	return QuestionSetResolver(db)


def get_store(db: Session = Depends(get_db), policy: ExplanationPolicy = Depends(get_policy)) -> ExplanationStore:
	return ExplanationStore(db, RewardEngine(db, policy))


def get_slot_allocator(
	db: Session = Depends(get_db),
	store: ExplanationStore = Depends(get_store),
	resolver: QuestionSetResolver = Depends(get_resolver),
	policy: ExplanationPolicy = Depends(get_policy),
) -> SlotAllocator:
	return SlotAllocator(db, store, resolver, policy)


def get_voting_engine(
	db: Session = Depends(get_db),
	store: ExplanationStore = Depends(get_store),
	policy: ExplanationPolicy = Depends(get_policy),
) -> VotingEngine:
	return VotingEngine(db, store, policy)


def get_extractor() -> DocumentExtractor:
	return DocumentExtractor(settings.upload_dir)


def get_context_aggregator(
	db: Session = Depends(get_db),
	extractor: DocumentExtractor = Depends(get_extractor),
) -> ContextAggregator:
	return ContextAggregator(db, extractor)


async def get_optional_text_generator() -> AsyncIterator[Optional[TextGenerator]]:
	try:
		client = GeminiClient()
	except ValueError as err:
		logger.error("AI provider unavailable: %s", err)
		yield None
		return
	try:
		yield client
	finally:
		await client.aclose()


def get_text_generator(generator: Optional[TextGenerator] = Depends(get_optional_text_generator)) -> TextGenerator:
	if generator is None:
		raise ProviderError("GEMINI_API_KEY is not configured", provider=GeminiClient.provider_name)
	return generator


def get_orchestrator(
	db: Session = Depends(get_db),
	generator: TextGenerator = Depends(get_text_generator),
	store: ExplanationStore = Depends(get_store),
	resolver: QuestionSetResolver = Depends(get_resolver),
	policy: ExplanationPolicy = Depends(get_policy),
) -> AIGenerationOrchestrator:
	return AIGenerationOrchestrator(db, generator, store, resolver, policy)
