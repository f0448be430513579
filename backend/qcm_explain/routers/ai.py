from __future__ import annotations
import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from pydantic import BaseModel, Field

from ..dependencies import (
	get_context_aggregator,
	get_optional_text_generator,
	get_orchestrator,
	get_policy,
	get_resolver,
	get_store,
)
from ..errors import ValidationError
from ..policy import ExplanationPolicy
from ..schemas import explanation_to_dict
from ..services.context import ContextAggregator, UploadedDocument
from ..services.generation import AIGenerationOrchestrator, TextGenerator
from ..services.questions import QuestionSetResolver, SetRef
from ..services.store import ExplanationStore
from .auth import User, require_moderator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ai", tags=["ai"])


class GenerateRequest(BaseModel):
	question_id: int
	language: Literal["fr", "en"] = "fr"
	custom_prompt: Optional[str] = None
	context: Optional[str] = Field(default=None, description="Context blob, e.g. from /ai/extract-context")
	# Also pull in the reference documents of the question's module
	use_module_context: bool = False
	module_id: Optional[int] = None


class BatchGenerateRequest(BaseModel):
	set_kind: Literal["exam", "course", "qcm_bank", "module"] = "exam"
	set_id: int
	question_numbers: str = Field(..., description='e.g. "1-5,7,10-15"')
	language: Literal["fr", "en"] = "fr"
	custom_prompt: Optional[str] = None
	context: Optional[str] = None
	use_module_context: bool = False


def _merge_context(*parts: Optional[str]) -> str:
	return "\n\n".join(p.strip() for p in parts if p and p.strip())


@router.post("/generate", status_code=201)
async def generate(
	req: GenerateRequest,
	user: User = Depends(require_moderator),
	orchestrator: AIGenerationOrchestrator = Depends(get_orchestrator),
	aggregator: ContextAggregator = Depends(get_context_aggregator),
	resolver: QuestionSetResolver = Depends(get_resolver),
):
	module_context = ""
	if req.use_module_context:
		module_id = req.module_id
		if module_id is None:
			module_id = resolver.module_for_question(resolver.get_question(req.question_id))
		if module_id is not None:
			module_context = await aggregator.build_context(module_id)
	explanation = await orchestrator.generate(
		req.question_id,
		user.username,
		req.language,
		req.custom_prompt,
		_merge_context(module_context, req.context),
	)
	return {"success": True, "data": explanation_to_dict(explanation)}


@router.post("/generate-batch")
async def generate_batch(
	req: BatchGenerateRequest,
	user: User = Depends(require_moderator),
	orchestrator: AIGenerationOrchestrator = Depends(get_orchestrator),
	aggregator: ContextAggregator = Depends(get_context_aggregator),
	resolver: QuestionSetResolver = Depends(get_resolver),
):
	ref = SetRef(kind=req.set_kind, id=req.set_id)
	module_context = ""
	if req.use_module_context:
		module_id = resolver.module_for(ref)
		if module_id is not None:
			module_context = await aggregator.build_context(module_id)
	result = await orchestrator.generate_batch(
		ref,
		req.question_numbers,
		user.username,
		req.language,
		req.custom_prompt,
		_merge_context(module_context, req.context),
	)
	return {
		"success": True,
		"data": {
			"saved": result["saved"],
			"failed": result["failed"],
			"explanations": [explanation_to_dict(e, include_voters=False) for e in result["explanations"]],
			"errors": result["errors"],
			"not_found": result["not_found"],
		},
	}


@router.post("/extract-context")
async def extract_context(
	file: UploadFile = File(...),
	user: User = Depends(require_moderator),
	aggregator: ContextAggregator = Depends(get_context_aggregator),
):
	data = await file.read()
	if not data:
		raise ValidationError("Uploaded document is empty")
	result = await aggregator.extract_upload(file.filename or "document", data)
	logger.info("Extracted %s characters from %s", result["length"], file.filename)
	return {"success": True, "data": result}


@router.post("/build-context")
async def build_context(
	module_id: Optional[int] = Form(default=None),
	file: Optional[UploadFile] = File(default=None),
	user: User = Depends(require_moderator),
	aggregator: ContextAggregator = Depends(get_context_aggregator),
):
	document = None
	if file is not None:
		document = UploadedDocument(file.filename or "document", await file.read())
	context = await aggregator.build_context(module_id, document)
	return {"success": True, "data": {"context": context, "length": len(context)}}


@router.get("/test-connection")
async def test_connection(
	user: User = Depends(require_moderator),
	generator: Optional[TextGenerator] = Depends(get_optional_text_generator),
	store: ExplanationStore = Depends(get_store),
	resolver: QuestionSetResolver = Depends(get_resolver),
	policy: ExplanationPolicy = Depends(get_policy),
):
	if generator is None:
		return {"success": True, "data": {"connected": False}}
	orchestrator = AIGenerationOrchestrator(store.db, generator, store, resolver, policy)
	return {"success": True, "data": {"connected": await orchestrator.test_connection()}}
