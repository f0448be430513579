from __future__ import annotations
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..dependencies import get_policy, get_slot_allocator, get_store, get_voting_engine
from ..models import STATUS_APPROVED, Explanation
from ..policy import ExplanationPolicy
from ..schemas import MAX_IMAGES, ExplanationContent, explanation_to_dict
from ..services.questions import SetRef
from ..services.slots import SlotAllocator
from ..services.store import ExplanationStore
from ..services.voting import VotingEngine
from .auth import User, get_current_user, require_moderator


router = APIRouter(prefix="/explanations", tags=["explanations"])


class CreateExplanationRequest(ExplanationContent):
	question_id: int


class AdminBulkRequest(ExplanationContent):
	set_kind: Literal["exam", "course", "qcm_bank", "module"] = "exam"
	set_id: int
	question_numbers: str = Field(..., description='e.g. "1-5,7,10-15"')


class UpdateExplanationRequest(BaseModel):
	title: Optional[str] = Field(default=None, max_length=256)
	content_text: Optional[str] = None
	image_urls: Optional[List[str]] = Field(default=None, max_length=MAX_IMAGES)
	document_url: Optional[str] = None


class StatusRequest(BaseModel):
	status: Literal["pending", "approved", "rejected"]


class VoteRequest(BaseModel):
	direction: Literal["up", "down"]


def _ensure_can_modify(explanation: Explanation, user: User) -> None:
	# Authors own their explanation until it is approved; moderators always may
	if user.is_admin:
		return
	if explanation.author_id == user.username and explanation.status != STATUS_APPROVED:
		return
	raise HTTPException(status_code=403, detail="You cannot modify this explanation")


@router.post("", status_code=201)
def create_explanation(
	req: CreateExplanationRequest,
	user: User = Depends(get_current_user),
	slots: SlotAllocator = Depends(get_slot_allocator),
):
	content = ExplanationContent(**req.model_dump(exclude={"question_id"}))
	explanation, remaining = slots.submit(req.question_id, user.username, content)
	return {"success": True, "data": explanation_to_dict(explanation), "remaining_slots": remaining}


@router.post("/admin/bulk", status_code=201)
def admin_bulk_create(
	req: AdminBulkRequest,
	user: User = Depends(require_moderator),
	slots: SlotAllocator = Depends(get_slot_allocator),
):
	content = ExplanationContent(**req.model_dump(include={"title", "content_text", "image_urls", "document_url"}))
	result = slots.admin_submit(SetRef(kind=req.set_kind, id=req.set_id), req.question_numbers, user.username, content)
	return {
		"success": True,
		"data": {
			"created": [explanation_to_dict(e, include_voters=False) for e in result["created"]],
			"errors": result["errors"],
			"not_found": result["not_found"],
		},
	}


@router.get("")
def list_explanations(
	question_id: Optional[int] = None,
	author_id: Optional[str] = None,
	is_ai_generated: Optional[bool] = None,
	status: Optional[Literal["pending", "approved", "rejected"]] = None,
	user: User = Depends(get_current_user),
	store: ExplanationStore = Depends(get_store),
):
	rows = store.list(question_id=question_id, author_id=author_id, is_ai_generated=is_ai_generated, status=status)
	return {"success": True, "count": len(rows), "data": [explanation_to_dict(e) for e in rows]}


@router.get("/question/{question_id}")
def explanations_for_question(
	question_id: int,
	user: User = Depends(get_current_user),
	store: ExplanationStore = Depends(get_store),
	policy: ExplanationPolicy = Depends(get_policy),
):
	rows = store.list(question_id=question_id)
	used = sum(1 for e in rows if not e.is_ai_generated)
	return {
		"success": True,
		"count": len(rows),
		"data": [explanation_to_dict(e) for e in rows],
		"slots": {
			"max": policy.max_slots,
			"used": used,
			"remaining": max(policy.max_slots - used, 0),
			"has_ai_explanation": any(e.is_ai_generated for e in rows),
			"user_has_submitted": any(e.author_id == user.username and not e.is_ai_generated for e in rows),
		},
	}


@router.get("/{explanation_id}")
def get_explanation(
	explanation_id: int,
	user: User = Depends(get_current_user),
	store: ExplanationStore = Depends(get_store),
):
	return {"success": True, "data": explanation_to_dict(store.get(explanation_id))}


@router.put("/{explanation_id}")
def update_explanation(
	explanation_id: int,
	req: UpdateExplanationRequest,
	user: User = Depends(get_current_user),
	store: ExplanationStore = Depends(get_store),
):
	_ensure_can_modify(store.get(explanation_id), user)
	explanation = store.update_content(explanation_id, req.model_dump(exclude_unset=True))
	return {"success": True, "data": explanation_to_dict(explanation)}


@router.patch("/{explanation_id}/status")
def update_status(
	explanation_id: int,
	req: StatusRequest,
	user: User = Depends(require_moderator),
	store: ExplanationStore = Depends(get_store),
):
	explanation, rewarded = store.change_status(explanation_id, req.status)
	return {"success": True, "data": explanation_to_dict(explanation), "rewarded": rewarded}


@router.delete("/{explanation_id}")
def delete_explanation(
	explanation_id: int,
	user: User = Depends(get_current_user),
	store: ExplanationStore = Depends(get_store),
):
	_ensure_can_modify(store.get(explanation_id), user)
	store.delete(explanation_id)
	return {"success": True, "message": "Explanation deleted successfully"}


@router.post("/{explanation_id}/vote")
def vote(
	explanation_id: int,
	req: VoteRequest,
	user: User = Depends(get_current_user),
	voting: VotingEngine = Depends(get_voting_engine),
):
	result = voting.cast_vote(explanation_id, user.username, req.direction)
	return {"success": True, "data": result}
