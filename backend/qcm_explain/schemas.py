from __future__ import annotations
from typing import Any, Dict, List, NamedTuple, Optional

from pydantic import BaseModel, Field

from .models import Explanation

MAX_IMAGES = 5


class Completion(NamedTuple):
	"""Text returned by an AI provider and the name of the backend that produced it."""
	text: str
	provider: str


class ExplanationContent(BaseModel):
	title: Optional[str] = Field(default=None, max_length=256)
	content_text: Optional[str] = None
	image_urls: List[str] = Field(default_factory=list, max_length=MAX_IMAGES)
	document_url: Optional[str] = None

	def is_empty(self) -> bool:
		return not ((self.title or "").strip() or (self.content_text or "").strip() or self.image_urls or self.document_url)


def explanation_to_dict(e: Explanation, *, include_voters: bool = True) -> Dict[str, Any]:
	data: Dict[str, Any] = {
		"id": e.id,
		"question_id": e.question_id,
		"author_id": e.author_id,
		"title": e.title,
		"content_text": e.content_text,
		"image_urls": list(e.image_urls or []),
		"document_url": e.document_url,
		"is_ai_generated": e.is_ai_generated,
		"ai_provider": e.ai_provider,
		"is_admin_authored": e.is_admin_authored,
		"status": e.status,
		"upvotes": e.upvotes,
		"downvotes": e.downvotes,
		"created_at": e.created_at.isoformat() if e.created_at else None,
		"updated_at": e.updated_at.isoformat() if e.updated_at else None,
	}
	if include_voters:
		data["voters"] = [
			{
				"user_id": v.user_id,
				"vote": v.vote,
				"weight": v.weight,
				"voted_at": v.voted_at.isoformat() if v.voted_at else None,
			}
			for v in e.voters
		]
	return data
