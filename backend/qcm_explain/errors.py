from __future__ import annotations
from typing import Any, Dict, Optional


class ExplanationError(Exception):
	"""Base of every user-facing failure raised by the explanation services.

	`kind` is the machine-checkable name, `message` the human-readable text and
	`details` any extra fields returned alongside them.
	"""

	kind = "ExplanationError"
	status_code = 400

	def __init__(self, message: str, **details: Any) -> None:
		super().__init__(message)
		self.message = message
		self.details: Dict[str, Any] = details

	def to_dict(self) -> Dict[str, Any]:
		return {"success": False, "kind": self.kind, "message": self.message, **self.details}


class ValidationError(ExplanationError):
	kind = "ValidationError"
	status_code = 400


class NotFound(ExplanationError):
	kind = "NotFound"
	status_code = 404


class CapacityExceeded(ExplanationError):
	kind = "CapacityExceeded"
	status_code = 409

	def __init__(self, max_slots: int) -> None:
		super().__init__(
			f"This question already has the maximum of {max_slots} explanations",
			max_slots=max_slots,
		)


class DuplicateContribution(ExplanationError):
	kind = "DuplicateContribution"
	status_code = 409

	def __init__(self, message: str = "You have already submitted an explanation for this question") -> None:
		super().__init__(message)


class InsufficientLevel(ExplanationError):
	kind = "InsufficientLevel"
	status_code = 403

	def __init__(self, required_level: int, current_level: int) -> None:
		super().__init__(
			f"You need to reach level {required_level} to vote (current level: {current_level})",
			required_level=required_level,
			current_level=current_level,
		)


class RedundantVote(ExplanationError):
	kind = "RedundantVote"
	status_code = 409

	def __init__(self, direction: str) -> None:
		super().__init__(f"You have already voted {direction} on this explanation", direction=direction)


class AlreadyGenerated(ExplanationError):
	kind = "AlreadyGenerated"
	status_code = 409

	def __init__(self, existing: Any) -> None:
		super().__init__("An AI explanation already exists for this question")
		# The existing ORM record; serialized by the HTTP layer
		self.existing = existing


class EmptyGeneration(ExplanationError):
	kind = "EmptyGeneration"
	status_code = 502

	def __init__(self, message: str = "No explanation generated by the AI provider") -> None:
		super().__init__(message)


class ProviderError(ExplanationError):
	kind = "ProviderError"
	status_code = 502

	def __init__(self, message: str, provider: Optional[str] = None) -> None:
		super().__init__(f"Failed to generate explanation: {message}", provider=provider)


class ExtractionError(ExplanationError):
	kind = "ExtractionError"
	status_code = 422

	def __init__(self, filename: str, reason: str) -> None:
		super().__init__(f"Could not extract text from {filename}: {reason}", filename=filename)
