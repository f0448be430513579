from __future__ import annotations
from pydantic import BaseModel, Field

from .settings import Settings, settings as default_settings


class ExplanationPolicy(BaseModel):
	"""Tunable limits of the explanation services."""

	max_slots: int = Field(default=3, ge=1)
	level_required_for_voting: int = Field(default=20, ge=0)
	high_vote_weight: int = Field(default=20, ge=1)
	reward_points: int = Field(default=40, ge=0)
	generation_timeout_seconds: float = Field(default=90.0, gt=0)
	batch_delay_seconds: float = Field(default=1.0, ge=0)
	# 0 disables the deadline
	batch_deadline_seconds: float = Field(default=0.0, ge=0)

	@classmethod
	def from_settings(cls, s: Settings = default_settings) -> "ExplanationPolicy":
		return cls(
			max_slots=s.max_explanations_per_question,
			level_required_for_voting=s.level_required_for_voting,
			high_vote_weight=s.high_vote_weight,
			reward_points=s.explanation_reward_points,
			generation_timeout_seconds=s.generation_timeout_seconds,
			batch_delay_seconds=s.batch_delay_seconds,
			batch_deadline_seconds=s.batch_deadline_seconds,
		)
