from __future__ import annotations
from datetime import datetime
from sqlalchemy import (
	JSON,
	Boolean,
	CheckConstraint,
	Column,
	DateTime,
	ForeignKey,
	Index,
	Integer,
	String,
	Text,
	UniqueConstraint,
)
from sqlalchemy.orm import relationship
from .db import Base


STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"
STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)

VOTE_UP = "up"
VOTE_DOWN = "down"

POINT_TYPE_BLUE = "bluePoints"

# Kinds of question sets a Question can belong to
SET_EXAM = "exam"
SET_COURSE = "course"
SET_QCM_BANK = "qcm_bank"


class AuthUser(Base):
	__tablename__ = "auth_users"
	username = Column(String(128), primary_key=True, index=True)
	password_hash = Column(String(256), nullable=False)
	is_admin = Column(Boolean, default=False, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class AuthSession(Base):
	__tablename__ = "auth_sessions"
	session_id = Column(String(64), primary_key=True)
	username = Column(String(128), nullable=False, index=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	last_activity_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Module(Base):
	__tablename__ = "modules"
	id = Column(Integer, primary_key=True)
	name = Column(String(256), nullable=False, unique=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

	context_files = relationship("ModuleContextFile", order_by="ModuleContextFile.id", lazy="selectin")


class ModuleContextFile(Base):
	"""Reference document attached to a module, used to enrich AI prompts."""
	__tablename__ = "module_context_files"
	id = Column(Integer, primary_key=True)
	module_id = Column(Integer, ForeignKey("modules.id", ondelete="CASCADE"), nullable=False, index=True)
	filename = Column(String(256), nullable=False)
	url = Column(String(1024), nullable=False)
	size = Column(Integer, default=0, nullable=False)
	uploaded_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Exam(Base):
	__tablename__ = "exams"
	id = Column(Integer, primary_key=True)
	module_id = Column(Integer, ForeignKey("modules.id"), nullable=True, index=True)
	name = Column(String(256), nullable=False)
	year = Column(Integer, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class ExamCourse(Base):
	__tablename__ = "exam_courses"
	id = Column(Integer, primary_key=True)
	module_id = Column(Integer, ForeignKey("modules.id"), nullable=True, index=True)
	name = Column(String(256), nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class QcmBank(Base):
	__tablename__ = "qcm_banks"
	id = Column(Integer, primary_key=True)
	module_id = Column(Integer, ForeignKey("modules.id"), nullable=True, index=True)
	name = Column(String(256), nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Question(Base):
	__tablename__ = "questions"
	__table_args__ = (Index("ix_questions_set", "set_kind", "set_id"),)
	# The autoincrement id is the stable order of a question set
	id = Column(Integer, primary_key=True, autoincrement=True)
	set_kind = Column(String(16), nullable=False)
	set_id = Column(Integer, nullable=False)
	text = Column(Text, nullable=False)
	options = Column(JSON, nullable=False, default=list)  # [{"text": str, "is_correct": bool}]
	session_label = Column(String(64), nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Explanation(Base):
	__tablename__ = "explanations"
	__table_args__ = (
		CheckConstraint("upvotes >= 0", name="ck_explanations_upvotes"),
		CheckConstraint("downvotes >= 0", name="ck_explanations_downvotes"),
		# Capacity: a human explanation occupies one numbered slot of its question
		UniqueConstraint("question_id", "slot", name="uq_explanations_question_slot"),
	)
	id = Column(Integer, primary_key=True)
	question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True)
	author_id = Column(String(128), nullable=False, index=True)
	title = Column(String(256), nullable=True)
	content_text = Column(Text, nullable=True)
	image_urls = Column(JSON, nullable=False, default=list)
	document_url = Column(String(1024), nullable=True)
	is_ai_generated = Column(Boolean, default=False, nullable=False)
	ai_provider = Column(String(64), nullable=True)
	is_admin_authored = Column(Boolean, default=False, nullable=False)
	slot = Column(Integer, nullable=True)
	status = Column(String(16), default=STATUS_PENDING, nullable=False, index=True)
	upvotes = Column(Integer, default=0, nullable=False)
	downvotes = Column(Integer, default=0, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	voters = relationship(
		"ExplanationVote",
		order_by="ExplanationVote.id",
		cascade="all, delete-orphan",
		passive_deletes=True,
		lazy="selectin",
	)


# At most one AI explanation per question
Index(
	"uq_explanations_ai_per_question",
	Explanation.question_id,
	unique=True,
	sqlite_where=Explanation.is_ai_generated.is_(True),
	postgresql_where=Explanation.is_ai_generated.is_(True),
)

# At most one regular contribution per (question, author)
Index(
	"uq_explanations_question_author",
	Explanation.question_id,
	Explanation.author_id,
	unique=True,
	sqlite_where=Explanation.is_ai_generated.is_(False) & Explanation.is_admin_authored.is_(False),
	postgresql_where=Explanation.is_ai_generated.is_(False) & Explanation.is_admin_authored.is_(False),
)


class ExplanationVote(Base):
	__tablename__ = "explanation_votes"
	__table_args__ = (
		UniqueConstraint("explanation_id", "user_id", name="uq_explanation_votes_voter"),
		CheckConstraint("weight >= 1", name="ck_explanation_votes_weight"),
	)
	id = Column(Integer, primary_key=True)
	explanation_id = Column(Integer, ForeignKey("explanations.id", ondelete="CASCADE"), nullable=False, index=True)
	user_id = Column(String(128), nullable=False)
	vote = Column(String(8), nullable=False)
	weight = Column(Integer, default=1, nullable=False)
	voted_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class UserStats(Base):
	__tablename__ = "user_stats"
	user_id = Column(String(128), primary_key=True)
	overall_level = Column(Integer, default=0, nullable=False)
	blue_points = Column(Integer, default=0, nullable=False)
	total_points = Column(Integer, default=0, nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class Point(Base):
	"""Append-only points ledger."""
	__tablename__ = "points"
	__table_args__ = (
		UniqueConstraint("explanation_id", "type", name="uq_points_explanation_type"),
		Index("ix_points_user_type", "user_id", "type"),
	)
	id = Column(Integer, primary_key=True)
	user_id = Column(String(128), nullable=False, index=True)
	type = Column(String(32), nullable=False)
	amount = Column(Integer, default=0, nullable=False)
	question_id = Column(Integer, nullable=True)
	explanation_id = Column(Integer, nullable=True)
	description = Column(String(512), default="", nullable=False)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
