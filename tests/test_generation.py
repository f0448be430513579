"""Tests for prompt building and single/batch AI generation."""

import asyncio
import itertools

import pytest
from sqlalchemy.exc import OperationalError

from conftest import FakeGenerator, SleepRecorder
from qcm_explain.errors import AlreadyGenerated, EmptyGeneration, NotFound, ProviderError, ValidationError
from qcm_explain.models import Explanation, Point
from qcm_explain.policy import ExplanationPolicy
from qcm_explain.schemas import Completion
from qcm_explain.services.generation import AIGenerationOrchestrator
from qcm_explain.services.prompts import build_prompt
from qcm_explain.services.questions import SetRef


def make_orchestrator(db, store, resolver, policy, generator=None, **kwargs):
    return AIGenerationOrchestrator(db, generator or FakeGenerator(), store, resolver, policy, **kwargs)


class SlowGenerator(FakeGenerator):
    async def generate(self, prompt):
        await asyncio.sleep(1)
        return Completion(self.reply, self.provider_name)


class TestBuildPrompt:
    def test_french_template_marks_correct_option(self, make_exam):
        _, (q,) = make_exam(1)
        prompt = build_prompt(q, "fr")
        assert "Réponse(s) correcte(s): B" in prompt
        assert "B. Second option ✓" in prompt
        assert "A. First option\n" in prompt
        assert q.text in prompt

    def test_english_template(self, make_exam):
        _, (q,) = make_exam(1)
        prompt = build_prompt(q, "en")
        assert "Correct answer(s): B" in prompt
        assert "Reference context" not in prompt

    def test_context_is_included(self, make_exam):
        _, (q,) = make_exam(1)
        prompt = build_prompt(q, "en", context="Valve physiology notes")
        assert "Reference context" in prompt
        assert "Valve physiology notes" in prompt
        assert "Rely primarily on the reference context" in prompt

    def test_custom_prompt_placeholders(self, make_exam):
        _, (q,) = make_exam(1)
        prompt = build_prompt(q, "fr", custom_prompt="Q: {question} | {{ correct_answers }} | {options}")
        assert prompt.startswith(f"Q: {q.text} | B | A. First option")

    def test_custom_prompt_with_context(self, make_exam):
        _, (q,) = make_exam(1)
        prompt = build_prompt(q, "fr", custom_prompt="Explain {question}", context="notes")
        assert prompt.endswith(f"notes\n\nExplain {q.text}")


class TestGenerate:
    def test_creates_approved_ai_explanation(self, db, store, resolver, policy, make_exam):
        _, (q,) = make_exam(1)
        generator = FakeGenerator(reply="  B is right because...  ")
        orchestrator = make_orchestrator(db, store, resolver, policy, generator)

        explanation = asyncio.run(orchestrator.generate(q.id, "admin", "en"))
        assert explanation.is_ai_generated is True
        assert explanation.status == "approved"
        assert explanation.ai_provider == "fake-ai"
        assert explanation.content_text == "B is right because..."
        assert explanation.slot is None
        assert len(generator.prompts) == 1
        assert db.query(Point).count() == 0

    def test_second_generation_returns_existing(self, db, store, resolver, policy, make_exam):
        _, (q,) = make_exam(1)
        generator = FakeGenerator()
        orchestrator = make_orchestrator(db, store, resolver, policy, generator)
        first = asyncio.run(orchestrator.generate(q.id, "admin"))

        with pytest.raises(AlreadyGenerated) as exc:
            asyncio.run(orchestrator.generate(q.id, "admin"))
        assert exc.value.existing.id == first.id
        assert len(generator.prompts) == 1
        assert db.query(Explanation).filter_by(question_id=q.id).count() == 1

    def test_lost_race_reports_winner(self, db, store, resolver, policy, make_exam):
        _, (q,) = make_exam(1)

        class RacingGenerator(FakeGenerator):
            async def generate(self, prompt):
                db.add(Explanation(question_id=q.id, author_id="other", is_ai_generated=True, status="approved", content_text="first"))
                db.commit()
                return Completion(self.reply, self.provider_name)

        orchestrator = make_orchestrator(db, store, resolver, policy, RacingGenerator())
        with pytest.raises(AlreadyGenerated) as exc:
            asyncio.run(orchestrator.generate(q.id, "admin"))
        assert exc.value.existing.content_text == "first"
        assert db.query(Explanation).filter_by(question_id=q.id, is_ai_generated=True).count() == 1

    def test_provider_recorded_from_the_answer(self, db, store, resolver, policy, make_exam):
        _, (q,) = make_exam(1)

        class FallbackGenerator(FakeGenerator):
            async def generate(self, prompt):
                return Completion(self.reply, "openrouter")

        generator = FallbackGenerator()
        orchestrator = make_orchestrator(db, store, resolver, policy, generator)
        explanation = asyncio.run(orchestrator.generate(q.id, "admin"))
        assert explanation.ai_provider == "openrouter"
        assert generator.provider_name == "fake-ai"

    def test_empty_reply_saves_nothing(self, db, store, resolver, policy, make_exam):
        _, (q,) = make_exam(1)
        orchestrator = make_orchestrator(db, store, resolver, policy, FakeGenerator(reply="   "))
        with pytest.raises(EmptyGeneration):
            asyncio.run(orchestrator.generate(q.id, "admin"))
        assert db.query(Explanation).count() == 0

    def test_provider_failure(self, db, store, resolver, policy, make_exam):
        _, (q,) = make_exam(1)
        orchestrator = make_orchestrator(db, store, resolver, policy, FakeGenerator(fail_when="question"))
        with pytest.raises(ProviderError) as exc:
            asyncio.run(orchestrator.generate(q.id, "admin"))
        assert "quota exceeded" in exc.value.message
        assert exc.value.details["provider"] == "fake-ai"
        assert db.query(Explanation).count() == 0

    def test_provider_timeout(self, db, store, resolver, make_exam):
        _, (q,) = make_exam(1)
        policy = ExplanationPolicy(generation_timeout_seconds=0.05)
        orchestrator = make_orchestrator(db, store, resolver, policy, SlowGenerator())
        with pytest.raises(ProviderError):
            asyncio.run(orchestrator.generate(q.id, "admin"))
        assert db.query(Explanation).count() == 0

    def test_unknown_question(self, db, store, resolver, policy):
        orchestrator = make_orchestrator(db, store, resolver, policy)
        with pytest.raises(NotFound):
            asyncio.run(orchestrator.generate(77, "admin"))


class TestGenerateBatch:
    def test_out_of_range_numbers_and_delays(self, db, store, resolver, policy, make_exam):
        exam, questions = make_exam(4)
        sleep = SleepRecorder()
        orchestrator = make_orchestrator(db, store, resolver, policy, sleep=sleep)

        result = asyncio.run(orchestrator.generate_batch(SetRef(kind="exam", id=exam.id), "1-3,5", "admin"))
        assert result["not_found"] == [5]
        assert (result["saved"], result["failed"]) == (3, 0)
        assert [e.question_id for e in result["explanations"]] == [q.id for q in questions[:3]]
        assert sleep.calls == [1.0, 1.0]

    def test_one_failure_does_not_stop_the_run(self, db, store, resolver, policy, make_exam):
        exam, questions = make_exam(3)
        generator = FakeGenerator(fail_when="question 2?")
        orchestrator = make_orchestrator(db, store, resolver, policy, generator, sleep=SleepRecorder())

        result = asyncio.run(orchestrator.generate_batch(SetRef(kind="exam", id=exam.id), "1-3", "admin"))
        assert (result["saved"], result["failed"]) == (2, 1)
        error = result["errors"][0]
        assert error["question_number"] == 2
        assert error["question_id"] == questions[1].id
        assert error["kind"] == "ProviderError"
        assert "quota exceeded" in error["message"]

    def test_existing_ai_explanation_is_reported(self, db, store, resolver, policy, make_exam):
        exam, questions = make_exam(3)
        sleep = SleepRecorder()
        generator = FakeGenerator()
        orchestrator = make_orchestrator(db, store, resolver, policy, generator, sleep=sleep)
        asyncio.run(orchestrator.generate(questions[1].id, "admin"))

        result = asyncio.run(orchestrator.generate_batch(SetRef(kind="exam", id=exam.id), "1-3", "admin"))
        assert (result["saved"], result["failed"]) == (2, 1)
        assert result["errors"][0]["question_number"] == 2
        assert result["errors"][0]["message"] == "already exists"
        assert len(generator.prompts) == 3
        assert sleep.calls == [1.0]

    def test_rerun_saves_nothing_new(self, db, store, resolver, policy, make_exam):
        exam, _ = make_exam(2)
        orchestrator = make_orchestrator(db, store, resolver, policy, sleep=SleepRecorder())
        ref = SetRef(kind="exam", id=exam.id)
        asyncio.run(orchestrator.generate_batch(ref, "1-2", "admin"))
        result = asyncio.run(orchestrator.generate_batch(ref, "1-2", "admin"))
        assert (result["saved"], result["failed"]) == (0, 2)
        assert db.query(Explanation).filter_by(is_ai_generated=True).count() == 2

    def test_deadline_fails_remaining_items(self, db, store, resolver, make_exam):
        exam, _ = make_exam(3)
        policy = ExplanationPolicy(batch_delay_seconds=1.0, batch_deadline_seconds=10)
        ticks = itertools.chain([0, 0, 5], itertools.repeat(11))
        generator = FakeGenerator()
        orchestrator = make_orchestrator(
            db, store, resolver, policy, generator, sleep=SleepRecorder(), clock=lambda: next(ticks)
        )

        result = asyncio.run(orchestrator.generate_batch(SetRef(kind="exam", id=exam.id), "1-3", "admin"))
        assert (result["saved"], result["failed"]) == (2, 1)
        assert result["errors"][0]["message"] == "batch deadline exceeded"
        assert result["errors"][0]["question_number"] == 3
        assert len(generator.prompts) == 2

    def test_storage_failure_is_recorded_per_item(self, db, store, resolver, policy, make_exam, monkeypatch):
        exam, questions = make_exam(3)
        original_add = store.add
        calls = []

        def flaky_add(explanation):
            calls.append(explanation.question_id)
            if len(calls) == 2:
                raise OperationalError("INSERT INTO explanations", {}, Exception("database is locked"))
            return original_add(explanation)

        monkeypatch.setattr(store, "add", flaky_add)
        orchestrator = make_orchestrator(db, store, resolver, policy, sleep=SleepRecorder())

        result = asyncio.run(orchestrator.generate_batch(SetRef(kind="exam", id=exam.id), "1-3", "admin"))
        assert (result["saved"], result["failed"]) == (2, 1)
        error = result["errors"][0]
        assert error["question_number"] == 2
        assert error["kind"] == "PersistenceError"
        assert [e.question_id for e in result["explanations"]] == [questions[0].id, questions[2].id]

    def test_no_valid_numbers(self, db, store, resolver, policy, make_exam):
        exam, _ = make_exam(2)
        orchestrator = make_orchestrator(db, store, resolver, policy)
        with pytest.raises(ValidationError):
            asyncio.run(orchestrator.generate_batch(SetRef(kind="exam", id=exam.id), "x,y", "admin"))

    def test_module_wide_batch(self, db, store, resolver, policy, make_exam, module):
        make_exam(2, name="2021")
        _, later = make_exam(2, name="2022")
        orchestrator = make_orchestrator(db, store, resolver, policy, sleep=SleepRecorder())
        result = asyncio.run(orchestrator.generate_batch(SetRef(kind="module", id=module.id), "3", "admin"))
        assert [e.question_id for e in result["explanations"]] == [later[0].id]


class TestConnection:
    def test_reply_means_connected(self, db, store, resolver, policy):
        assert asyncio.run(make_orchestrator(db, store, resolver, policy).test_connection()) is True

    def test_failure_means_disconnected(self, db, store, resolver, policy):
        orchestrator = make_orchestrator(db, store, resolver, policy, FakeGenerator(fail_when="test"))
        assert asyncio.run(orchestrator.test_connection()) is False
