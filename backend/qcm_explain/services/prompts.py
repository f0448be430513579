from __future__ import annotations
import re
from typing import List, Optional

from ..models import Question
from .questions import correct_indexes, option_label

# Matches {question}, {{ options }}, {correct_answers} ...
_PLACEHOLDER = re.compile(r"\{\{?\s*(question|options|correct_answers)\s*\}?\}")

_CONTEXT_HEADER = {
	"fr": "Contexte de référence (extrait des documents du module):",
	"en": "Reference context (extracted from the module documents):",
}

_FRENCH_TEMPLATE = """Tu es un assistant médical expert qui aide les étudiants en médecine à comprendre les questions d'examen.
{context}
Question:
{question}

Options:
{options}

Réponse(s) correcte(s): {correct_answers}

Instructions:
1. Explique pourquoi la/les réponse(s) correcte(s) est/sont juste(s)
2. Explique pourquoi les autres options sont incorrectes
3. Fournis un contexte médical pertinent
4. Utilise un langage clair et pédagogique
5. Structure ta réponse avec des paragraphes et des points clés
{extra}
Génère une explication complète et détaillée:"""

_ENGLISH_TEMPLATE = """You are an expert medical assistant helping medical students understand exam questions.
{context}
Question:
{question}

Options:
{options}

Correct answer(s): {correct_answers}

Instructions:
1. Explain why the correct answer(s) is/are right
2. Explain why the other options are incorrect
3. Provide relevant medical context
4. Use clear and pedagogical language
5. Structure your response with paragraphs and key points
{extra}
Generate a complete and detailed explanation:"""

_CONTEXT_INSTRUCTION = {
	"fr": "6. Appuie-toi en priorité sur le contexte de référence fourni ci-dessus\n",
	"en": "6. Rely primarily on the reference context provided above\n",
}


def normalize_language(language: Optional[str]) -> str:
	return "en" if (language or "").lower().startswith("en") else "fr"


def format_options(question: Question) -> str:
	correct = set(correct_indexes(question))
	lines: List[str] = []
	for idx, opt in enumerate(question.options or []):
		marker = " ✓" if idx in correct else ""
		lines.append(f"{option_label(idx)}. {opt.get('text', '')}{marker}")
	return "\n".join(lines)


def format_correct_answers(question: Question) -> str:
	return ", ".join(option_label(i) for i in correct_indexes(question))


def build_prompt(question: Question, language: str = "fr", custom_prompt: Optional[str] = None, context: str = "") -> str:
	"""Prompt for one question: the caller's template when given, else the localized one."""
	lang = normalize_language(language)
	values = {
		"question": question.text,
		"options": format_options(question),
		"correct_answers": format_correct_answers(question),
	}
	context = (context or "").strip()
	if custom_prompt and custom_prompt.strip():
		rendered = _PLACEHOLDER.sub(lambda m: values[m.group(1)], custom_prompt.strip())
		if context:
			return f"{_CONTEXT_HEADER[lang]}\n{context}\n\n{rendered}"
		return rendered
	template = _ENGLISH_TEMPLATE if lang == "en" else _FRENCH_TEMPLATE
	return template.format(
		context=f"\n{_CONTEXT_HEADER[lang]}\n{context}\n" if context else "",
		extra=_CONTEXT_INSTRUCTION[lang] if context else "",
		**values,
	)
