"""
Answer evaluators.

Two judges share the EvaluationScores contract (1-10 scale):
- OpenAIJudge: LLM-as-judge over six quality dimensions
- HeuristicEvaluator: token-overlap judge that runs offline
"""

from __future__ import annotations

import re
from typing import Any

from loguru import logger

from app.routing.domain import EvaluationScores
from ragroute_core.config import settings
from ragroute_core.infrastructure.openai_client import (
    chat_completion,
    get_openai_client,
    parse_json_object,
)
from ragroute_core.runtime import EvaluationFailure

JUDGE_SYSTEM_PROMPT = "You are an expert evaluator of retrieval-augmented generation systems."

JUDGE_PROMPT_TEMPLATE = """Evaluate the quality of an answer produced by a retrieval-augmented system.

Question:
{question}

Answer:
{answer}

Retrieved context:
{context}

Score each dimension from 1 (worst) to 10 (best):
1. faithfulness: the answer is grounded in the context and invents nothing
2. relevance: the answer addresses the question directly
3. context_relevance: the context contains what is needed to answer
4. factual_consistency: facts in the answer agree with the context
5. completeness: the answer covers every part of the question
6. conciseness: the answer has no unnecessary redundancy

Respond with a JSON object only:
{{"faithfulness": <score>, "relevance": <score>, "context_relevance": <score>,
"factual_consistency": <score>, "completeness": <score>, "conciseness": <score>,
"total_score": <overall score>, "reasoning": "<short justification>"}}
"""

SCORE_FIELDS = (
    "faithfulness",
    "relevance",
    "context_relevance",
    "factual_consistency",
    "completeness",
    "conciseness",
)

# camelCase spellings some models return
_ALIASES = {
    "contextRelevance": "context_relevance",
    "factualConsistency": "factual_consistency",
    "totalScore": "total_score",
}


def _clamp_score(value: Any) -> float:
    return max(1.0, min(10.0, float(value)))


def scores_from_payload(payload: dict[str, Any]) -> EvaluationScores:
    """
    Build EvaluationScores from a judge reply.

    Raises:
        ValueError: If a score is missing or not numeric.
    """
    data = {_ALIASES.get(key, key): value for key, value in payload.items()}
    values = {name: _clamp_score(data[name]) for name in SCORE_FIELDS}
    total = data.get("total_score")
    values["total_score"] = (
        _clamp_score(total) if total is not None else sum(values.values()) / len(SCORE_FIELDS)
    )
    return EvaluationScores(**values, reasoning=str(data.get("reasoning", "")))


class OpenAIJudge:
    """
    LLM-as-judge evaluator.

    Usage:
        judge = OpenAIJudge()
        scores = judge.evaluate(question, answer, context)
    """

    def __init__(self, model: str | None = None, client=None):
        self.model = model or settings.OPENAI_MODEL_ID
        self._client = client

    def _get_client(self):
        if self._client is None:
            self._client = get_openai_client()
        return self._client

    def evaluate(self, query: str, answer: str, context: str) -> EvaluationScores:
        prompt = JUDGE_PROMPT_TEMPLATE.format(question=query, answer=answer, context=context or "(none)")
        try:
            content = chat_completion(
                self._get_client(),
                model=self.model,
                system_prompt=JUDGE_SYSTEM_PROMPT,
                user_message=prompt,
                temperature=0,
                json_mode=True,
            )
            scores = scores_from_payload(parse_json_object(content))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Judge returned an unusable payload: {e}")
            raise EvaluationFailure(f"Judge returned an unusable payload: {e}", cause=e) from e
        except Exception as e:
            logger.error(f"Judge call failed: {e}")
            raise EvaluationFailure(f"Judge call failed: {e}", cause=e) from e

        logger.info(f"Evaluation complete, total score {scores.total_score:.1f}")
        return scores


_TOKEN = re.compile(r"[a-z0-9]+")
_STOPWORDS = frozenset(
    "a an and are as at be by for from how in is it of on or that the this to was what when where which who why with".split()
)
REFUSAL_PHRASES = (
    "i don't have enough information",
    "insufficient information",
    "cannot answer",
    "no relevant information",
    "couldn't find any relevant information",
)


def _tokens(text: str) -> set[str]:
    return {t for t in _TOKEN.findall((text or "").lower()) if t not in _STOPWORDS}


def _overlap(part: set[str], whole: set[str]) -> float:
    if not part:
        return 0.0
    return len(part & whole) / len(part)


class HeuristicEvaluator:
    """
    Token-overlap judge.

    Faithfulness is the share of answer terms found in the context,
    relevance the share of question terms found in the answer, and
    context relevance the share of question terms found in the context.
    Ratios are mapped onto the 1-10 scale.
    """

    def __init__(self, concise_chars: int = 1200):
        self.concise_chars = concise_chars

    @staticmethod
    def _scale(ratio: float) -> float:
        return round(1.0 + 9.0 * max(0.0, min(1.0, ratio)), 2)

    def evaluate(self, query: str, answer: str, context: str) -> EvaluationScores:
        if not answer or not answer.strip():
            raise EvaluationFailure("Cannot evaluate an empty answer")

        question_terms = _tokens(query)
        answer_terms = _tokens(answer)
        context_terms = _tokens(context)

        if any(phrase in answer.lower() for phrase in REFUSAL_PHRASES):
            # a refusal invents nothing
            faithfulness = 10.0
        else:
            faithfulness = self._scale(_overlap(answer_terms, context_terms))
        relevance = self._scale(_overlap(question_terms, answer_terms))
        context_relevance = self._scale(_overlap(question_terms, context_terms))
        completeness = round((relevance + context_relevance) / 2, 2)
        conciseness = 10.0 if len(answer) <= self.concise_chars else self._scale(self.concise_chars / len(answer))

        values = {
            "faithfulness": faithfulness,
            "relevance": relevance,
            "context_relevance": context_relevance,
            "factual_consistency": faithfulness,
            "completeness": completeness,
            "conciseness": conciseness,
        }
        return EvaluationScores(
            **values,
            total_score=round(sum(values.values()) / len(values), 2),
            reasoning=(
                f"answer/context overlap {_overlap(answer_terms, context_terms):.2f}, "
                f"question/answer overlap {_overlap(question_terms, answer_terms):.2f}"
            ),
        )
