"""
In-memory intent rule index.

The index is built once per refresh and never mutated afterwards; a refresh
builds a new index and swaps it in, so a detection pass always sees one
consistent rule set.
"""

from __future__ import annotations

import re
from typing import Callable, Iterable, Iterator

from loguru import logger

from app.routing.domain import IntentRule, MatchMode, RuleType

LEXICAL_RULE_TYPES = (RuleType.KEYWORD, RuleType.REGEX)


def _normalize(text: str) -> str:
    return text.strip().lower()


# MatchMode -> predicate over (normalized query, normalized rule content)
KEYWORD_MATCHERS: dict[MatchMode, Callable[[str, str], bool]] = {
    MatchMode.EXACT: lambda text, content: text == content,
    MatchMode.CONTAINS: lambda text, content: content in text,
    MatchMode.PREFIX: lambda text, content: text.startswith(content),
    MatchMode.SUFFIX: lambda text, content: text.endswith(content),
}


def rule_sort_key(rule: IntentRule) -> tuple[int, int]:
    """Priority descending, then rule id ascending."""
    return (-rule.priority, rule.id)


def effective_match_mode(rule: IntentRule) -> MatchMode:
    if rule.rule_type == RuleType.REGEX:
        return MatchMode.REGEX
    return rule.match_mode


class IntentRuleIndex:
    """
    Immutable, precedence-ordered view of the active rules.

    Keyword and regex rules are kept in cascade order; semantic example
    rules are kept separately for the semantic router. Regex patterns are
    compiled once here, keyed by rule id.
    """

    def __init__(self, rules: Iterable[IntentRule] = ()):
        lexical: list[IntentRule] = []
        semantic: list[IntentRule] = []
        patterns: dict[int, re.Pattern[str]] = {}

        for rule in rules:
            if not rule.is_active or not rule.content.strip():
                continue
            if rule.rule_type == RuleType.SEMANTIC_EXAMPLE:
                semantic.append(rule)
                continue
            if effective_match_mode(rule) == MatchMode.REGEX:
                try:
                    patterns[rule.id] = re.compile(rule.content.strip(), re.IGNORECASE)
                except re.error as e:
                    logger.warning(f"Skipping rule {rule.id}: invalid pattern {rule.content!r} ({e})")
                    continue
            lexical.append(rule)

        self._rules: tuple[IntentRule, ...] = tuple(sorted(lexical, key=rule_sort_key))
        self._semantic_rules: tuple[IntentRule, ...] = tuple(sorted(semantic, key=rule_sort_key))
        self._patterns = patterns

    @classmethod
    def empty(cls) -> "IntentRuleIndex":
        return cls(())

    @property
    def rules(self) -> tuple[IntentRule, ...]:
        return self._rules

    @property
    def semantic_rules(self) -> tuple[IntentRule, ...]:
        return self._semantic_rules

    def __len__(self) -> int:
        return len(self._rules)

    def matches(self, rule: IntentRule, query_text: str) -> bool:
        """Whether `rule` matches `query_text` under its match mode."""
        mode = effective_match_mode(rule)
        if mode == MatchMode.REGEX:
            pattern = self._patterns.get(rule.id)
            return bool(pattern and pattern.fullmatch(query_text.strip()))
        return KEYWORD_MATCHERS[mode](_normalize(query_text), _normalize(rule.content))

    def iter_matches(self, query_text: str) -> Iterator[IntentRule]:
        """Yield matching rules in cascade order."""
        for rule in self._rules:
            if self.matches(rule, query_text):
                yield rule
