"""Unit tests for the intent rule index and matchers."""

from app.routing.domain import IntentRule, MatchMode, RuleType, TaskType
from app.routing.intent.rules import IntentRuleIndex, rule_sort_key


def keyword(rule_id, content, mode=MatchMode.CONTAINS, priority=0, **kwargs):
    return IntentRule(
        id=rule_id, rule_type=RuleType.KEYWORD, match_mode=mode, content=content, priority=priority, **kwargs
    )


class TestMatchModes:
    """Tests for keyword match modes."""

    def test_exact_is_case_insensitive_on_stripped_text(self):
        index = IntentRuleIndex([keyword(1, "Order Status", MatchMode.EXACT)])
        rule = index.rules[0]

        assert index.matches(rule, "  order status ")
        assert not index.matches(rule, "order status please")

    def test_contains(self):
        index = IntentRuleIndex([keyword(1, "refund")])
        assert index.matches(index.rules[0], "How do I get a REFUND?")

    def test_prefix_and_suffix(self):
        index = IntentRuleIndex(
            [keyword(1, "how do i", MatchMode.PREFIX), keyword(2, "?", MatchMode.SUFFIX)]
        )
        prefix, suffix = index.rules

        assert index.matches(prefix, "How do I reset my password")
        assert not index.matches(prefix, "tell me how do i reset")
        assert index.matches(suffix, "is it raining?")
        assert not index.matches(suffix, "is it raining")

    def test_regex_is_full_match_and_case_insensitive(self):
        rule = IntentRule(id=7, rule_type=RuleType.REGEX, content=r"order\s+#?\d+")
        index = IntentRuleIndex([rule])

        assert index.matches(rule, "ORDER #1234")
        assert not index.matches(rule, "where is order 1234 now")

    def test_regex_match_mode_on_keyword_rule(self):
        rule = keyword(3, r"track .*", MatchMode.REGEX)
        index = IntentRuleIndex([rule])

        assert index.matches(rule, "track my parcel")


class TestIntentRuleIndex:
    """Tests for index construction."""

    def test_orders_by_priority_then_id(self):
        rules = [keyword(5, "a", priority=1), keyword(2, "b", priority=10), keyword(1, "c", priority=1)]
        index = IntentRuleIndex(rules)

        assert [r.id for r in index.rules] == [2, 1, 5]
        assert rule_sort_key(rules[1]) < rule_sort_key(rules[0])

    def test_invalid_regex_is_skipped(self):
        good = IntentRule(id=1, rule_type=RuleType.REGEX, content=r"\d+")
        bad = IntentRule(id=2, rule_type=RuleType.REGEX, content=r"([unclosed")
        index = IntentRuleIndex([good, bad])

        assert [r.id for r in index.rules] == [1]

    def test_inactive_and_blank_rules_are_dropped(self):
        index = IntentRuleIndex([keyword(1, "x", is_active=False), keyword(2, "   ")])
        assert len(index) == 0

    def test_semantic_rules_are_kept_apart(self):
        semantic = IntentRule(
            id=9, rule_type=RuleType.SEMANTIC_EXAMPLE, content="is it going to rain", task_type=TaskType.WEATHER
        )
        index = IntentRuleIndex([keyword(1, "weather"), semantic])

        assert [r.id for r in index.rules] == [1]
        assert [r.id for r in index.semantic_rules] == [9]

    def test_iter_matches_in_cascade_order(self):
        index = IntentRuleIndex(
            [keyword(1, "weather", priority=1), keyword(2, "the weather", priority=5), keyword(3, "stock")]
        )
        assert [r.id for r in index.iter_matches("what's the weather")] == [2, 1]
