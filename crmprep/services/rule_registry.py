"""
Rule Registry

An explicit, ordered collection of rules. Built once at process start by
build_default_registry() and handed to the RuleRunner; tests build smaller
registries of their own.

Ordering: ascending `order`, ties broken by registration order.
"""

import logging
from functools import lru_cache
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from crmprep.services import (
    company_rules,
    contact_rules,
    date_rules,
    duplicate_rules,
    enum_rules,
    name_rules,
    text_rules,
)
from crmprep.services.rule_types import Rule

logger = logging.getLogger(__name__)


class RuleRegistry:
    def __init__(self, rules: Iterable[Rule] = ()):
        self._rules: List[Rule] = []
        self._by_id: Dict[str, Rule] = {}
        for rule in rules:
            self.register(rule)

    def register(self, rule: Rule) -> None:
        if rule.rule_id in self._by_id:
            raise ValueError(f"Rule already registered: {rule.rule_id}")
        self._by_id[rule.rule_id] = rule
        self._rules.append(rule)
        # sort() is stable, so equal orders keep registration order
        self._rules.sort(key=lambda r: r.order)

    def get(self, rule_id: str) -> Optional[Rule]:
        return self._by_id.get(rule_id)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._by_id

    def __iter__(self) -> Iterator[Rule]:
        return iter(list(self._rules))

    def __len__(self) -> int:
        return len(self._rules)

    @property
    def rule_ids(self) -> List[str]:
        return [r.rule_id for r in self._rules]

    def select(self, enabled_rule_ids: Optional[Iterable[str]] = None) -> Tuple[List[Rule], List[str]]:
        """
        Rules to execute, in registry order, plus requested ids that are unknown.

        With enabled_rule_ids=None every rule is selected. The caller's order
        of ids is ignored.
        """
        if enabled_rule_ids is None:
            return list(self._rules), []
        requested = list(dict.fromkeys(enabled_rule_ids))
        wanted = set(requested)
        unknown = [rule_id for rule_id in requested if rule_id not in self._by_id]
        if unknown:
            logger.warning("Requested rules not in registry: %s", ", ".join(unknown))
        return [r for r in self._rules if r.rule_id in wanted], unknown

    def describe(self) -> List[dict]:
        return [r.describe() for r in self._rules]


def build_default_registry() -> RuleRegistry:
    """Registry of every built-in rule."""
    rules: List[Rule] = []
    for module in (
        text_rules,
        name_rules,
        enum_rules,
        contact_rules,
        date_rules,
        company_rules,
        duplicate_rules,
    ):
        rules.extend(module.RULES)
    return RuleRegistry(rules)


@lru_cache()
def get_default_registry() -> RuleRegistry:
    return build_default_registry()
