"""Relationship classification by source and target node type."""

import logging
from collections.abc import Callable, Iterable

logger = logging.getLogger(__name__)

# (source_type, target_type) -> relationship kind, or None for the default.
Classifier = Callable[[str, str], str | None]

ANY_TYPE = "*"


def parse_rule(rule: str) -> tuple[str, str, str]:
    """Parse a `source>target=kind` rule.

    Raises ValueError when the rule is malformed.
    """
    pair, sep, kind = rule.partition("=")
    source, arrow, target = pair.partition(">")
    source, target, kind = source.strip(), target.strip(), kind.strip()
    if not sep or not arrow or not source or not target or not kind:
        raise ValueError(f"Invalid relationship rule '{rule}' (expected source>target=kind)")
    return source, target, kind


class TypePairClassifier:
    """Classify a resolved reference by the types of its two endpoints.

    Exact pairs win over wildcard pairs; `*` matches any type on either side.
    """

    def __init__(self, rules: dict[tuple[str, str], str] | None = None) -> None:
        self.rules = dict(rules or {})

    @classmethod
    def from_rules(cls, rules: Iterable[str]) -> "TypePairClassifier":
        mapping: dict[tuple[str, str], str] = {}
        for rule in rules:
            if not rule.strip():
                continue
            source, target, kind = parse_rule(rule)
            if (source, target) in mapping:
                logger.warning(f"Relationship rule for {source}>{target} redefined as {kind}")
            mapping[(source, target)] = kind
        return cls(mapping)

    def __call__(self, source_type: str, target_type: str) -> str | None:
        for key in (
            (source_type, target_type),
            (source_type, ANY_TYPE),
            (ANY_TYPE, target_type),
            (ANY_TYPE, ANY_TYPE),
        ):
            kind = self.rules.get(key)
            if kind is not None:
                return kind
        return None

    def __len__(self) -> int:
        return len(self.rules)
