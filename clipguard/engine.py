from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, field_validator

from .rules import (
    DANGEROUS_TOKENS,
    HARDCODED_KEYWORDS,
    RULE_EXPLANATIONS,
    SIGNATURE_PATTERNS,
    TOKEN_CHAIN_MIN,
)

DASH_VARIANTS = re.compile("[‐-―−]")


def normalize(text: str) -> str:
    """Unify dash look-alikes to ASCII '-' and lowercase."""
    return DASH_VARIANTS.sub("-", text or "").lower()


class ClipboardMethod(str, Enum):
    write = "write"
    write_text = "writeText"
    exec_copy = "execCopy"
    copy_event = "copyEvent"
    set_data = "setData"
    unknown = "unknown"


class ClipboardCandidate(BaseModel):
    method: ClipboardMethod = ClipboardMethod.unknown
    raw_text: str = ""

    @field_validator("method", mode="before")
    @classmethod
    def _coerce_method(cls, value):
        if isinstance(value, ClipboardMethod):
            return value
        try:
            return ClipboardMethod(str(value))
        except ValueError:
            return ClipboardMethod.unknown

    @field_validator("raw_text", mode="before")
    @classmethod
    def _strip_text(cls, value):
        return value.strip() if isinstance(value, str) else ""


class Verdict(BaseModel):
    suspicious: bool
    matched_rule: Optional[str] = None
    explanation: str = ""


class DetectionConfig(BaseModel):
    """User-tunable state, fetched fresh for every classification."""

    whitelist: List[str] = []
    keywords: List[str] = []
    on_screen_alerts: bool = True
    hardcoded_keywords: bool = True


@dataclass(frozen=True)
class RegexRule:
    rule_id: str
    pattern: re.Pattern
    explanation: str = ""
    follow: Optional[re.Pattern] = None
    kind: str = field(default="regex", init=False)

    def evaluate(self, text: str) -> bool:
        if self.follow is None:
            return self.pattern.search(text) is not None
        # First anchor per line only; later anchors on the same line can only see less text.
        for line in text.split("\n"):
            anchor = self.pattern.search(line)
            if anchor and self.follow.search(line, anchor.end()):
                return True
        return False


@dataclass(frozen=True)
class TokenChainRule:
    rule_id: str
    tokens: Tuple[str, ...]
    min_count: int = TOKEN_CHAIN_MIN
    explanation: str = ""
    kind: str = field(default="token_chain", init=False)

    def matches(self, text: str) -> List[str]:
        return [t for t in self.tokens if t in text]

    def evaluate(self, text: str) -> bool:
        return len(self.matches(text)) >= self.min_count


@dataclass(frozen=True)
class KeywordListRule:
    rule_id: str
    keywords: Tuple[str, ...]
    source: str = "builtin"
    explanation: str = ""
    kind: str = field(default="keyword_list", init=False)

    @classmethod
    def from_user(cls, keywords: Iterable[str]) -> "KeywordListRule":
        cleaned = tuple(normalize(str(k).strip()) for k in keywords or [] if k and str(k).strip())
        return cls(
            rule_id="USER_KEYWORD",
            keywords=cleaned,
            source="user",
            explanation=RULE_EXPLANATIONS["USER_KEYWORD"],
        )

    def evaluate(self, text: str) -> bool:
        return any(k in text for k in self.keywords)


Rule = Union[RegexRule, TokenChainRule, KeywordListRule]


def build_builtin_rules() -> List[Rule]:
    """Signature regexes, then token chaining, then the hardcoded keyword list."""
    rules: List[Rule] = [
        RegexRule(
            rule_id=entry["id"],
            pattern=re.compile(entry["pattern"], re.IGNORECASE),
            explanation=entry["explanation"],
            follow=re.compile(entry["follow"], re.IGNORECASE) if entry.get("follow") else None,
        )
        for entry in SIGNATURE_PATTERNS
    ]
    rules.append(
        TokenChainRule(
            rule_id="TOKEN_CHAIN",
            tokens=tuple(DANGEROUS_TOKENS),
            min_count=TOKEN_CHAIN_MIN,
            explanation=RULE_EXPLANATIONS["TOKEN_CHAIN"],
        )
    )
    rules.append(
        KeywordListRule(
            rule_id="HARDCODED_KEYWORD",
            keywords=tuple(k.lower() for k in HARDCODED_KEYWORDS),
            source="builtin",
            explanation=RULE_EXPLANATIONS["HARDCODED_KEYWORD"],
        )
    )
    return rules


class Classifier:
    """Evaluates a candidate against the built-in rules and the user's keywords.

    Built-in rules are compiled once. The user keyword list is a call argument so the
    classifier keeps no state between calls.
    """

    def __init__(self, rules: Optional[Sequence[Rule]] = None):
        self.rules: Tuple[Rule, ...] = tuple(rules) if rules is not None else tuple(build_builtin_rules())

    def _active_rules(self, user_keywords: Iterable[str], include_hardcoded: bool) -> List[Rule]:
        active = [
            rule
            for rule in self.rules
            if include_hardcoded or not (isinstance(rule, KeywordListRule) and rule.source == "builtin")
        ]
        active.append(KeywordListRule.from_user(user_keywords))
        return active

    def classify(
        self,
        candidate: ClipboardCandidate,
        user_keywords: Iterable[str] = (),
        include_hardcoded: bool = True,
    ) -> Verdict:
        if not candidate.raw_text:
            return Verdict(suspicious=False)
        text = normalize(candidate.raw_text)
        for rule in self._active_rules(user_keywords, include_hardcoded):
            if rule.evaluate(text):
                return Verdict(suspicious=True, matched_rule=rule.rule_id, explanation=rule.explanation)
        return Verdict(suspicious=False)

    def classify_with(self, candidate: ClipboardCandidate, config: DetectionConfig) -> Verdict:
        return self.classify(
            candidate,
            user_keywords=config.keywords,
            include_hardcoded=config.hardcoded_keywords,
        )

    def explain(
        self,
        candidate: ClipboardCandidate,
        user_keywords: Iterable[str] = (),
        include_hardcoded: bool = True,
    ) -> List[Verdict]:
        """Every rule that fires, in evaluation order."""
        if not candidate.raw_text:
            return []
        text = normalize(candidate.raw_text)
        return [
            Verdict(suspicious=True, matched_rule=rule.rule_id, explanation=rule.explanation)
            for rule in self._active_rules(user_keywords, include_hardcoded)
            if rule.evaluate(text)
        ]


default_classifier = Classifier()


def classify(candidate: ClipboardCandidate, user_keywords: Iterable[str] = ()) -> Verdict:
    return default_classifier.classify(candidate, user_keywords)
