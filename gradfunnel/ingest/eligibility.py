"""Early-career eligibility policy.

This module is the only place the signal lists live. The policy is recall
biased: a posting is dropped only when it carries a strong senior signal and
nothing that points the other way.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import re
from typing import Literal

EligibilityReason = Literal["positive_signal", "ambiguous_case", "senior_signal", "no_clear_signals"]

POSITIVE_SIGNALS = (
    r"intern",
    r"internship",
    r"graduate",
    r"graduates",
    r"grad scheme",
    r"trainee",
    r"traineeship",
    r"junior",
    r"jr",
    r"entry[- ]?level",
    r"entry level position",
    r"0-2 years",
    r"0 to 2 years",
    r"0 years",
    r"1 year",
    r"2 years",
    r"no experience",
    r"no experience required",
    r"new grad",
    r"recent graduate",
    r"fresh graduate",
    r"associate",
    r"assistant",
    r"coordinator",
    r"student",
    r"apprentice",
    r"apprenticeship",
    r"werkstudent",
    r"stagiaire",
    r"praktikum",
)

SENIOR_SIGNALS = (
    r"senior",
    r"sr\.",
    r"principal",
    r"staff",
    r"lead",
    r"director",
    r"architect",
    r"vp",
    r"vice president",
    r"head of",
    r"chief",
    r"10\+ years",
    r"(?:5|6|7|8|9|10)\+\s*years",
    r"experienced.{0,40}(?:5|6|7|8|9|10)",
    r"minimum.{0,40}(?:5|6|7|8|9|10).{0,10}years",
    r"at least.{0,40}(?:5|6|7|8|9|10).{0,10}years",
    r"manager.{0,40}(?:5|6|7|8|9|10).{0,10}years",
)

AMBIGUOUS_PHRASES = (
    "manager trainee",
    "trainee manager",
    "graduate specialist",
    "junior manager",
    "associate director",
    "entry level lead",
    "graduate manager",
    "trainee director",
    "junior director",
)


def _compile(signals: tuple[str, ...]) -> re.Pattern[str]:
    # Word boundaries are applied on alphanumeric edges only, so "sr." and
    # "10+ years" still match at the end of a sentence.
    parts = []
    for signal in signals:
        prefix = r"\b" if re.match(r"[\w(]", signal) else ""
        suffix = r"\b" if re.search(r"[\w)]$", signal) else ""
        parts.append(f"{prefix}(?:{signal}){suffix}")
    return re.compile("|".join(parts))


_POSITIVE_RE = _compile(POSITIVE_SIGNALS)
_SENIOR_RE = _compile(SENIOR_SIGNALS)


@dataclass(frozen=True, slots=True)
class EligibilityDecision:
    eligible: bool
    uncertain: bool
    reason: EligibilityReason


@dataclass(frozen=True, slots=True)
class _Signals:
    positive: bool
    senior: bool
    ambiguous: bool


@dataclass(frozen=True, slots=True)
class EligibilityRule:
    name: str
    applies: Callable[[_Signals], bool]
    decision: EligibilityDecision


# Evaluated top to bottom; the first rule that applies wins.
RULES: tuple[EligibilityRule, ...] = (
    EligibilityRule(
        name="positive_without_senior",
        applies=lambda s: s.positive and not s.senior,
        decision=EligibilityDecision(eligible=True, uncertain=False, reason="positive_signal"),
    ),
    EligibilityRule(
        name="ambiguous_phrasing",
        applies=lambda s: s.ambiguous,
        decision=EligibilityDecision(eligible=True, uncertain=True, reason="ambiguous_case"),
    ),
    EligibilityRule(
        name="senior_only",
        applies=lambda s: s.senior,
        decision=EligibilityDecision(eligible=False, uncertain=False, reason="senior_signal"),
    ),
)

DEFAULT_DECISION = EligibilityDecision(eligible=True, uncertain=True, reason="no_clear_signals")


def classify(title: str | None, description: str | None) -> EligibilityDecision:
    content = f"{title or ''} {description or ''}".lower()
    signals = _Signals(
        positive=_POSITIVE_RE.search(content) is not None,
        senior=_SENIOR_RE.search(content) is not None,
        ambiguous=any(phrase in content for phrase in AMBIGUOUS_PHRASES),
    )
    for rule in RULES:
        if rule.applies(signals):
            return rule.decision
    return DEFAULT_DECISION
