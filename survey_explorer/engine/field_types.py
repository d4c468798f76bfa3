from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from .records import ClassificationResult

SignalCategory = Literal["question_text", "input_kind", "context"]

# Share of a pattern's base confidence contributed by each matching signal.
SIGNAL_WEIGHTS: dict[str, float] = {
    "question_text": 0.8,
    "input_kind": 0.6,
    "context": 0.4,
}

FALLBACK_CONFIDENCE = 50.0

TEXTUAL_KINDS = r"^(text|textarea|email|number|tel|url|date|autocomplete_dropdown)$"
CHOICE_KINDS = r"^(radio|checkbox|dropdown)$"


@dataclass(frozen=True)
class SignalRule:
    category: SignalCategory
    pattern: re.Pattern[str]
    weight: float

    def matches(self, subject: str) -> bool:
        return bool(self.pattern.search(subject))


@dataclass
class PatternUsage:
    evaluations: int = 0
    matches: int = 0
    selections: int = 0
    last_used: Optional[str] = None


@dataclass
class FieldTypePattern:
    id: str
    name: str
    field_type: str
    priority: int
    confidence: float
    target_template: str
    text_patterns: list[str] = field(default_factory=list)
    attribute_patterns: list[str] = field(default_factory=list)
    context_patterns: list[str] = field(default_factory=list)
    kind_filter: Optional[str] = None
    usage: PatternUsage = field(default_factory=PatternUsage)

    def applies_to(self, input_kind: str) -> bool:
        if not self.kind_filter:
            return True
        return bool(re.match(self.kind_filter, input_kind or "", re.IGNORECASE))

    def rules(self) -> list[SignalRule]:
        compiled: list[SignalRule] = []
        for category, sources in (
            ("question_text", self.text_patterns),
            ("input_kind", self.attribute_patterns),
            ("context", self.context_patterns),
        ):
            for source in sources:
                compiled.append(
                    SignalRule(
                        category=category,
                        pattern=re.compile(source, re.IGNORECASE),
                        weight=SIGNAL_WEIGHTS[category] * self.confidence,
                    )
                )
        return compiled


@dataclass
class UnknownField:
    question_number: str
    question_text: str
    input_kind: str
    choices: list[str]
    detected_type: str
    survey_title: str = ""
    previous_questions: list[str] = field(default_factory=list)
    next_questions: list[str] = field(default_factory=list)
    recorded_at: str = ""


def builtin_patterns() -> list[FieldTypePattern]:
    return [
        FieldTypePattern(
            id="vas_widget",
            name="Visual analogue scale",
            field_type="VAS",
            priority=100,
            confidence=100,
            target_template="vas_slider_v1",
            attribute_patterns=[r"^VAS$"],
            kind_filter=r"^VAS$",
        ),
        FieldTypePattern(
            id="nrs_widget",
            name="Numeric rating scale",
            field_type="NRS",
            priority=100,
            confidence=100,
            target_template="nrs_scale_v1",
            attribute_patterns=[r"^NRS$"],
            kind_filter=r"^NRS$",
        ),
        FieldTypePattern(
            id="email",
            name="Email address",
            field_type="email",
            priority=90,
            confidence=95,
            target_template="email_validation_v1",
            text_patterns=[r"\b(email|e-mail|correo)\b", r"\b(electronic\s+mail|mail\s+address)\b"],
            attribute_patterns=[r"^(email|text)$"],
            kind_filter=TEXTUAL_KINDS,
        ),
        FieldTypePattern(
            id="date",
            name="Date",
            field_type="date",
            priority=88,
            confidence=92,
            target_template="date_validation_v1",
            text_patterns=[
                r"\b(date|fecha|when)\b",
                r"\b(birth\s*date|date\s+of\s+birth|dob)\b",
                r"\b(appointment|meeting|event)\b",
            ],
            attribute_patterns=[r"^(date|text)$"],
            kind_filter=TEXTUAL_KINDS,
        ),
        FieldTypePattern(
            id="weight",
            name="Body weight",
            field_type="weight",
            priority=87,
            confidence=88,
            target_template="weight_validation_v1",
            text_patterns=[
                r"\b(weight|weigh|peso|gewicht|poids)\b",
                r"\b(how\s+much\s+do\s+you\s+weigh)\b",
                r"\b(body\s+weight|current\s+weight)\b",
                r"\b(kg|kilograms?|lbs?|pounds?)\b",
            ],
            attribute_patterns=[r"^(text|number|autocomplete_dropdown)$"],
            kind_filter=TEXTUAL_KINDS,
        ),
        FieldTypePattern(
            id="phone",
            name="Phone number",
            field_type="phone",
            priority=85,
            confidence=90,
            target_template="phone_validation_v1",
            text_patterns=[r"\b(phone|telephone|telefono)\b", r"\b(mobile|cell|contact\s+number)\b"],
            attribute_patterns=[r"^(tel|text)$"],
            kind_filter=TEXTUAL_KINDS,
        ),
        FieldTypePattern(
            id="age",
            name="Age",
            field_type="age",
            priority=85,
            confidence=90,
            target_template="age_validation_v1",
            text_patterns=[r"\b(age|edad|ages?)\b", r"\b(how\s+old|years?\s+old)\b", r"\b(birth\s+year|year\s+born)\b"],
            attribute_patterns=[r"^(number|text)$"],
            kind_filter=TEXTUAL_KINDS,
        ),
        FieldTypePattern(
            id="name",
            name="Person name",
            field_type="name",
            priority=80,
            confidence=85,
            target_template="name_validation_v1",
            text_patterns=[
                r"\b(name|nom|nombre)\b",
                r"\b(first\s+name|last\s+name|full\s+name)\b",
                r"\b(given\s+name|family\s+name|surname)\b",
            ],
            attribute_patterns=[r"^text$"],
            kind_filter=TEXTUAL_KINDS,
        ),
        FieldTypePattern(
            id="address",
            name="Postal address",
            field_type="address",
            priority=75,
            confidence=80,
            target_template="address_validation_v1",
            text_patterns=[
                r"\b(address|direccion|street)\b",
                r"\b(home\s+address|mailing\s+address)\b",
                r"\b(zip\s+code|postal\s+code|postcode)\b",
            ],
            attribute_patterns=[r"^(text|textarea)$"],
            kind_filter=TEXTUAL_KINDS,
        ),
        FieldTypePattern(
            id="rating_scale",
            name="Rating scale",
            field_type="rating_scale",
            priority=70,
            confidence=75,
            target_template="rating_scale_v1",
            text_patterns=[
                r"\b(rate|rating|scale|score)\b",
                r"\b(satisfied|satisfaction|satisfecho)\b",
                r"\b(likely|recommend|quality)\b",
                r"\b(1\s*-\s*10|1\s+to\s+10|scale\s+of)\b",
            ],
            attribute_patterns=[r"^(radio|dropdown)$"],
            context_patterns=[r"\b(strongly\s+agree|agree|disagree)\b", r"\b(excellent|good|fair|poor)\b"],
            kind_filter=CHOICE_KINDS,
        ),
        FieldTypePattern(
            id="yes_no",
            name="Yes / no",
            field_type="yes_no",
            priority=65,
            confidence=85,
            target_template="yes_no_v1",
            text_patterns=[r"\b(do\s+you|are\s+you|have\s+you)\b"],
            attribute_patterns=[r"^radio$"],
            context_patterns=[r"^(yes|no|si|oui|non)$", r"^(true|false)$"],
            kind_filter=CHOICE_KINDS,
        ),
    ]


class FieldTypeRegistry:
    """Ranked-rule classifier mapping a question to a semantic field type.

    Patterns are evaluated in descending priority; every matching signal adds
    its weight to that pattern's score (capped at 100). The best score wins and
    a later pattern only replaces it with a strictly higher score, so equal
    scores go to the higher priority (then earlier registered) pattern.
    """

    def __init__(self, patterns: Optional[list[FieldTypePattern]] = None) -> None:
        self._patterns: list[FieldTypePattern] = []
        self._rules: dict[str, list[SignalRule]] = {}
        self.unknown_fields: list[UnknownField] = []
        for pattern in builtin_patterns() if patterns is None else patterns:
            self.register_pattern(pattern)

    @property
    def patterns(self) -> list[FieldTypePattern]:
        return sorted(self._patterns, key=lambda p: -p.priority)

    def get_pattern(self, pattern_id: str) -> Optional[FieldTypePattern]:
        for pattern in self._patterns:
            if pattern.id == pattern_id:
                return pattern
        return None

    def register_pattern(self, pattern: FieldTypePattern) -> None:
        if self.get_pattern(pattern.id) is not None:
            raise ValueError(f"field type pattern already registered: {pattern.id}")
        self._patterns.append(pattern)
        self._rules[pattern.id] = pattern.rules()

    def classify(self, question_text: str, input_kind: str, choices: Optional[list[str]] = None) -> ClassificationResult:
        choices = choices or []
        now = datetime.now(timezone.utc).isoformat()
        best: Optional[ClassificationResult] = None

        for pattern in self.patterns:
            if not pattern.applies_to(input_kind):
                continue
            pattern.usage.evaluations += 1
            score, signals = self._score(pattern, question_text or "", input_kind or "", choices)
            if score <= 0:
                continue
            pattern.usage.matches += 1
            pattern.usage.last_used = now
            if best is None or score > best.confidence:
                best = ClassificationResult(
                    field_type=pattern.field_type,
                    confidence=score,
                    method="pattern_match",
                    template=pattern.target_template,
                    pattern_id=pattern.id,
                    matched_signals=signals,
                )

        if best is None:
            return self._fallback(input_kind or "", choices)

        chosen = self.get_pattern(best.pattern_id or "")
        if chosen is not None:
            chosen.usage.selections += 1
        return best

    def _score(
        self, pattern: FieldTypePattern, question_text: str, input_kind: str, choices: list[str]
    ) -> tuple[float, list[str]]:
        score = 0.0
        signals: list[str] = []
        for rule in self._rules[pattern.id]:
            if rule.category == "question_text":
                hit = rule.matches(question_text)
            elif rule.category == "input_kind":
                hit = rule.matches(input_kind)
            else:
                hit = any(rule.matches(choice.strip()) for choice in choices)
            if hit:
                score += rule.weight
                signals.append(f"{rule.category}:{rule.pattern.pattern}")
        # A control kind alone says nothing about meaning unless the pattern is kind-only.
        has_vocabulary = bool(pattern.text_patterns or pattern.context_patterns)
        if has_vocabulary and all(s.startswith("input_kind:") for s in signals):
            return 0.0, []
        return round(min(score, 100.0), 2), signals

    def _fallback(self, input_kind: str, choices: list[str]) -> ClassificationResult:
        return ClassificationResult(
            field_type=fallback_field_type(input_kind, choices),
            confidence=FALLBACK_CONFIDENCE,
            method="fallback",
        )

    def record_unknown_field(
        self,
        question_number: str,
        question_text: str,
        input_kind: str,
        choices: list[str],
        detected_type: str,
        context: Optional[dict[str, Any]] = None,
    ) -> UnknownField:
        context = context or {}
        entry = UnknownField(
            question_number=question_number,
            question_text=question_text,
            input_kind=input_kind,
            choices=list(choices),
            detected_type=detected_type,
            survey_title=context.get("survey_title", ""),
            previous_questions=list(context.get("previous_questions", [])),
            next_questions=list(context.get("next_questions", [])),
            recorded_at=datetime.now(timezone.utc).isoformat(),
        )
        self.unknown_fields.append(entry)
        logging.info(
            "unknown_field_recorded question=%s kind=%s fallback=%s",
            question_number,
            input_kind,
            detected_type,
        )
        return entry

    def export_unknown_fields(self) -> list[dict[str, Any]]:
        return [vars(entry).copy() for entry in self.unknown_fields]

    def clear_unknown_fields(self) -> None:
        self.unknown_fields.clear()

    def pattern_stats(self) -> dict[str, Any]:
        stats = {
            pattern.id: {
                "name": pattern.name,
                "priority": pattern.priority,
                "evaluations": pattern.usage.evaluations,
                "matches": pattern.usage.matches,
                "selections": pattern.usage.selections,
                "last_used": pattern.usage.last_used,
            }
            for pattern in self.patterns
        }
        return {
            "total_patterns": len(self._patterns),
            "unknown_fields": len(self.unknown_fields),
            "never_matched": [pid for pid, s in stats.items() if s["evaluations"] and not s["matches"]],
            "patterns": stats,
        }


def fallback_field_type(input_kind: str, choices: list[str]) -> str:
    if choices:
        if len(choices) <= 5 and any(re.match(r"^(yes|no|true|false)$", c.strip(), re.IGNORECASE) for c in choices):
            return "yes_no"
        if 3 <= len(choices) <= 10:
            return "rating_scale"
        return "multiple_choice"

    return {
        "VAS": "VAS",
        "NRS": "NRS",
        "email": "email",
        "tel": "phone",
        "date": "date",
        "number": "number",
        "url": "url",
        "textarea": "long_text",
        "radio": "radio_group",
        "checkbox": "checkbox_group",
        "dropdown": "dropdown",
        "autocomplete_dropdown": "weight",
    }.get(input_kind, "general_text")
