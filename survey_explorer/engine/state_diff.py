from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .selectors import clean_question_text, parse_question_number


@dataclass(frozen=True)
class QuestionSnapshot:
    """Question numbers visible on the page at one instant, in document order."""

    numbers: tuple[str, ...] = ()

    @classmethod
    def from_texts(cls, texts: list[str]) -> "QuestionSnapshot":
        numbers = []
        for text in texts:
            number = parse_question_number(text)
            if number and number not in numbers:
                numbers.append(number)
        return cls(tuple(numbers))

    def revealed_since(self, before: "QuestionSnapshot") -> list[str]:
        known = set(before.numbers)
        return [number for number in self.numbers if number not in known]


@dataclass
class QuestionDiff:
    revealed: list[str]
    hidden: list[str]

    @property
    def changed(self) -> bool:
        return bool(self.revealed or self.hidden)


def diff_questions(before: QuestionSnapshot, after: QuestionSnapshot) -> QuestionDiff:
    return QuestionDiff(
        revealed=after.revealed_since(before),
        hidden=before.revealed_since(after),
    )


@dataclass(frozen=True)
class PageIdentity:
    short_name: str
    leading_text: str

    @classmethod
    def from_probe(cls, probe: Optional[dict], limit: int = 100) -> "PageIdentity":
        probe = probe or {}
        _, text, _ = clean_question_text(probe.get("leadingText") or "")
        return cls(short_name=(probe.get("shortName") or "").strip(), leading_text=text[:limit])


def is_same_page(previous: Optional[PageIdentity], current: Optional[PageIdentity]) -> bool:
    """Heuristic loop check: same short name and same opening question text."""
    if previous is None or current is None:
        return False
    if not previous.short_name and not previous.leading_text:
        return False
    return previous == current
