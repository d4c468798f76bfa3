from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any, Literal, Optional

InputKind = Literal[
    "text",
    "textarea",
    "email",
    "number",
    "tel",
    "url",
    "date",
    "radio",
    "checkbox",
    "dropdown",
    "autocomplete_dropdown",
    "VAS",
    "NRS",
]
NavKind = Literal["next", "previous", "finish"]
TestCategory = Literal["valid", "boundary", "edge", "invalid"]
ReviewStatus = Literal["draft", "pending_review", "approved", "rejected"]
ProvenanceSource = Literal["generated", "human", "hybrid"]

CHOICE_KINDS = ("radio", "checkbox", "dropdown")
TEXT_KINDS = ("text", "textarea", "email", "number", "tel", "url")


@dataclass
class ConditionalInfo:
    parent_question: str
    parent_value: Any
    discovered_at: str


@dataclass
class GeneratorInfo:
    algorithm: str
    version: str = "1.0"
    template: Optional[str] = None
    confidence: Optional[float] = None


@dataclass
class Provenance:
    source: ProvenanceSource = "generated"
    generator: Optional[GeneratorInfo] = None


@dataclass(frozen=True)
class TestCase:
    """Concrete value to enter for a field, together with where it came from.

    Values never change once generated; review only moves ``status``.
    """

    __test__ = False

    id: str
    category: TestCategory
    value: Any
    description: str
    provenance: Provenance = field(default_factory=Provenance)
    status: ReviewStatus = "draft"
    quality_score: float = 0.0

    def with_status(self, status: ReviewStatus) -> "TestCase":
        return replace(self, status=status)


@dataclass
class TestDataSummary:
    __test__ = False

    total_test_cases: int = 0
    generated_count: int = 0
    human_count: int = 0
    hybrid_count: int = 0
    approved_count: int = 0
    pending_review_count: int = 0


@dataclass
class TestDataSet:
    __test__ = False

    test_cases: list[TestCase]
    summary: TestDataSummary
    detected_type: str = "general_text"
    confidence: float = 0.0
    detection_method: str = "fallback"
    template_used: Optional[str] = None
    matched_signals: list[str] = field(default_factory=list)
    generated_at: str = field(default="", compare=False)

    def fill_value(self) -> Any:
        """First valid case value, else the first case value, else None."""
        for case in self.test_cases:
            if case.category == "valid":
                return case.value
        if self.test_cases:
            return self.test_cases[0].value
        return None


@dataclass
class FieldRecord:
    question_number: str
    question_text: str
    input_kind: str
    is_required: bool
    container_selector: str
    primary_selector: str
    choices: list[str] = field(default_factory=list)
    test_data: Optional[TestDataSet] = None
    conditional: Optional[ConditionalInfo] = None
    screenshot_path: str = ""

    @property
    def key(self) -> str:
        return self.question_number or self.container_selector

    @property
    def is_conditional(self) -> bool:
        return self.conditional is not None


@dataclass
class NavButton:
    kind: NavKind
    label: str
    selector: str
    enabled: bool = True


@dataclass
class PageRecord:
    index: int
    long_title: str
    short_name: str
    fields: list[FieldRecord] = field(default_factory=list)
    navigation_buttons: list[NavButton] = field(default_factory=list)
    url: str = ""
    scanned_at: str = ""
    viewport_height: int = 0
    validation_retries: int = 0
    sealed: bool = False

    def has_button(self, kind: NavKind, enabled_only: bool = False) -> bool:
        return any(
            button.kind == kind and (button.enabled or not enabled_only)
            for button in self.navigation_buttons
        )

    def question_numbers(self) -> list[str]:
        return [f.question_number for f in self.fields if f.question_number]

    def insert_after(self, position: int, new_fields: list[FieldRecord]) -> list[FieldRecord]:
        """Splice ``new_fields`` right after ``position``, skipping known numbers."""
        if self.sealed:
            raise RuntimeError(f"page {self.index} is sealed; cannot add fields")
        known = set(self.question_numbers())
        accepted: list[FieldRecord] = []
        for record in new_fields:
            if record.question_number and record.question_number in known:
                continue
            known.add(record.question_number)
            accepted.append(record)
        self.fields[position + 1 : position + 1] = accepted
        return accepted

    def seal(self) -> None:
        self.sealed = True

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("sealed", None)
        return data


@dataclass
class ClassificationResult:
    field_type: str
    confidence: float
    method: str
    template: Optional[str] = None
    pattern_id: Optional[str] = None
    matched_signals: list[str] = field(default_factory=list)
