from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from .field_types import FieldTypeRegistry
from .records import (
    ClassificationResult,
    FieldRecord,
    GeneratorInfo,
    Provenance,
    TestCase,
    TestCategory,
    TestDataSet,
    TestDataSummary,
)

GENERATOR_VERSION = "1.0"
CHOICE_ALGORITHM = "choice_position_generator"
TEMPLATE_ALGORITHM = "template_based_generator"
DEFAULT_TEMPLATE = "general_text_v1"


@dataclass
class TemplateConditions:
    input_kinds: Optional[list[str]] = None
    min_choices: Optional[int] = None
    max_choices: Optional[int] = None
    required: Optional[bool] = None

    def accepts(self, record: FieldRecord) -> bool:
        if self.input_kinds is not None and record.input_kind not in self.input_kinds:
            return False
        if record.choices:
            if self.min_choices is not None and len(record.choices) < self.min_choices:
                return False
            if self.max_choices is not None and len(record.choices) > self.max_choices:
                return False
        if self.required is not None and self.required != record.is_required:
            return False
        return True


@dataclass
class TemplateCase:
    category: TestCategory
    value: Any
    description: str
    weight: int = 5
    position: Optional[int] = None
    conditions: Optional[TemplateConditions] = None


@dataclass
class TestDataTemplate:
    __test__ = False

    id: str
    field_type: str
    description: str
    cases: list[TemplateCase] = field(default_factory=list)
    version: str = GENERATOR_VERSION


def builtin_templates() -> list[TestDataTemplate]:
    return [
        TestDataTemplate(
            id="email_validation_v1",
            field_type="email",
            description="Standard email validation test cases",
            cases=[
                TemplateCase("valid", "test@example.com", "Standard email format", 10),
                TemplateCase("valid", "user.name+tag@domain.co.uk", "Complex email with plus sign and subdomain", 8),
                TemplateCase("valid", "firstname.lastname@company.org", "Professional email format", 9),
                TemplateCase("edge", "test+filter@very-long-domain-name.museum", "Email with long domain and unusual TLD", 6),
                TemplateCase("invalid", "not-an-email", "Missing @ and domain", 4),
            ],
        ),
        TestDataTemplate(
            id="phone_validation_v1",
            field_type="phone",
            description="International phone number test cases",
            cases=[
                TemplateCase("valid", "+1-555-123-4567", "US phone number with dashes", 10),
                TemplateCase("valid", "+44 20 7946 0958", "UK phone number", 8),
                TemplateCase("valid", "(555) 123-4567", "US phone with parentheses", 8),
                TemplateCase("edge", "555.123.4567", "Phone with dots", 5),
                TemplateCase("boundary", "+86 138 0013 8000", "Long international mobile number", 6),
            ],
        ),
        TestDataTemplate(
            id="address_validation_v1",
            field_type="address",
            description="Postal address test cases",
            cases=[
                TemplateCase("valid", "221B Baker Street, London NW1 6XE", "Street address with postcode", 10),
                TemplateCase("valid", "1600 Amphitheatre Pkwy, Mountain View, CA 94043", "US address with state and ZIP", 9),
                TemplateCase("edge", "Apt. 4/B, 12 Rue de l'Église, 75001 Paris", "Unit number with accents and slash", 6),
                TemplateCase("boundary", "1 A St", "Very short address", 4),
            ],
        ),
        TestDataTemplate(
            id="name_validation_v1",
            field_type="name",
            description="Personal name test cases",
            cases=[
                TemplateCase("valid", "John Smith", "Common Western name", 10),
                TemplateCase("valid", "María José García-López", "Name with accents and hyphen", 8),
                TemplateCase("edge", "Jean-Luc O'Connor-MacDonald III", "Name with punctuation and suffix", 6),
                TemplateCase("boundary", "A", "Single character name", 4),
            ],
        ),
        TestDataTemplate(
            id="age_validation_v1",
            field_type="age",
            description="Age field test cases",
            cases=[
                TemplateCase("valid", "25", "Typical adult age", 10),
                TemplateCase("boundary", "18", "Legal adult age", 8),
                TemplateCase("boundary", "65", "Retirement age", 7),
                TemplateCase("edge", "100", "Centenarian age", 5),
                TemplateCase("invalid", "-1", "Negative age", 3),
            ],
        ),
        TestDataTemplate(
            id="date_validation_v1",
            field_type="date",
            description="Date field test cases",
            cases=[
                TemplateCase("valid", "2024-01-15", "ISO date format", 10),
                TemplateCase("valid", "01/15/2024", "US date format", 8),
                TemplateCase("valid", "15/01/2024", "European date format", 8),
                TemplateCase("edge", "02/29/2024", "Leap year date", 6),
                TemplateCase("boundary", "12/31/2023", "Year end date", 6),
            ],
        ),
        TestDataTemplate(
            id="weight_validation_v1",
            field_type="weight",
            description="Body weight test cases",
            cases=[
                TemplateCase("valid", "70", "Typical adult weight in kg", 10),
                TemplateCase("valid", "82.5", "Weight with one decimal", 8),
                TemplateCase("boundary", "30", "Low plausible weight", 6),
                TemplateCase("boundary", "250", "High plausible weight", 6),
                TemplateCase("invalid", "0", "Zero weight", 3),
            ],
        ),
        TestDataTemplate(
            id="rating_scale_v1",
            field_type="rating_scale",
            description="Rating scale test cases (position-based)",
            cases=[
                TemplateCase("boundary", "0", "First option (lowest rating)", 9, position=0),
                TemplateCase("valid", "1", "Second option", 7, position=1),
                TemplateCase(
                    "valid",
                    "2",
                    "Middle option",
                    8,
                    position=2,
                    conditions=TemplateConditions(min_choices=3),
                ),
                TemplateCase("boundary", "-1", "Last option (highest rating)", 9, position=-1),
            ],
        ),
        TestDataTemplate(
            id="yes_no_v1",
            field_type="yes_no",
            description="Yes/No question test cases",
            cases=[
                TemplateCase("valid", "0", "First option (typically Yes)", 10, position=0),
                TemplateCase("valid", "1", "Second option (typically No)", 10, position=1),
            ],
        ),
        TestDataTemplate(
            id="general_text_v1",
            field_type="general_text",
            description="General text input test cases",
            cases=[
                TemplateCase("valid", "Sample text response", "Standard text input", 10),
                TemplateCase("valid", "Test input with numbers 123", "Text with numbers", 7),
                TemplateCase("edge", "Spëcial chäracters & symbols!", "Text with special characters", 6),
                TemplateCase("boundary", "A", "Single character", 4),
            ],
        ),
        TestDataTemplate(
            id="long_text_v1",
            field_type="long_text",
            description="Textarea/long text test cases",
            cases=[
                TemplateCase("valid", "This is a sample response for a textarea field.", "Short paragraph", 10),
                TemplateCase(
                    "valid",
                    "This is a longer response that spans multiple sentences. "
                    "It shows how users give detailed feedback to open-ended questions.",
                    "Medium paragraph",
                    8,
                ),
                TemplateCase(
                    "edge",
                    "First paragraph of a structured answer.\n\nSecond paragraph after a line break.",
                    "Multi-paragraph response",
                    6,
                ),
            ],
        ),
        TestDataTemplate(
            id="vas_slider_v1",
            field_type="VAS",
            description="Visual analogue scale slider test cases",
            cases=[
                TemplateCase("boundary", "low", "Low end of the VAS scale", 8),
                TemplateCase("valid", "middle", "Middle of the VAS scale", 10),
                TemplateCase("boundary", "high", "High end of the VAS scale", 8),
                TemplateCase("valid", 25, "25% position on VAS scale", 6),
                TemplateCase("valid", 75, "75% position on VAS scale", 6),
            ],
        ),
        TestDataTemplate(
            id="nrs_scale_v1",
            field_type="NRS",
            description="Numeric rating scale button test cases",
            cases=[
                TemplateCase("boundary", 0, "Lowest score button", 8, position=0),
                TemplateCase("valid", "middle", "Centre score button", 10),
                TemplateCase("boundary", -1, "Highest score button", 8, position=-1),
            ],
        ),
    ]


class TestDataGenerator:
    """Produce reviewable test cases for a field from the classifier's verdict.

    Enumerated radio/dropdown choices get one case per choice position; every
    other semantic type is filled from the template registered for it.
    """

    __test__ = False

    def __init__(
        self,
        registry: Optional[FieldTypeRegistry] = None,
        templates: Optional[list[TestDataTemplate]] = None,
    ) -> None:
        self.registry = registry or FieldTypeRegistry()
        self._templates: dict[str, TestDataTemplate] = {}
        for template in builtin_templates() if templates is None else templates:
            self.register_template(template)

    def register_template(self, template: TestDataTemplate) -> None:
        self._templates[template.id] = template
        logging.debug("test_data_template_registered id=%s", template.id)

    def get_template(self, template_id: str) -> Optional[TestDataTemplate]:
        return self._templates.get(template_id)

    def template_for(self, detection: ClassificationResult) -> TestDataTemplate:
        if detection.template and detection.template in self._templates:
            return self._templates[detection.template]
        for template in self._templates.values():
            if template.field_type == detection.field_type:
                return template
        return self._templates[DEFAULT_TEMPLATE]

    def generate(self, record: FieldRecord) -> TestDataSet:
        detection = self.registry.classify(record.question_text, record.input_kind, record.choices)

        template_used: Optional[str]
        if record.input_kind in ("radio", "dropdown") and record.choices:
            cases = self._choice_cases(record, detection)
            template_used = detection.template or "choice_based_v1"
        else:
            template = self.template_for(detection)
            cases = self._template_cases(record, template)
            template_used = template.id

        return TestDataSet(
            test_cases=cases,
            summary=summarize(cases),
            detected_type=detection.field_type,
            confidence=detection.confidence,
            detection_method=detection.method,
            template_used=template_used,
            matched_signals=list(detection.matched_signals),
            generated_at=datetime.now(timezone.utc).isoformat(),
        )

    def _choice_cases(self, record: FieldRecord, detection: ClassificationResult) -> list[TestCase]:
        qkey = record.question_number.replace(".", "_")
        return [
            TestCase(
                id=f"choice_{qkey}_{index}",
                category="valid",
                value=index,
                description=f'Option {index + 1}: "{choice}"',
                provenance=Provenance(
                    source="generated",
                    generator=GeneratorInfo(
                        algorithm=CHOICE_ALGORITHM,
                        version=GENERATOR_VERSION,
                        template=detection.template or "choice_based_v1",
                        confidence=detection.confidence,
                    ),
                ),
                quality_score=detection.confidence,
            )
            for index, choice in enumerate(record.choices)
        ]

    def _template_cases(self, record: FieldRecord, template: TestDataTemplate) -> list[TestCase]:
        qkey = record.question_number.replace(".", "_")
        cases: list[TestCase] = []
        for index, case in enumerate(template.cases):
            if case.conditions is not None and not case.conditions.accepts(record):
                continue
            cases.append(
                TestCase(
                    id=f"gen_{qkey}_{case.category}_{index}",
                    category=case.category,
                    value=case.value,
                    description=case.description,
                    provenance=Provenance(
                        source="generated",
                        generator=GeneratorInfo(
                            algorithm=TEMPLATE_ALGORITHM,
                            version=template.version,
                            template=template.id,
                            confidence=case.weight * 10,
                        ),
                    ),
                    quality_score=case.weight * 10,
                )
            )
        return cases

    def template_stats(self) -> dict[str, Any]:
        by_type: dict[str, int] = {}
        for template in self._templates.values():
            by_type[template.field_type] = by_type.get(template.field_type, 0) + 1
        return {
            "total_templates": len(self._templates),
            "total_cases": sum(len(t.cases) for t in self._templates.values()),
            "by_field_type": by_type,
        }


def summarize(cases: list[TestCase]) -> TestDataSummary:
    return TestDataSummary(
        total_test_cases=len(cases),
        generated_count=sum(1 for c in cases if c.provenance.source == "generated"),
        human_count=sum(1 for c in cases if c.provenance.source == "human"),
        hybrid_count=sum(1 for c in cases if c.provenance.source == "hybrid"),
        approved_count=sum(1 for c in cases if c.status == "approved"),
        pending_review_count=sum(1 for c in cases if c.status in ("draft", "pending_review")),
    )
