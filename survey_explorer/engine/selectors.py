from __future__ import annotations

import re
from typing import Any, Optional

from .records import NavKind

QUESTION_NUMBER_RE = re.compile(r"^\s*(\d+(?:\.\d+)*\.?)\s*")
NUMERIC_LABEL_RE = re.compile(r"^\d+$")

STABLE_CONTAINER_ATTRS = ("data-testid", "data-id", "data-question", "aria-label")

NEXT_LABELS = ("next", "continue", "→", "›")
PREVIOUS_LABELS = ("prev", "back", "←", "‹")
FINISH_LABELS = ("finish", "submit", "done", "complete")

DATE_VOCABULARY = re.compile(
    r"\b(date|dd/mm|mm/dd|yyyy|birthday|date of birth|dob)\b", re.IGNORECASE
)
WEIGHT_VOCABULARY = re.compile(r"\b(weight|weigh|kg|kgs|kilograms?|lbs?|pounds?)\b", re.IGNORECASE)


def parse_question_number(text: str) -> str:
    """Leading hierarchical number with any trailing dot dropped: "2.3. Foo" -> "2.3"."""
    match = QUESTION_NUMBER_RE.match(text or "")
    if not match:
        return ""
    return match.group(1).rstrip(".")


def strip_question_number(text: str) -> str:
    return QUESTION_NUMBER_RE.sub("", text or "", count=1).strip()


def strip_choice_labels(text: str, choices: list[str]) -> str:
    """Remove choice labels from text, longest first, on word boundaries only."""
    cleaned = text or ""
    for choice in sorted({c.strip() for c in choices if c and c.strip()}, key=len, reverse=True):
        pattern = re.compile(r"(?<!\w)" + re.escape(choice) + r"(?!\w)", re.IGNORECASE)
        cleaned = pattern.sub(" ", cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()


def split_required_marker(text: str) -> tuple[str, bool]:
    stripped = (text or "").strip()
    if stripped.endswith("*"):
        return stripped.rstrip("*").strip(), True
    return stripped, False


def clean_question_text(raw_text: str, choices: Optional[list[str]] = None) -> tuple[str, str, bool]:
    """Return (question_number, question_text, is_required) for a container's raw text."""
    number = parse_question_number(raw_text)
    body = strip_question_number(raw_text)
    body = strip_choice_labels(body, choices or [])
    text, required = split_required_marker(body)
    return number, text, required


def is_meaningful(question_number: str, question_text: str) -> bool:
    return bool(question_number) or len(question_text) > 3


def classify_nav_label(label: str) -> Optional[NavKind]:
    lowered = (label or "").strip().lower()
    if not lowered:
        return None
    if any(token in lowered for token in NEXT_LABELS):
        return "next"
    if any(token in lowered for token in PREVIOUS_LABELS):
        return "previous"
    if any(token in lowered for token in FINISH_LABELS):
        return "finish"
    return None


def numeric_labels(labels: list[str]) -> list[str]:
    values = [label.strip() for label in labels if NUMERIC_LABEL_RE.match(label.strip() or "")]
    return sorted(dict.fromkeys(values), key=int)


def css_attr(name: str, value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'[{name}="{escaped}"]'


def scoped(root: str, selector: str) -> str:
    if selector == root or selector.startswith(root + " "):
        return selector
    return f"{root} {selector}"


def build_container_selector(raw: dict[str, Any], root: str, container: str) -> str:
    """Pick the most stable selector for a question container, always scoped to root.

    Preference: element id, stable data/aria attribute, nth-of-type under the
    parent, structural nth-child path, then a content match on the question number.
    """
    if raw.get("id"):
        return scoped(root, "#" + css_ident(raw["id"]))

    attrs = raw.get("dataAttrs") or {}
    for name in STABLE_CONTAINER_ATTRS:
        if attrs.get(name):
            return scoped(root, css_attr(name, attrs[name]))

    nth = raw.get("nthOfType")
    parent = raw.get("parentSelector")
    tag = raw.get("tag") or "div"
    if nth and parent:
        step = f"{tag}{container}:nth-of-type({nth})"
        if parent == root:
            return f"{root} > {step}"
        return f"{scoped(root, parent)} > {step}"

    path = raw.get("ancestorPath") or []
    if path:
        return f"{root} > " + " > ".join(path)

    number = parse_question_number(raw.get("rawText") or "")
    if number:
        return f'{root} {container}:has-text("{number}")'
    return f"{root} :nth-match({container}, {int(raw.get('index', 0)) + 1})"


def css_ident(value: str) -> str:
    """Minimal CSS.escape for ids: escapes anything outside [A-Za-z0-9_-] and a leading digit."""
    out = []
    for i, ch in enumerate(value):
        if ch.isalnum() and ch.isascii() or ch in "-_":
            if i == 0 and ch.isdigit():
                out.append(f"\\3{ch} ")
            else:
                out.append(ch)
        else:
            out.append("\\" + ch)
    return "".join(out)


def native_input_kind(control: dict[str, Any]) -> str:
    tag = (control.get("tag") or "").upper()
    kind = (control.get("type") or "").lower()
    if tag == "SELECT":
        return "dropdown"
    if tag == "TEXTAREA":
        return "textarea"
    if (control.get("role") or "").lower() == "combobox" or (control.get("ariaAutocomplete") or "") in ("list", "both"):
        return "autocomplete_dropdown"
    if kind in ("email", "number", "date", "tel", "url", "radio", "checkbox"):
        return kind
    if kind == "range":
        return "VAS"
    return "text"


def promote_input_kind(kind: str, question_text: str, control: Optional[dict[str, Any]] = None) -> str:
    """Second pass over plain text inputs: date or weight vocabulary upgrades the kind."""
    if kind != "text":
        return kind
    control = control or {}
    metadata = " ".join(
        str(control.get(key) or "") for key in ("placeholder", "name", "id", "className", "autocomplete")
    )
    if DATE_VOCABULARY.search(question_text) or re.search(r"date|dd/mm|mm/dd", metadata, re.IGNORECASE):
        return "date"
    if WEIGHT_VOCABULARY.search(question_text) or WEIGHT_VOCABULARY.search(metadata):
        return "autocomplete_dropdown"
    return kind
