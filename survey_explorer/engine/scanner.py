"""Question discovery for the survey page currently on screen."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from ..config import Settings, settings
from .capture import CaptureManager
from .locators import LocatorStrategy, NotFound, resolve
from .records import ConditionalInfo, FieldRecord, PageRecord
from .selectors import (
    build_container_selector,
    clean_question_text,
    is_meaningful,
    native_input_kind,
    numeric_labels,
    parse_question_number,
    promote_input_kind,
    scoped,
)
from .test_data import TestDataGenerator

DEFAULT_TITLE = "Title not found"

SCROLL_ROOT_JS = """
({ root, edge }) => {
    const el = document.querySelector(root) || document.scrollingElement || document.body;
    const target = edge === "end" ? el.scrollHeight : 0;
    el.scrollTop = target;
    window.scrollTo(0, edge === "end" ? document.body.scrollHeight : 0);
    return el.scrollHeight;
}
"""

TITLES_JS = """
(root) => {
    const scope = document.querySelector(root) || document.body;
    const candidates = Array.from(document.querySelectorAll("p"));
    for (const p of candidates) {
        const parent = p.parentElement;
        if (!parent) continue;
        const heading = parent.querySelector("h3");
        if (heading && (p.textContent || "").trim()) {
            return {
                longTitle: (p.textContent || "").trim(),
                shortName: (heading.textContent || "").trim(),
            };
        }
    }
    const heading = scope.querySelector("h1, h2, h3");
    return { longTitle: "", shortName: heading ? (heading.textContent || "").trim() : "" };
}
"""

FORM_HEIGHT_JS = """
(root) => {
    const el = document.querySelector(root) || document.body;
    return Math.max(el.scrollHeight || 0, el.clientHeight || 0, window.innerHeight || 0);
}
"""

EXTRACT_QUESTIONS_JS = """
({ root, container, slider }) => {
    const rootEl = document.querySelector(root);
    if (!rootEl) return [];

    const cssId = (id) => {
        try { return "#" + CSS.escape(id); } catch (e) { return `[id="${id}"]`; }
    };
    const hidden = (el) => {
        const style = window.getComputedStyle(el);
        if (style.display === "none" || style.visibility === "hidden" || style.opacity === "0") return true;
        const rect = el.getBoundingClientRect();
        return rect.width === 0 || rect.height === 0;
    };
    const textOf = (box) => {
        const parts = [];
        const walker = document.createTreeWalker(box, NodeFilter.SHOW_TEXT, {
            acceptNode: (node) => {
                const parent = node.parentElement;
                if (!parent) return NodeFilter.FILTER_REJECT;
                if (["INPUT", "OPTION", "SELECT", "SCRIPT", "STYLE"].includes(parent.tagName)) {
                    return NodeFilter.FILTER_REJECT;
                }
                const style = window.getComputedStyle(parent);
                if (style.display === "none" || style.visibility === "hidden") return NodeFilter.FILTER_REJECT;
                return NodeFilter.FILTER_ACCEPT;
            },
        });
        let node;
        while ((node = walker.nextNode())) {
            const text = (node.textContent || "").trim();
            if (text) parts.push(text);
        }
        return parts.join(" ").replace(/\\s+/g, " ").trim();
    };
    const labelOf = (input) => {
        const next = input.nextElementSibling;
        if (next && (next.textContent || "").trim()) return next.textContent.trim();
        if (input.id) {
            const byFor = rootEl.querySelector(`label[for="${input.id}"]`);
            if (byFor && (byFor.textContent || "").trim()) return byFor.textContent.trim();
        }
        const wrap = input.closest("label");
        if (wrap && (wrap.textContent || "").trim()) return wrap.textContent.trim();
        return input.value || "";
    };
    const controlSelector = (input, box) => {
        const tag = input.tagName.toLowerCase();
        if (input.id) return cssId(input.id);
        if (input.name) return `${tag}[name="${input.name}"]`;
        const same = Array.from(box.querySelectorAll(tag));
        return `${tag}:nth-of-type(${same.indexOf(input) + 1})`;
    };
    const hasValue = (input, box) => {
        if (input.tagName === "SELECT") return input.selectedIndex > 0;
        if (input.type === "radio" || input.type === "checkbox") {
            return Array.from(box.querySelectorAll(`input[type="${input.type}"]`)).some((el) => el.checked);
        }
        return (input.value || "").trim().length > 0;
    };
    const ancestorPath = (box) => {
        const steps = [];
        let node = box;
        while (node && node !== rootEl) {
            const parent = node.parentElement;
            if (!parent) return [];
            const position = Array.from(parent.children).indexOf(node) + 1;
            steps.unshift(`${node.tagName.toLowerCase()}:nth-child(${position})`);
            node = parent;
        }
        return node === rootEl ? steps : [];
    };

    return Array.from(rootEl.querySelectorAll(container)).map((box, index) => {
        const parent = box.parentElement;
        let parentSelector = "";
        let nthOfType = 0;
        if (parent) {
            if (parent === rootEl) parentSelector = root;
            else if (parent.id) parentSelector = cssId(parent.id);
            const sameTag = Array.from(parent.children).filter((el) => el.tagName === box.tagName);
            nthOfType = sameTag.indexOf(box) + 1;
        }
        const dataAttrs = {};
        for (const name of ["data-testid", "data-id", "data-question", "aria-label"]) {
            const value = box.getAttribute(name);
            if (value) dataAttrs[name] = value;
        }
        const sliderEl = box.querySelector(slider);
        const inputs = Array.from(box.querySelectorAll("input, select, textarea")).filter(
            (el) => el.type !== "hidden"
        );
        return {
            index,
            tag: box.tagName.toLowerCase(),
            id: box.id || "",
            dataAttrs,
            parentSelector,
            nthOfType,
            ancestorPath: ancestorPath(box),
            rawText: textOf(box),
            visible: !hidden(box),
            slider: sliderEl ? { id: sliderEl.id || "" } : null,
            buttonLabels: Array.from(box.querySelectorAll("button")).map((b) => (b.textContent || "").trim()),
            controls: inputs.map((input) => ({
                tag: input.tagName,
                type: (input.type || "").toLowerCase(),
                name: input.name || "",
                id: input.id || "",
                label: labelOf(input),
                selector: controlSelector(input, box),
                placeholder: input.getAttribute("placeholder") || "",
                autocomplete: input.getAttribute("autocomplete") || "",
                role: input.getAttribute("role") || "",
                ariaAutocomplete: input.getAttribute("aria-autocomplete") || "",
                className: typeof input.className === "string" ? input.className : "",
                hasValue: hasValue(input, box),
                options: input.tagName === "SELECT"
                    ? Array.from(input.options).map((o) => ({ text: (o.textContent || "").trim(), value: o.value }))
                    : [],
            })),
        };
    });
}
"""


def _choice_controls(controls: list[dict[str, Any]], control_type: str) -> list[dict[str, Any]]:
    group = [c for c in controls if c.get("type") == control_type]
    if not group:
        return []
    key = group[0].get("name") or ""
    return [c for c in group if (c.get("name") or "") == key]


def _dedupe(values: list[str]) -> list[str]:
    return [v for v in dict.fromkeys(v.strip() for v in values) if v]


def build_field_record(raw: dict[str, Any], root: str, config: Optional[Settings] = None) -> Optional[FieldRecord]:
    """Turn one extracted container into a FieldRecord, or None for non-question boxes."""
    config = config or settings
    container_selector = build_container_selector(raw, root, config.question_container_selector)
    controls = [c for c in raw.get("controls") or [] if c.get("type") != "hidden"]
    numeric = numeric_labels(raw.get("buttonLabels") or [])

    choices: list[str] = []
    primary_control: Optional[dict[str, Any]] = None
    if raw.get("slider") is not None:
        kind = "VAS"
        slider_id = (raw["slider"] or {}).get("id")
        primary = scoped(root, "#" + slider_id) if slider_id else f"{container_selector} {config.slider_track_selector}"
    elif len(numeric) >= 2 and not controls:
        kind = "NRS"
        choices = numeric
        primary = f"{container_selector} button"
    elif not controls:
        return None
    else:
        radios = _choice_controls(controls, "radio")
        checkboxes = _choice_controls(controls, "checkbox")
        if len(radios) > 1:
            kind = "radio"
            primary_control = radios[0]
            choices = _dedupe([c.get("label") or "" for c in radios])
        elif len(checkboxes) > 1:
            kind = "checkbox"
            primary_control = checkboxes[0]
            choices = _dedupe([c.get("label") or "" for c in checkboxes])
        else:
            primary_control = controls[0]
            kind = native_input_kind(primary_control)
            if kind == "dropdown":
                choices = _dedupe([o.get("text") or "" for o in primary_control.get("options") or [] if o.get("value")])
            elif kind in ("radio", "checkbox"):
                choices = _dedupe([primary_control.get("label") or ""])
        primary = primary_control.get("selector") or container_selector
        if not primary.startswith("#"):
            primary = f"{container_selector} {primary}"
        else:
            primary = scoped(root, primary)

    # NRS labels are bare digits; strip them as one run so numbers inside the question survive.
    strip = [" ".join(choices)] if kind == "NRS" else choices
    number, text, required = clean_question_text(raw.get("rawText") or "", strip)
    if not is_meaningful(number, text):
        return None

    kind = promote_input_kind(kind, text, primary_control)

    return FieldRecord(
        question_number=number,
        question_text=text,
        input_kind=kind,
        is_required=required,
        container_selector=container_selector,
        primary_selector=primary,
        choices=choices,
    )


class FormScanner:
    """Reads the current survey step into a PageRecord.

    Each field is classified and given test data; screenshot and generation
    failures are logged and leave the field in place without that attachment.
    """

    def __init__(
        self,
        driver: Any,
        generator: Optional[TestDataGenerator] = None,
        capture: Optional[CaptureManager] = None,
        config: Optional[Settings] = None,
    ) -> None:
        self.driver = driver
        self.generator = generator or TestDataGenerator()
        self.capture = capture
        self.config = config or settings
        self.root = self.config.survey_root_id

    async def resolve_root(self) -> str:
        found = await resolve(
            self.driver,
            [
                LocatorStrategy("root_id", self.config.survey_root_id),
                LocatorStrategy("root_class", self.config.survey_root_class),
            ],
        )
        if isinstance(found, NotFound):
            logging.warning("survey_root_degraded tried=%s using=body", ",".join(found.tried))
            self.root = "body"
        else:
            self.root = found.selector or "body"
        return self.root

    async def materialize(self, root: str) -> None:
        # Lazy renderers only attach later questions once scrolled into view.
        await self.driver.evaluate(SCROLL_ROOT_JS, {"root": root, "edge": "end"})
        await self.driver.sleep(self.config.materialize_wait_ms)
        await self.driver.evaluate(SCROLL_ROOT_JS, {"root": root, "edge": "start"})
        await self.driver.sleep(self.config.action_settle_ms)

    async def read_titles(self, root: str) -> tuple[str, str]:
        titles = await self.driver.evaluate(TITLES_JS, root) or {}
        long_title = (titles.get("longTitle") or "").strip() or DEFAULT_TITLE
        short_name = (titles.get("shortName") or "").strip() or DEFAULT_TITLE
        return long_title, short_name

    async def extract_containers(self, root: Optional[str] = None) -> list[dict[str, Any]]:
        payload = {
            "root": root or self.root,
            "container": self.config.question_container_selector,
            "slider": self.config.slider_track_selector,
        }
        return await self.driver.evaluate(EXTRACT_QUESTIONS_JS, payload) or []

    async def scan_page(self, page_index: int) -> PageRecord:
        root = await self.resolve_root()
        await self.materialize(root)
        long_title, short_name = await self.read_titles(root)

        fields: list[FieldRecord] = []
        seen: set[str] = set()
        for raw in await self.extract_containers(root):
            if not raw.get("visible", True):
                continue
            record = build_field_record(raw, root, self.config)
            if record is None:
                continue
            if record.question_number and record.question_number in seen:
                logging.warning("duplicate_question_number page=%s question=%s", page_index, record.question_number)
                continue
            seen.add(record.question_number)
            fields.append(record)

        height = 0
        try:
            height = int(await self.driver.evaluate(FORM_HEIGHT_JS, root) or 0)
        except Exception as exc:
            logging.debug("form_height_unavailable reason=%s", exc)

        page = PageRecord(
            index=page_index,
            long_title=long_title,
            short_name=short_name,
            fields=fields,
            url=getattr(self.driver, "url", "") or "",
            scanned_at=datetime.now(timezone.utc).isoformat(),
            viewport_height=height,
        )
        for position, record in enumerate(fields):
            await self.enrich(record, page, position)

        logging.info("page_scanned page=%s short_name=%s fields=%s", page_index, short_name, len(fields))
        return page

    async def scan_question(
        self,
        question_number: str,
        page: PageRecord,
        position: int,
        conditional: Optional[ConditionalInfo] = None,
    ) -> Optional[FieldRecord]:
        """Build the record for one visible question, used after an answer reveals it."""
        for raw in await self.extract_containers(self.root):
            if not raw.get("visible", True):
                continue
            if parse_question_number(raw.get("rawText") or "") != question_number:
                continue
            record = build_field_record(raw, self.root, self.config)
            if record is None:
                return None
            record.conditional = conditional
            await self.enrich(record, page, position)
            return record
        logging.warning("revealed_question_not_found page=%s question=%s", page.index, question_number)
        return None

    async def enrich(self, record: FieldRecord, page: PageRecord, position: int) -> None:
        try:
            record.test_data = self.generator.generate(record)
        except Exception as exc:
            logging.warning("test_data_generation_failed question=%s reason=%s", record.key, exc)
            record.test_data = None
        else:
            if record.test_data.detection_method == "fallback":
                numbers = page.question_numbers()
                self.generator.registry.record_unknown_field(
                    record.question_number,
                    record.question_text,
                    record.input_kind,
                    record.choices,
                    record.test_data.detected_type,
                    context={
                        "survey_title": page.short_name,
                        "previous_questions": numbers[max(0, position - 2) : position],
                        "next_questions": numbers[position + 1 : position + 3],
                    },
                )

        if self.capture is None:
            return
        try:
            record.screenshot_path = await self.capture.capture_field(self.driver, record, page.index, position)
        except Exception as exc:
            logging.warning("field_screenshot_failed question=%s reason=%s", record.key, exc)
            record.screenshot_path = ""
