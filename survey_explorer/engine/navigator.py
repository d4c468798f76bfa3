from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from ..config import Settings, settings
from .locators import Located, LocatorStrategy, NotFound, resolve
from .records import CHOICE_KINDS, ConditionalInfo, FieldRecord, NavButton, NavKind, PageRecord
from .retry import RetryResult, retry
from .scanner import FormScanner, build_field_record
from .selectors import classify_nav_label, css_attr, css_ident
from .state_diff import PageIdentity, QuestionSnapshot, diff_questions, is_same_page

NAV_BUTTONS_JS = """
(root) => {
    const rootEl = document.querySelector(root);
    const sibling = rootEl ? rootEl.nextElementSibling : null;
    let buttons = sibling ? Array.from(sibling.querySelectorAll("button")) : [];
    if (!buttons.length) {
        buttons = Array.from(document.querySelectorAll("button")).filter((b) => !rootEl || !rootEl.contains(b));
    }
    return buttons.map((b, index) => ({
        index,
        text: (b.textContent || "").trim() || b.getAttribute("aria-label") || "",
        disabled: Boolean(b.disabled) || b.getAttribute("aria-disabled") === "true",
        id: b.id || "",
        testId: b.getAttribute("data-testid") || "",
    }));
}
"""

CLICK_BUTTON_BY_LABEL_JS = """
(label) => {
    const wanted = (label || "").trim().toLowerCase();
    const buttons = Array.from(document.querySelectorAll("button"));
    const target = buttons.find((b) => !b.disabled && (b.textContent || "").trim().toLowerCase() === wanted)
        || buttons.find((b) => !b.disabled && (b.textContent || "").trim().toLowerCase().includes(wanted));
    if (!target) return false;
    target.click();
    return true;
}
"""

VISIBLE_QUESTIONS_JS = """
({ root, container }) => {
    const rootEl = document.querySelector(root) || document.body;
    return Array.from(rootEl.querySelectorAll(container))
        .filter((box) => {
            const style = window.getComputedStyle(box);
            const rect = box.getBoundingClientRect();
            return style.display !== "none" && style.visibility !== "hidden" && style.opacity !== "0"
                && rect.width > 0 && rect.height > 0;
        })
        .map((box) => (box.innerText || "").trim().slice(0, 200));
}
"""

PAGE_PROBE_JS = """
({ root, container }) => {
    const rootEl = document.querySelector(root) || document.body;
    const boxes = Array.from(rootEl.querySelectorAll(container)).filter((box) => {
        const style = window.getComputedStyle(box);
        return style.display !== "none" && style.visibility !== "hidden";
    });
    let shortName = "";
    for (const p of Array.from(document.querySelectorAll("p"))) {
        const heading = p.parentElement ? p.parentElement.querySelector("h3") : null;
        if (heading && (p.textContent || "").trim()) {
            shortName = (heading.textContent || "").trim();
            break;
        }
    }
    return {
        questionCount: boxes.length,
        shortName,
        leadingText: boxes.length ? (boxes[0].innerText || "").trim().slice(0, 400) : "",
    };
}
"""

MODAL_PROBE_JS = """
() => {
    const shown = (el) => {
        const style = window.getComputedStyle(el);
        const rect = el.getBoundingClientRect();
        return style.display !== "none" && style.visibility !== "hidden" && style.opacity !== "0"
            && rect.width > 0 && rect.height > 0;
    };
    const dialogs = [
        '[role="dialog"]', '[role="alertdialog"]', ".modal",
        '[class*="modal"]', '[class*="Modal"]', '[class*="popup"]', '[class*="Popup"]',
        '[class*="alert"]', '[class*="Dialog"]',
    ];
    for (const selector of dialogs) {
        for (const el of document.querySelectorAll(selector)) {
            if (shown(el)) return { open: true, kind: "dialog", text: (el.innerText || "").trim().slice(0, 200) };
        }
    }
    const inline = ['[class*="error-message"]', '[class*="errorMessage"]', '[class*="ErrorMessage"]', '[role="alert"]'];
    for (const selector of inline) {
        for (const el of document.querySelectorAll(selector)) {
            if (shown(el) && (el.innerText || "").trim()) {
                return { open: true, kind: "inline", text: el.innerText.trim().slice(0, 200) };
            }
        }
    }
    return { open: false, kind: "", text: "" };
}
"""

MODAL_DISMISS_JS = """
(labels) => {
    const wanted = labels.map((l) => l.toLowerCase());
    const buttons = Array.from(document.querySelectorAll("button, [role='button']"));
    for (const b of buttons) {
        const text = (b.textContent || "").trim().toLowerCase();
        const style = window.getComputedStyle(b);
        if (wanted.includes(text) && style.display !== "none" && style.visibility !== "hidden") {
            b.click();
            return true;
        }
    }
    return false;
}
"""

BLUR_JS = """
() => {
    const el = document.activeElement;
    if (el && el !== document.body && typeof el.blur === "function") el.blur();
    return true;
}
"""

CHOICE_CLICK_JS = """
({ container, inputType, index }) => {
    let box = null;
    try { box = document.querySelector(container); } catch (e) { return false; }
    if (!box) return false;
    const inputs = Array.from(box.querySelectorAll(`input[type="${inputType}"]`));
    const target = inputs[index];
    if (!target) return false;
    target.click();
    return true;
}
"""

NRS_CLICK_JS = """
({ container, index }) => {
    let box = null;
    try { box = document.querySelector(container); } catch (e) { return null; }
    if (!box) return null;
    const buttons = Array.from(box.querySelectorAll("button"))
        .filter((b) => /^\\d+$/.test((b.textContent || "").trim()))
        .sort((a, b) => parseInt(a.textContent, 10) - parseInt(b.textContent, 10));
    const target = buttons[index];
    if (!target) return null;
    target.click();
    return (target.textContent || "").trim();
}
"""

OPTION_CLICK_JS = """
(index) => {
    const options = Array.from(document.querySelectorAll('[role="option"]')).filter((el) => {
        const style = window.getComputedStyle(el);
        return style.display !== "none" && style.visibility !== "hidden";
    });
    const target = options[index];
    if (!target) return false;
    target.click();
    return true;
}
"""

CALENDAR_DAY_JS = """
(day) => {
    const scopes = document.querySelectorAll(
        '[class*="calendar"], [class*="Calendar"], [class*="datepicker"], [class*="DatePicker"], [role="grid"]'
    );
    for (const scope of scopes) {
        for (const cell of scope.querySelectorAll("button, td, [role='gridcell'], div")) {
            if ((cell.textContent || "").trim() === String(day) && !cell.getAttribute("aria-disabled")
                && !(cell.className || "").toString().includes("disabled") && cell.children.length === 0) {
                cell.click();
                return true;
            }
        }
    }
    return false;
}
"""

MODAL_CLOSE_LABELS = ["OK", "Close", "Got it", "Understood", "Dismiss"]
MODAL_CLOSE_SELECTORS = [
    '[aria-label="Close"]',
    '[aria-label="close"]',
    ".modal .close",
    '[class*="close"]',
    '[class*="Close"]',
]

VAS_POSITIONS = {"low": 0.1, "middle": 0.5, "high": 0.9}

EMERGENCY_VALUES: dict[str, Any] = {
    "email": "test@example.com",
    "number": "1",
    "tel": "5551234567",
    "url": "https://example.com",
    "date": "2024-01-15",
    "autocomplete_dropdown": "70",
    "VAS": "middle",
}
EMERGENCY_TEXT = "Test response"

# Polls after which a question-less step with navigation is accepted as is.
INFO_PAGE_ATTEMPTS = 5


class FieldFillError(Exception):
    def __init__(self, question: str, kind: str, tried: list[str], errors: dict[str, str]) -> None:
        self.question = question
        self.kind = kind
        self.tried = tried
        self.errors = errors
        detail = "; ".join(f"{k}: {v}" for k, v in errors.items()) or "no strategy succeeded"
        super().__init__(f"could not fill {kind} field {question} via {','.join(tried)} ({detail})")


@dataclass
class FillReport:
    filled: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    conditional: list[str] = field(default_factory=list)
    values: dict[str, Any] = field(default_factory=dict)


def choice_index(value: Any, count: int) -> int:
    """Map a test value onto a position among ``count`` options."""
    if count <= 0:
        return 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "middle":
            return count // 2
        if lowered == "high":
            return count - 1
        try:
            value = int(lowered)
        except ValueError:
            return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    index = int(value)
    if index < 0:
        index += count
    return min(max(index, 0), count - 1)


def slider_fraction(value: Any) -> float:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in VAS_POSITIONS:
            return VAS_POSITIONS[lowered]
        try:
            value = float(lowered)
        except ValueError:
            return 0.5
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return min(max(float(value) / 100.0, 0.0), 1.0)
    return 0.5


def nav_button_selector(raw: dict[str, Any]) -> str:
    if raw.get("id"):
        return "#" + css_ident(raw["id"])
    if raw.get("testId"):
        return "button" + css_attr("data-testid", raw["testId"])
    label = (raw.get("text") or "").replace('"', '\\"')
    return f'button:has-text("{label}")'


class FormNavigator:
    """Fills a page, finds conditional questions and moves between survey steps."""

    def __init__(self, driver: Any, scanner: FormScanner, config: Optional[Settings] = None) -> None:
        self.driver = driver
        self.scanner = scanner
        self.config = config or settings

    @property
    def root(self) -> str:
        return self.scanner.root

    async def detect_navigation_buttons(self) -> list[NavButton]:
        raw_buttons = await self.driver.evaluate(NAV_BUTTONS_JS, self.root) or []
        buttons: list[NavButton] = []
        for raw in raw_buttons:
            label = (raw.get("text") or "").strip()
            kind = classify_nav_label(label)
            if kind is None:
                continue
            buttons.append(
                NavButton(
                    kind=kind,
                    label=label,
                    selector=nav_button_selector(raw),
                    enabled=not raw.get("disabled", False),
                )
            )
        return buttons

    async def is_first_form(self) -> bool:
        buttons = await self.detect_navigation_buttons()
        has_next = any(b.kind == "next" for b in buttons)
        has_previous = any(b.kind == "previous" for b in buttons)
        return has_next and not has_previous

    async def has_previous(self) -> bool:
        return any(b.kind == "previous" for b in await self.detect_navigation_buttons())

    async def snapshot_questions(self) -> Optional[QuestionSnapshot]:
        try:
            texts = await self.driver.evaluate(
                VISIBLE_QUESTIONS_JS,
                {"root": self.root, "container": self.config.question_container_selector},
            )
        except Exception as exc:
            logging.debug("question_snapshot_failed reason=%s", exc)
            return None
        return QuestionSnapshot.from_texts(texts or [])

    async def probe_page(self) -> Optional[dict[str, Any]]:
        return await self.driver.evaluate(
            PAGE_PROBE_JS,
            {"root": self.root, "container": self.config.question_container_selector},
        )

    async def read_identity(self) -> PageIdentity:
        try:
            probe = await self.probe_page()
        except Exception as exc:
            logging.debug("page_probe_failed reason=%s", exc)
            probe = None
        return PageIdentity.from_probe(probe, self.config.identity_text_limit)

    @staticmethod
    def should_fill(record: FieldRecord) -> bool:
        return record.is_required or record.input_kind == "VAS" or record.is_conditional

    async def fill_required_fields(self, page: PageRecord) -> FillReport:
        """Fill every field that needs a value, splicing in questions each answer reveals.

        The page's field list grows while it is walked, so a revealed question is
        visited right after the answer that revealed it and may reveal more.
        """
        report = FillReport()
        position = 0
        while position < len(page.fields):
            record = page.fields[position]
            if not self.should_fill(record) or record.key in report.values:
                position += 1
                continue

            before = await self.snapshot_questions()
            try:
                value = await self.fill_field(record)
            except Exception as exc:
                logging.warning("field_fill_failed question=%s kind=%s reason=%s", record.key, record.input_kind, exc)
                report.failed.append(record.key)
                position += 1
                continue

            report.filled.append(record.key)
            report.values[record.key] = value
            await self.driver.sleep(self.config.field_settle_ms)

            after = await self.snapshot_questions()
            if before is not None and after is not None:
                revealed = diff_questions(before, after).revealed
                if revealed:
                    added = await self._discover(page, position, record, value, revealed)
                    report.conditional.extend(r.key for r in added)
            position += 1
        return report

    async def _discover(
        self,
        page: PageRecord,
        position: int,
        trigger: FieldRecord,
        value: Any,
        revealed: list[str],
    ) -> list[FieldRecord]:
        known = set(page.question_numbers())
        discovered: list[FieldRecord] = []
        for number in revealed:
            if number in known:
                continue
            info = ConditionalInfo(
                parent_question=trigger.question_number,
                parent_value=value,
                discovered_at=datetime.now(timezone.utc).isoformat(),
            )
            record = await self.scanner.scan_question(number, page, position + 1 + len(discovered), info)
            if record is not None:
                discovered.append(record)
        added = page.insert_after(position, discovered)
        for record in added:
            logging.info(
                "conditional_field_discovered page=%s question=%s parent=%s value=%s",
                page.index,
                record.question_number,
                trigger.question_number,
                value,
            )
        return added

    def value_for(self, record: FieldRecord) -> Any:
        if record.test_data is not None:
            value = record.test_data.fill_value()
            if value is not None:
                return value
        if record.input_kind in CHOICE_KINDS or record.input_kind == "NRS":
            return 0
        return EMERGENCY_VALUES.get(record.input_kind, EMERGENCY_TEXT)

    async def fill_field(self, record: FieldRecord, value: Any = None) -> Any:
        """Enter one value into a field. Raises FieldFillError when every strategy fails."""
        if value is None:
            value = self.value_for(record)
        kind = record.input_kind

        if kind in ("radio", "checkbox"):
            strategies = self._choice_strategies(record, choice_index(value, max(len(record.choices), 1)))
        elif kind == "dropdown":
            strategies = self._dropdown_strategies(record, value)
        elif kind == "VAS":
            strategies = self._slider_strategies(record, value)
        elif kind == "NRS":
            strategies = self._scale_strategies(record, value)
        elif kind == "date":
            strategies = self._date_strategies(record, str(value))
        elif kind == "autocomplete_dropdown":
            strategies = self._autocomplete_strategies(record, str(value))
        else:
            strategies = self._text_strategies(record, str(value))

        found = await resolve(self.driver, strategies)
        if isinstance(found, NotFound):
            raise FieldFillError(record.key, kind, found.tried, found.errors)

        try:
            await self.driver.evaluate(BLUR_JS)
        except Exception as exc:
            logging.debug("blur_failed question=%s reason=%s", record.key, exc)
        logging.debug("field_filled question=%s kind=%s strategy=%s", record.key, kind, found.strategy)
        return value

    def _text_strategies(self, record: FieldRecord, text: str) -> list[LocatorStrategy]:
        async def type_into(selector: str) -> bool:
            await self.driver.type(selector, text)
            return True

        inner = f"{record.container_selector} input, {record.container_selector} textarea"
        return [
            LocatorStrategy("primary_selector", record.primary_selector, locate=lambda d: type_into(record.primary_selector)),
            LocatorStrategy("container_input", inner, locate=lambda d: type_into(inner)),
        ]

    def _choice_strategies(self, record: FieldRecord, index: int) -> list[LocatorStrategy]:
        input_type = record.input_kind

        async def click_in_container(driver: Any) -> bool:
            return bool(
                await driver.evaluate(
                    CHOICE_CLICK_JS,
                    {"container": record.container_selector, "inputType": input_type, "index": index},
                )
            )

        async def click_nth(driver: Any) -> bool:
            await driver.click(f'{record.container_selector} input[type="{input_type}"] >> nth={index}')
            return True

        return [
            LocatorStrategy("container_choice", record.container_selector, locate=click_in_container),
            LocatorStrategy("nth_control", record.primary_selector, locate=click_nth),
        ]

    def _dropdown_strategies(self, record: FieldRecord, value: Any) -> list[LocatorStrategy]:
        index = choice_index(value, len(record.choices))
        label = record.choices[index] if record.choices else str(value)

        async def native_select(driver: Any) -> bool:
            await driver.select(record.primary_selector, label)
            return True

        async def custom_list(driver: Any) -> bool:
            await driver.click(record.primary_selector)
            await driver.sleep(self.config.action_settle_ms)
            return bool(await driver.evaluate(OPTION_CLICK_JS, index))

        async def type_label(driver: Any) -> bool:
            await driver.type(record.primary_selector, label)
            return True

        return [
            LocatorStrategy("native_select", record.primary_selector, locate=native_select),
            LocatorStrategy("custom_option_list", record.primary_selector, locate=custom_list),
            LocatorStrategy("typed_label", record.primary_selector, locate=type_label),
        ]

    def _slider_strategies(self, record: FieldRecord, value: Any) -> list[LocatorStrategy]:
        fraction = slider_fraction(value)

        async def click_track(selector: str) -> bool:
            box = await self.driver.bounding_box(selector)
            if not box:
                return False
            await self.driver.mouse_click(box["x"] + box["width"] * fraction, box["y"] + box["height"] / 2)
            return True

        track = f"{record.container_selector} {self.config.slider_track_selector}"
        return [
            LocatorStrategy("slider_selector", record.primary_selector, locate=lambda d: click_track(record.primary_selector)),
            LocatorStrategy("container_track", track, locate=lambda d: click_track(track)),
        ]

    def _scale_strategies(self, record: FieldRecord, value: Any) -> list[LocatorStrategy]:
        index = choice_index(value, len(record.choices))

        async def click_numeric(driver: Any) -> bool:
            clicked = await driver.evaluate(NRS_CLICK_JS, {"container": record.container_selector, "index": index})
            return clicked is not None

        async def click_label(driver: Any) -> bool:
            if not record.choices:
                return False
            await driver.click(f'{record.container_selector} button:text-is("{record.choices[index]}")')
            return True

        return [
            LocatorStrategy("numeric_buttons", record.container_selector, locate=click_numeric),
            LocatorStrategy("button_label", record.primary_selector, locate=click_label),
        ]

    def _date_strategies(self, record: FieldRecord, text: str) -> list[LocatorStrategy]:
        async def type_date(driver: Any) -> bool:
            await driver.type(record.primary_selector, text)
            return True

        async def pick_day(driver: Any) -> bool:
            await driver.click(record.primary_selector)
            await driver.sleep(self.config.action_settle_ms)
            day = _day_of(text)
            return day is not None and bool(await driver.evaluate(CALENDAR_DAY_JS, day))

        return [
            LocatorStrategy("typed_date", record.primary_selector, locate=type_date),
            LocatorStrategy("calendar_day", record.primary_selector, locate=pick_day),
        ]

    def _autocomplete_strategies(self, record: FieldRecord, text: str) -> list[LocatorStrategy]:
        async def type_and_pick(driver: Any) -> bool:
            await driver.type(record.primary_selector, text)
            await driver.sleep(self.config.action_settle_ms)
            if not await driver.evaluate(OPTION_CLICK_JS, 0):
                await driver.press("Enter")
            return True

        return [LocatorStrategy("typed_suggestion", record.primary_selector, locate=type_and_pick)]

    async def fill_missing_required(self) -> list[str]:
        """Live sweep: give every visible, required, still-empty question an emergency value."""
        filled: list[str] = []
        for raw in await self.scanner.extract_containers(self.root):
            if not raw.get("visible", True):
                continue
            record = build_field_record(raw, self.root, self.config)
            if record is None or not record.is_required or record.input_kind in ("VAS", "NRS"):
                continue
            if any(c.get("hasValue") for c in raw.get("controls") or []):
                continue
            value = 0 if record.input_kind in CHOICE_KINDS else EMERGENCY_VALUES.get(record.input_kind, EMERGENCY_TEXT)
            try:
                await self.fill_field(record, value)
            except Exception as exc:
                logging.warning("missing_required_fill_failed question=%s reason=%s", record.key, exc)
                continue
            filled.append(record.key)
            await self.driver.sleep(self.config.field_settle_ms)
        if filled:
            logging.info("missing_required_filled questions=%s", ",".join(filled))
        return filled

    async def click_navigation(self, kind: NavKind) -> bool:
        buttons = await self.detect_navigation_buttons()
        button = next((b for b in buttons if b.kind == kind and b.enabled), None)
        if button is None:
            logging.info("nav_button_unavailable kind=%s", kind)
            return False

        await self.driver.sleep(self.config.nav_delay_ms)

        async def direct(driver: Any) -> bool:
            await driver.click(button.selector)
            return True

        async def by_label(driver: Any) -> bool:
            return bool(await driver.evaluate(CLICK_BUTTON_BY_LABEL_JS, button.label))

        found = await resolve(
            self.driver,
            [
                LocatorStrategy("direct_selector", button.selector, locate=direct),
                LocatorStrategy("label_match", None, locate=by_label),
            ],
        )
        if isinstance(found, Located):
            logging.info("nav_clicked kind=%s label=%s strategy=%s", kind, button.label, found.strategy)
            await self.driver.sleep(self.config.action_settle_ms)
            return True
        logging.warning("nav_click_failed kind=%s label=%s tried=%s", kind, button.label, ",".join(found.tried))
        return False

    async def detect_validation_modal(self) -> bool:
        try:
            probe = await self.driver.evaluate(MODAL_PROBE_JS) or {}
        except Exception as exc:
            logging.debug("validation_probe_failed reason=%s", exc)
            return False
        if probe.get("open"):
            logging.info("validation_detected kind=%s text=%s", probe.get("kind"), probe.get("text"))
            return True
        return False

    async def close_validation_modal(self) -> Optional[str]:
        async def dismiss_button(driver: Any) -> bool:
            return bool(await driver.evaluate(MODAL_DISMISS_JS, MODAL_CLOSE_LABELS))

        async def escape(driver: Any) -> bool:
            await driver.press("Escape")
            return True

        def click_selector(selector: str):
            async def click(driver: Any) -> bool:
                if await driver.query_selector(selector) is None:
                    return False
                await driver.click(selector)
                return True

            return click

        strategies = [LocatorStrategy("dismiss_button", None, locate=dismiss_button)]
        strategies += [LocatorStrategy(f"close:{s}", s, locate=click_selector(s)) for s in MODAL_CLOSE_SELECTORS]
        strategies.append(LocatorStrategy("escape_key", None, locate=escape))

        found = await resolve(self.driver, strategies)
        await self.driver.sleep(self.config.action_settle_ms)
        if isinstance(found, Located):
            logging.info("validation_closed strategy=%s", found.strategy)
            return found.strategy
        return None

    async def wait_for_transition(self, previous: Optional[PageIdentity] = None) -> RetryResult:
        """Poll until the survey shows a different step.

        A step with questions counts once its identity differs from ``previous``.
        A step without questions counts when it offers next or finish and either
        its short name changed or ``INFO_PAGE_ATTEMPTS`` polls have passed.
        """

        async def probe(attempt: int) -> Optional[dict[str, Any]]:
            data = await self.probe_page() or {}
            current = PageIdentity.from_probe(data, self.config.identity_text_limit)
            changed = not is_same_page(previous, current)
            if int(data.get("questionCount") or 0) > 0:
                if changed:
                    return data
                logging.debug("transition_same_page attempt=%s short_name=%s", attempt, current.short_name)
                return None

            buttons = await self.detect_navigation_buttons()
            if any(b.kind in ("next", "finish") for b in buttons):
                renamed = previous is None or bool(current.short_name and current.short_name != previous.short_name)
                if renamed:
                    logging.info("transition_informational_page attempt=%s short_name=%s", attempt, current.short_name)
                    return data
                if attempt >= INFO_PAGE_ATTEMPTS:
                    logging.info("transition_assumed attempt=%s buttons=%s", attempt, len(buttons))
                    return data
            logging.debug("transition_pending attempt=%s", attempt)
            return None

        return await retry(
            probe,
            max_attempts=self.config.transition_attempts,
            interval_ms=self.config.transition_interval_ms,
            sleep=self.driver.sleep,
            wait_first=True,
        )


def _day_of(text: str) -> Optional[int]:
    for fmt in ("%Y-%m-%d", "%m/%d/%Y", "%d/%m/%Y"):
        try:
            return datetime.strptime(text, fmt).day
        except ValueError:
            continue
    return None
