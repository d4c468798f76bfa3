"""In-memory survey that answers the engine's in-page scripts like a browser would."""

import re
from dataclasses import dataclass, field
from typing import Any, List, Optional

from survey_explorer.engine import navigator as nav
from survey_explorer.engine import reset as rst
from survey_explorer.engine import scanner as scn
from survey_explorer.models import RunLog

ROOT = "#survey-body-container"


class FakeDriverError(Exception):
    pass


@dataclass
class FakeQuestion:
    number: str
    text: str
    kind: str = "radio"
    choices: List[str] = field(default_factory=list)
    required: bool = False
    visible: bool = True
    reveals: List[str] = field(default_factory=list)
    reveal_on_validation: bool = False
    has_action_menu: bool = False
    value: Any = None

    @property
    def cid(self) -> str:
        return "q-" + self.number.replace(".", "-")

    def raw_text(self) -> str:
        marker = " *" if self.required else ""
        parts = [f"{self.number}. {self.text}{marker}"]
        if self.kind == "NRS":
            parts.append(" ".join(str(i) for i in range(11)))
        elif self.kind in ("radio", "checkbox"):
            parts.extend(self.choices)
        return " ".join(parts)


@dataclass
class FakePage:
    short_name: str
    long_title: str
    questions: List[FakeQuestion]
    buttons: List[tuple] = field(default_factory=lambda: [("Next", True)])
    sticky: bool = False


class FakeSurveyDriver:
    def __init__(self, pages: List[FakePage], start: int = 0, root_present: bool = True):
        self.pages = pages
        self.current = start
        self.root_present = root_present
        self.modal_open = False
        self.finished = False
        self.menu_open: Optional[FakeQuestion] = None
        self.events: list = []
        self.screenshots: list = []
        self.fail_screenshots = False
        self.fail_types: set = set()
        self.fail_scripts: dict = {}
        self.render_delay_ms = 0
        self.modal_delay_ms = 0
        self._deferred: list = []
        self.slept = 0
        self.url = "https://survey.example.com/s/1"
        self._box_question: Optional[FakeQuestion] = None
        self._scripts = {
            scn.SCROLL_ROOT_JS: lambda arg: 1000,
            scn.TITLES_JS: self._titles,
            scn.FORM_HEIGHT_JS: lambda arg: 1024,
            scn.EXTRACT_QUESTIONS_JS: self._extract,
            nav.NAV_BUTTONS_JS: self._nav_buttons,
            nav.CLICK_BUTTON_BY_LABEL_JS: self._click_by_label,
            nav.VISIBLE_QUESTIONS_JS: self._visible_texts,
            nav.PAGE_PROBE_JS: self._probe,
            nav.MODAL_PROBE_JS: self._modal_probe,
            nav.MODAL_DISMISS_JS: self._modal_dismiss,
            nav.BLUR_JS: lambda arg: True,
            nav.CHOICE_CLICK_JS: self._choice_click,
            nav.NRS_CLICK_JS: self._nrs_click,
            nav.OPTION_CLICK_JS: lambda arg: False,
            nav.CALENDAR_DAY_JS: lambda arg: False,
            rst.CONTAINER_COUNT_JS: lambda arg: len(self.page.questions),
            rst.OPEN_ACTION_MENU_JS: self._open_menu,
            rst.DISMISS_MENU_JS: self._dismiss_menu,
        }

    @property
    def page(self) -> FakePage:
        return self.pages[self.current]

    # driver surface

    async def evaluate(self, script, arg=None):
        if self.fail_scripts.get(script):
            self.fail_scripts[script] -= 1
            raise FakeDriverError("Execution context was destroyed")
        handler = self._scripts.get(script)
        if handler is None:
            raise FakeDriverError("unknown script")
        return handler(arg)

    async def query_selector(self, selector):
        if selector == ROOT and self.root_present:
            return object()
        return None

    async def query_selector_all(self, selector):
        return []

    async def click(self, selector):
        self.events.append(("click", selector))
        for label, enabled in self.page.buttons:
            if selector == "#" + self._button_id(label):
                if not enabled:
                    raise FakeDriverError("button disabled")
                self._press(label)
                return
        if "BaseButton" in selector and self.menu_open is not None:
            self.menu_open.value = None
            self.menu_open = None
            return
        nth = re.search(r'input\[type="(\w+)"\] >> nth=(\d+)', selector)
        question = self._question_for(selector)
        if question is not None and nth:
            self._answer(question, int(nth.group(2)))
            return
        raise FakeDriverError(f"no element for {selector}")

    async def type(self, selector, text):
        self.events.append(("type", selector, text))
        question = self._question_for(selector)
        if question is None or question.number in self.fail_types:
            raise FakeDriverError(f"cannot type into {selector}")
        self._answer(question, text)

    async def select(self, selector, label):
        self.events.append(("select", selector, label))
        question = self._question_for(selector)
        if question is None or label not in question.choices:
            raise FakeDriverError(f"cannot select {label}")
        self._answer(question, question.choices.index(label))

    async def press(self, key):
        self.events.append(("press", key))
        if key == "Escape":
            self.modal_open = False

    async def mouse_click(self, x, y):
        self.events.append(("mouse_click", x, y))
        if self._box_question is not None:
            self._answer(self._box_question, round(x / 200 * 100))

    async def bounding_box(self, selector):
        question = self._question_for(selector)
        if question is None or question.kind != "VAS":
            return None
        self._box_question = question
        return {"x": 0.0, "y": 0.0, "width": 200.0, "height": 20.0}

    async def screenshot(self, path, selector=None):
        if self.fail_screenshots:
            raise FakeDriverError("screenshot failed")
        self.screenshots.append((path, selector))

    async def sleep(self, ms):
        self.slept += ms
        due = []
        for entry in self._deferred:
            entry[0] -= ms
            if entry[0] <= 0:
                due.append(entry)
        for entry in due:
            self._deferred.remove(entry)
            entry[1]()

    def _later(self, delay_ms, action) -> None:
        if delay_ms:
            self._deferred.append([delay_ms, action])
        else:
            action()

    # survey behaviour

    @staticmethod
    def _button_id(label: str) -> str:
        return "btn-" + label.lower().replace(" ", "-")

    def _question_for(self, selector: str) -> Optional[FakeQuestion]:
        for token in re.findall(r"#([\w-]+)", selector):
            for question in self.page.questions:
                if token == question.cid or token.startswith(question.cid + "-opt-") or token == question.cid + "-input":
                    return question
        return None

    def _answer(self, question: FakeQuestion, value: Any) -> None:
        question.value = value
        self.events.append(("answer", question.number, value))
        for number in question.reveals:
            for other in self.page.questions:
                if other.number == number:
                    other.visible = True

    def _press(self, label: str) -> None:
        lowered = label.lower()
        if "next" in lowered:
            if self.page.sticky:
                return
            missing = [q for q in self.page.questions if q.visible and q.required and q.value is None]
            pending = [q for q in self.page.questions if q.reveal_on_validation and q.value is None]
            if missing or pending:
                self._later(self.modal_delay_ms, lambda: self._complain(pending))
                return
            target = min(self.current + 1, len(self.pages) - 1)
            self._later(self.render_delay_ms, lambda: setattr(self, "current", target))
        elif "back" in lowered or "prev" in lowered:
            self.current = max(self.current - 1, 0)
        elif "finish" in lowered or "submit" in lowered:
            self.finished = True

    def _complain(self, pending: List[FakeQuestion]) -> None:
        self.modal_open = True
        for question in pending:
            question.visible = True

    # script handlers

    def _titles(self, _root):
        return {"longTitle": self.page.long_title, "shortName": self.page.short_name}

    def _controls(self, question: FakeQuestion) -> list:
        answered = question.value is not None
        if question.kind in ("radio", "checkbox"):
            return [
                {
                    "tag": "INPUT",
                    "type": question.kind,
                    "name": question.cid,
                    "id": f"{question.cid}-opt-{i}",
                    "label": choice,
                    "selector": f"#{question.cid}-opt-{i}",
                    "hasValue": answered,
                }
                for i, choice in enumerate(question.choices)
            ]
        if question.kind in ("VAS", "NRS"):
            return []
        control = {
            "tag": "INPUT",
            "type": question.kind,
            "name": question.cid,
            "id": f"{question.cid}-input",
            "label": "",
            "selector": f"#{question.cid}-input",
            "hasValue": answered,
        }
        if question.kind == "textarea":
            control.update(tag="TEXTAREA", type="textarea")
        if question.kind == "dropdown":
            control.update(
                tag="SELECT",
                type="select-one",
                options=[{"text": "Select...", "value": ""}]
                + [{"text": c, "value": str(i)} for i, c in enumerate(question.choices)],
            )
        return [control]

    def _extract(self, arg):
        raws = []
        for index, question in enumerate(self.page.questions):
            raws.append(
                {
                    "index": index,
                    "tag": "div",
                    "id": question.cid,
                    "dataAttrs": {},
                    "parentSelector": arg["root"],
                    "nthOfType": index + 1,
                    "ancestorPath": [f"div:nth-child({index + 1})"],
                    "rawText": question.raw_text(),
                    "visible": question.visible,
                    "slider": {"id": ""} if question.kind == "VAS" else None,
                    "buttonLabels": [str(i) for i in range(11)] if question.kind == "NRS" else [],
                    "controls": self._controls(question),
                }
            )
        return raws

    def _nav_buttons(self, _root):
        return [
            {"index": i, "text": label, "disabled": not enabled, "id": self._button_id(label), "testId": ""}
            for i, (label, enabled) in enumerate(self.page.buttons)
        ]

    def _click_by_label(self, label):
        for text, enabled in self.page.buttons:
            if text == label and enabled:
                self._press(text)
                return True
        return False

    def _visible_texts(self, _arg):
        return [q.raw_text() for q in self.page.questions if q.visible]

    def _probe(self, _arg):
        visible = [q for q in self.page.questions if q.visible]
        return {
            "questionCount": len(visible),
            "shortName": self.page.short_name,
            "leadingText": visible[0].raw_text() if visible else "",
        }

    def _modal_probe(self, _arg):
        if self.modal_open:
            return {"open": True, "kind": "dialog", "text": "Please answer all required questions"}
        return {"open": False, "kind": "", "text": ""}

    def _modal_dismiss(self, _labels):
        if not self.modal_open:
            return False
        self.modal_open = False
        return True

    def _choice_click(self, arg):
        question = self._question_for(arg["container"])
        if question is None or question.kind != arg["inputType"] or arg["index"] >= len(question.choices):
            return False
        self._answer(question, arg["index"])
        return True

    def _nrs_click(self, arg):
        question = self._question_for(arg["container"])
        if question is None or question.kind != "NRS" or not 0 <= arg["index"] <= 10:
            return None
        self._answer(question, arg["index"])
        return str(arg["index"])

    def _open_menu(self, arg):
        question = self.page.questions[arg["index"]]
        if not question.has_action_menu:
            return {"opened": False, "slider": question.kind == "VAS"}
        self.menu_open = question
        return {"opened": True, "slider": question.kind == "VAS"}

    def _dismiss_menu(self, _arg):
        self.menu_open = None
        return True


class DummySession:
    def __init__(self):
        self.logs: List[RunLog] = []

    def add(self, obj):
        if isinstance(obj, RunLog):
            self.logs.append(obj)
        return None

    def commit(self):
        return None

    def refresh(self, obj, *_args, **_kwargs):
        return obj

    def close(self):
        return None
