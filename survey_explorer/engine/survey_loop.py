from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..config import Settings, settings
from ..models import SurveyRun, log_run_event
from .capture import CaptureManager
from .navigator import FormNavigator
from .records import PageRecord
from .reset import FormResetService
from .retry import Exhausted
from .scanner import FormScanner
from .state_diff import PageIdentity, is_same_page


class WalkState(str, Enum):
    ANALYZING_PAGE = "analyzing_page"
    FILLING_REQUIRED = "filling_required"
    DISCOVERING_CONDITIONAL = "discovering_conditional"
    PRE_NAV_CAPTURE = "pre_nav_capture"
    NAVIGATING = "navigating"
    VALIDATION_CHECK = "validation_check"
    TRANSITIONING = "transitioning"
    NEXT_PAGE = "next_page"
    STUCK = "stuck"
    COMPLETED = "completed"


@dataclass
class WalkResult:
    pages: list[PageRecord] = field(default_factory=list)
    status: str = "running"
    status_reason: Optional[str] = None
    trace: list[tuple[int, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "status_reason": self.status_reason,
            "pages": [page.to_dict() for page in self.pages],
            "trace": [{"page": index, "state": state} for index, state in self.trace],
        }


def _log(session: Optional[Session], run: Optional[SurveyRun], level: str, message: str) -> None:
    logging.log(logging.WARNING if level == "warning" else logging.INFO, message)
    if session is not None and run is not None:
        log_run_event(session, run, level, message)


async def _capture_page(capture: Optional[CaptureManager], driver: Any, page_index: int, label: str) -> None:
    if capture is None:
        return
    try:
        await capture.capture_page(driver, page_index, label)
    except Exception as exc:
        logging.warning("page_screenshot_failed page=%s label=%s reason=%s", page_index, label, exc)


async def run_survey_walk(
    driver: Any,
    scanner: FormScanner,
    navigator: FormNavigator,
    reset: Optional[FormResetService] = None,
    capture: Optional[CaptureManager] = None,
    config: Optional[Settings] = None,
    session: Optional[Session] = None,
    run: Optional[SurveyRun] = None,
) -> WalkResult:
    """Walk the survey one step at a time until it finishes or cannot move on.

    Pages are returned in visit order; whatever was collected before a stop or
    an unexpected error is kept in the result.
    """
    config = config or settings
    result = WalkResult()
    page_index = 0

    def enter(state: WalkState) -> None:
        result.trace.append((page_index, state.value))

    def stop(status: str, reason: Optional[str], level: str = "info") -> None:
        result.status = status
        result.status_reason = reason
        _log(session, run, level, f"walk_stopped status={status} reason={reason} pages={len(result.pages)}")

    while True:
        if page_index >= config.max_pages:
            stop("max_pages_reached", f"limit={config.max_pages}", "warning")
            break

        page: Optional[PageRecord] = None
        try:
            enter(WalkState.ANALYZING_PAGE)
            if reset is not None and config.clear_values_each_page:
                await reset.clear_all_values()
            await _capture_page(capture, driver, page_index, "on_entry")

            identity = await navigator.read_identity()
            page = await scanner.scan_page(page_index)
            page.navigation_buttons = await navigator.detect_navigation_buttons()
            result.pages.append(page)
            _log(session, run, "info", f"page_analyzed page={page_index} short_name={page.short_name} fields={len(page.fields)}")

            enter(WalkState.FILLING_REQUIRED)
            report = await navigator.fill_required_fields(page)
            if report.conditional:
                enter(WalkState.DISCOVERING_CONDITIONAL)
                _log(session, run, "info", f"conditional_fields page={page_index} questions={','.join(report.conditional)}")
            if report.failed:
                _log(session, run, "warning", f"fill_failures page={page_index} questions={','.join(report.failed)}")

            # Filling can enable or swap navigation buttons.
            page.navigation_buttons = await navigator.detect_navigation_buttons()
            if page.has_button("finish") and not page.has_button("next", enabled_only=True):
                enter(WalkState.COMPLETED)
                page.seal()
                stop("completed", "finish_reached")
                break
            if not page.has_button("next"):
                enter(WalkState.STUCK)
                page.seal()
                stop("no_navigation", "no_next_or_finish_button", "warning")
                break

            enter(WalkState.PRE_NAV_CAPTURE)
            await _capture_page(capture, driver, page_index, "on_exit")

            enter(WalkState.NAVIGATING)
            if not await navigator.click_navigation("next"):
                enter(WalkState.STUCK)
                stop("stuck", "next_click_failed", "warning")
                break

            enter(WalkState.VALIDATION_CHECK)
            if await navigator.detect_validation_modal():
                await navigator.close_validation_modal()
                if not page.fields:
                    # Some steps only render their questions once validation complains.
                    rescanned = await scanner.scan_page(page_index)
                    page.fields = rescanned.fields
                    await navigator.fill_required_fields(page)
                swept = await navigator.fill_missing_required()
                page.validation_retries += 1
                _log(
                    session,
                    run,
                    "info",
                    f"validation_retry page={page_index} filled={','.join(swept) or 'none'}",
                )
                enter(WalkState.NAVIGATING)
                if not await navigator.click_navigation("next"):
                    enter(WalkState.STUCK)
                    stop("stuck", "next_click_failed_after_validation", "warning")
                    break

            enter(WalkState.TRANSITIONING)
            outcome = await navigator.wait_for_transition(identity)
            if isinstance(outcome, Exhausted):
                enter(WalkState.STUCK)
                current = await navigator.read_identity()
                if is_same_page(identity, current):
                    stop("stuck_loop", f"same_page short_name={current.short_name} attempts={outcome.attempts}", "warning")
                else:
                    stop("stuck", f"transition_timeout attempts={outcome.attempts}", "warning")
                break

            current = PageIdentity.from_probe(outcome.value, config.identity_text_limit)
            if is_same_page(identity, current):
                enter(WalkState.STUCK)
                stop("stuck_loop", f"same_page short_name={current.short_name}", "warning")
                break

            page.seal()
            enter(WalkState.NEXT_PAGE)
            page_index += 1
        except Exception as exc:
            logging.warning("walk_page_failed page=%s reason=%r", page_index, exc)
            stop("error", f"page={page_index} {exc!r}", "warning")
            break

    return result
