from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Callable, Optional

from ..config import Settings, settings
from ..models import SessionLocal, init_db, log_run_event
from .browser import BrowserSession, PageDriver
from .capture import CaptureManager
from .field_types import FieldTypeRegistry
from .navigator import FormNavigator
from .reset import FormResetService
from .scanner import FormScanner
from .survey_loop import WalkResult, run_survey_walk
from .test_data import TestDataGenerator

_run_lock: asyncio.Lock | None = None
_run_lock_loop: asyncio.AbstractEventLoop | None = None


def _get_run_lock() -> asyncio.Lock:
    """Serialise survey runs within one event loop.

    A single Playwright browser per process keeps runs independent; the lock is
    rebuilt when a new event loop appears (e.g. each CLI ``asyncio.run``).
    """

    global _run_lock, _run_lock_loop

    loop = asyncio.get_running_loop()
    if _run_lock is None or _run_lock_loop is not loop:
        _run_lock = asyncio.Lock()
        _run_lock_loop = loop

    return _run_lock


def write_result(result: WalkResult, run_id: str, config: Optional[Settings] = None) -> str:
    config = config or settings
    directory = os.path.join(config.output_dir, run_id)
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, "analysis.json")
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(result.to_dict(), handle, indent=2, default=str, ensure_ascii=False)
    return path


async def run_survey_async(
    url: str,
    browser_factory: Callable[[], BrowserSession] = BrowserSession,
    config: Optional[Settings] = None,
) -> WalkResult:
    """Reset the survey at ``url`` to its first step, walk it and record the run.

    The result file and the run row are always written; a run that raised ends
    with status ``error`` and whatever pages were collected.
    """

    config = config or settings
    logging.info("survey_run_requested url=%s", url)
    run_lock = _get_run_lock()

    async with run_lock:
        init_db()
        db = SessionLocal()
        try:
            capture = CaptureManager(db_session=db, screenshot_dir=config.screenshot_dir)
            run = capture.start_run(url)
            registry = FieldTypeRegistry()
            result = WalkResult()

            try:
                async with browser_factory() as browser:
                    await browser.goto(url)
                    driver: PageDriver = browser.driver()

                    scanner = FormScanner(
                        driver,
                        generator=TestDataGenerator(registry),
                        capture=capture,
                        config=config,
                    )
                    await scanner.resolve_root()
                    navigator = FormNavigator(driver, scanner, config=config)
                    reset = FormResetService(driver, navigator, config=config)

                    if not await reset.ensure_at_start():
                        log_run_event(db, run, "warning", "reset_incomplete starting_from_current_step")

                    result = await run_survey_walk(
                        driver,
                        scanner,
                        navigator,
                        reset=reset,
                        capture=capture,
                        config=config,
                        session=db,
                        run=run,
                    )
            except Exception as exc:
                logging.warning("survey_run_failed url=%s reason=%r", url, exc)
                log_run_event(db, run, "error", f"survey_run_failed reason={exc!r}")
                result.status = "error"
                result.status_reason = repr(exc)
            finally:
                if result.status == "running":
                    result.status = "error"
                    result.status_reason = "run_interrupted"

                unknown = registry.export_unknown_fields()
                if unknown:
                    log_run_event(db, run, "info", f"unknown_fields count={len(unknown)}")

                path = write_result(result, run.run_id, config)
                capture.finish_run(run, result.status, result.pages, reason=result.status_reason, result_path=path)
            return result
        finally:
            db.close()


def run_survey_blocking(url: str) -> WalkResult:
    """Synchronous wrapper for CLI usage."""

    return asyncio.run(run_survey_async(url))
