from __future__ import annotations

import logging
from typing import Any, Optional

from ..config import Settings, settings
from .locators import LocatorStrategy, NotFound, resolve
from .navigator import FormNavigator
from .retry import Exhausted

CONTAINER_COUNT_JS = """
({ root, container }) => {
    const rootEl = document.querySelector(root) || document.body;
    return rootEl.querySelectorAll(container).length;
}
"""

OPEN_ACTION_MENU_JS = """
({ root, container, menu, slider, index }) => {
    const rootEl = document.querySelector(root) || document.body;
    const box = rootEl.querySelectorAll(container)[index];
    if (!box) return { opened: false, slider: false };
    const trigger = box.querySelector(menu);
    if (!trigger) return { opened: false, slider: Boolean(box.querySelector(slider)) };
    trigger.click();
    return { opened: true, slider: Boolean(box.querySelector(slider)) };
}
"""

DISMISS_MENU_JS = """
() => {
    document.body.click();
    return true;
}
"""

MENU_SETTLE_MS = 300
SLIDER_MENU_SETTLE_MS = 500


class FormResetService:
    """Brings a survey back to its first step and clears answers left from earlier runs."""

    def __init__(self, driver: Any, navigator: FormNavigator, config: Optional[Settings] = None) -> None:
        self.driver = driver
        self.navigator = navigator
        self.config = config or settings

    async def ensure_at_start(self) -> bool:
        """Walk backwards until no previous button remains. Returns whether the start was reached.

        Any failed step, raised or not, counts as a soft failure; the walk gives up
        after ``reset_max_failures`` of them.
        """
        failures = 0
        for attempt in range(1, self.config.reset_max_attempts + 1):
            try:
                if not await self.navigator.has_previous():
                    logging.info("reset_at_first_form attempts=%s", attempt - 1)
                    return True
                before = await self.navigator.read_identity()
                if not await self.navigator.click_navigation("previous"):
                    reason = "previous_click_failed"
                else:
                    outcome = await self.navigator.wait_for_transition(before)
                    if not isinstance(outcome, Exhausted):
                        continue
                    reason = "transition_timeout"
            except Exception as exc:
                reason = repr(exc)

            failures += 1
            logging.warning("reset_step_failed attempt=%s failures=%s reason=%s", attempt, failures, reason)
            if failures >= self.config.reset_max_failures:
                break

        try:
            at_start = not await self.navigator.has_previous()
        except Exception as exc:
            logging.warning("reset_check_failed reason=%r", exc)
            at_start = False
        if not at_start:
            logging.warning("reset_gave_up attempts=%s failures=%s", self.config.reset_max_attempts, failures)
        return at_start

    async def clear_all_values(self) -> int:
        """Use each question's action menu to clear it; questions without a menu are skipped."""
        root = self.navigator.root
        count = int(
            await self.driver.evaluate(
                CONTAINER_COUNT_JS,
                {"root": root, "container": self.config.question_container_selector},
            )
            or 0
        )
        cleared = 0
        for index in range(count):
            try:
                if await self._clear_one(root, index):
                    cleared += 1
            except Exception as exc:
                logging.debug("clear_value_failed index=%s reason=%s", index, exc)
        if cleared:
            logging.info("values_cleared count=%s", cleared)
        return cleared

    async def _clear_one(self, root: str, index: int) -> bool:
        menu = await self.driver.evaluate(
            OPEN_ACTION_MENU_JS,
            {
                "root": root,
                "container": self.config.question_container_selector,
                "menu": self.config.action_menu_selector,
                "slider": self.config.slider_track_selector,
                "index": index,
            },
        ) or {}
        if not menu.get("opened"):
            return False

        await self.driver.sleep(SLIDER_MENU_SETTLE_MS if menu.get("slider") else MENU_SETTLE_MS)

        clear_selector = f"{self.config.clear_button_selector} >> visible=true"

        async def click_clear(driver: Any) -> bool:
            await driver.click(clear_selector)
            return True

        found = await resolve(self.driver, [LocatorStrategy("clear_button", clear_selector, locate=click_clear)])
        if isinstance(found, NotFound):
            await self.driver.evaluate(DISMISS_MENU_JS)
            return False
        await self.driver.sleep(MENU_SETTLE_MS)
        return True
