from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models import SurveyRun
from .records import FieldRecord, PageRecord


class CaptureManager:
    def __init__(self, db_session: Optional[Session] = None, screenshot_dir: Optional[str] = None) -> None:
        self.db_session = db_session
        self.screenshot_dir = screenshot_dir or settings.screenshot_dir
        self.prefix = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")

    def start_run(self, url: str) -> SurveyRun:
        run_id = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
        self.prefix = run_id

        run = SurveyRun(
            url=url,
            run_id=run_id,
            status="running",
            started_at=datetime.now(timezone.utc),
        )
        if self.db_session is not None:
            self.db_session.add(run)
            self.db_session.commit()
            self.db_session.refresh(run)
        return run

    def _path(self, name: str) -> str:
        directory = os.path.join(self.screenshot_dir, self.prefix)
        os.makedirs(directory, exist_ok=True)
        return os.path.join(directory, name)

    async def capture_field(self, driver: Any, record: FieldRecord, page_index: int, field_index: int) -> str:
        """Screenshot one question container; raises whatever the driver raises."""
        qkey = (record.question_number or f"field{field_index}").replace(".", "_")
        path = self._path(f"page_{page_index}_q_{qkey}.png")
        await driver.screenshot(path, selector=record.container_selector)
        return path

    async def capture_page(self, driver: Any, page_index: int, label: str) -> str:
        path = self._path(f"page_{page_index}_{label}.png")
        await driver.screenshot(path)
        return path

    def finish_run(
        self,
        run: SurveyRun,
        status: str,
        pages: list[PageRecord],
        reason: Optional[str] = None,
        result_path: Optional[str] = None,
    ) -> None:
        run.status = status
        run.status_reason = reason
        run.finished_at = datetime.now(timezone.utc)
        run.page_count = len(pages)
        run.field_count = sum(len(page.fields) for page in pages)
        run.test_case_count = sum(
            len(f.test_data.test_cases) for page in pages for f in page.fields if f.test_data is not None
        )
        run.result_path = result_path
        if self.db_session is not None:
            self.db_session.add(run)
            self.db_session.commit()
