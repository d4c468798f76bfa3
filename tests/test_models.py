from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from survey_explorer.engine.capture import CaptureManager
from survey_explorer.models import Base, RunLog, SurveyRun, log_run_event


def test_run_ledger_round_trip(tmp_path):
    engine = create_engine("sqlite://")
    Base.metadata.create_all(engine)
    db = sessionmaker(bind=engine)()
    try:
        capture_manager = CaptureManager(db, screenshot_dir=str(tmp_path))
        run = capture_manager.start_run("https://survey.example.com/s/1")
        log_run_event(db, run, "info", "page_analyzed page=0")
        capture_manager.finish_run(run, "completed", [], reason="finish_reached")

        stored = db.scalars(select(SurveyRun)).one()
        assert stored.status == "completed"
        assert stored.page_count == 0
        assert [log.message for log in db.scalars(select(RunLog))] == ["page_analyzed page=0"]
        assert stored.logs[0].level == "info"
    finally:
        db.close()
