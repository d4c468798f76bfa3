from __future__ import annotations

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env")

    database_url: str = "sqlite:///./survey_explorer.db"
    headless: bool = True
    viewport_width: int = 767
    viewport_height: int = 1024
    output_dir: str = "./output"
    screenshot_dir: str = "./output/screenshots"

    survey_root_id: str = "#survey-body-container"
    survey_root_class: str = ".survey-body-container"
    question_container_selector: str = '[class*="CardBox"]'
    slider_track_selector: str = '[class*="SliderTrack"]'
    action_menu_selector: str = '[class*="ActionMenu"]'
    clear_button_selector: str = '[class*="BaseButton"]'

    materialize_wait_ms: int = 3000
    field_settle_ms: int = 1000
    action_settle_ms: int = 500
    nav_delay_ms: int = 3000
    transition_attempts: int = 10
    transition_interval_ms: int = 1000

    reset_max_attempts: int = 15
    reset_max_failures: int = 3
    max_pages: int = 100
    clear_values_each_page: bool = True
    identity_text_limit: int = 100


def get_settings() -> Settings:
    return Settings()


settings = get_settings()
