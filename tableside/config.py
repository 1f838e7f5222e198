from pydantic_settings import BaseSettings, SettingsConfigDict
class Settings(BaseSettings):
    APP_ENV: str = "dev"
    APP_SECRET: str
    DB_URL: str
    JWT_ISS: str = "tableside"
    JWT_EXP_MIN: int = 12*60
    TZ: str = "UTC"
    LOG_LEVEL: str = "INFO"
    # sessions on a floor need an open floor shift
    REQUIRE_FLOOR_SHIFT: bool = False
    # menu/tax service; empty -> local catalog tables
    CATALOG_URL: str | None = None
    CATALOG_TIMEOUT: float = 3.0
    # print agent and realtime gateway webhooks; empty -> effects are logged and dropped
    PRINT_AGENT_URL: str | None = None
    NOTIFY_URL: str | None = None
    EFFECT_TIMEOUT: float = 3.0
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")
settings = Settings()
