from pydantic_settings import BaseSettings
from pydantic import Field
from typing import List, Optional
from pathlib import Path

class Settings(BaseSettings):
    app_name: str = Field(default="Visa Portal API", alias="APP_NAME")
    env: str = Field(default="dev", alias="ENV")
    secret_key: str = Field(default="devsecret", alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", alias="ALGORITHM")
    access_token_expire_minutes: int = Field(default=60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    database_url: str | None = Field(default=None, alias="DATABASE_URL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    # Outbound frames buffered per socket before new ones are dropped
    ws_send_queue_size: int = Field(default=100, ge=1, alias="WS_SEND_QUEUE_SIZE")
    # Raw env value (string), parsed to a list via property to avoid JSON decoding errors
    cors_origins_raw: Optional[str] = Field(default=None, alias="CORS_ORIGINS", description="Comma separated or JSON list of allowed CORS origins")

    class Config:
        # Load env from backend/.env regardless of CWD
        env_file = str(Path(__file__).resolve().parents[2] / ".env")
        case_sensitive = False

    def _parse_list(self, v: Optional[str]) -> List[str]:
        if v is None:
            return []
        s = v.strip()
        if not s:
            return []
        if s.startswith("[") and s.endswith("]"):
            try:
                import json
                loaded = json.loads(s)
                if isinstance(loaded, list):
                    return [str(e).strip() for e in loaded if str(e).strip()]
            except ValueError:
                pass
        return [e.strip() for e in s.split(",") if e.strip()]

    @property
    def cors_origins(self) -> List[str]:
        items = self._parse_list(self.cors_origins_raw)
        # Fallback dev defaults if none provided
        if not items:
            return ["http://localhost:5173", "http://127.0.0.1:5173"]
        return items

settings = Settings()  # type: ignore
