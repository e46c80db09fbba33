import os
from decimal import Decimal
from pydantic import BaseModel, field_validator, ValidationError

DEFAULT_BASE_URL = "https://{network}.api.subscan.io"


class Explorer(BaseModel):
    network: str = "alephzero"
    base_url: str = DEFAULT_BASE_URL
    api_key: str | None = None
    timeout: float = 30.0
    retry_delay: float = 1.0
    max_attempts: int | None = None

    @field_validator("base_url")
    @classmethod
    def must_be_https(cls, v: str) -> str:
        # unresolved placeholders fall back to the public endpoint
        if "${" in v:
            return DEFAULT_BASE_URL
        if not v.startswith("https://"):
            raise ValueError("explorer base_url must be HTTPS")
        return v.rstrip("/")

    @field_validator("max_attempts")
    @classmethod
    def positive_attempts(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            raise ValueError("max_attempts must be at least 1")
        return v


class Pipeline(BaseModel):
    rows: int = 10
    batch_page: int = 0
    concurrency: int | None = None
    ss58_format: int = 42
    primary_token: str = "azero"
    secondary_token: str = "usdt"

    @field_validator("concurrency")
    @classmethod
    def positive_concurrency(cls, v: int | None) -> int | None:
        if v is not None and v < 1:
            raise ValueError("concurrency must be at least 1 when set")
        return v


class DB(BaseModel):
    driver: str = "sqlite"
    sqlite_path: str = "data/staking.db"
    pg_dsn: str | None = None


class Price(BaseModel):
    usd: Decimal | None = None


class Settings(BaseModel):
    explorer: Explorer = Explorer()
    pipeline: Pipeline = Pipeline()
    db: DB = DB()
    price: Price = Price()


def load_settings(path: str = "config.yaml") -> Settings:
    import yaml
    with open(path, "r") as f:
        cfg = yaml.safe_load(f) or {}

    # allow secure override via env at runtime
    env_key = os.environ.get("SUBSCAN_API_KEY")
    if env_key:
        cfg.setdefault("explorer", {})
        cfg["explorer"]["api_key"] = env_key

    try:
        return Settings.model_validate(cfg)
    except ValidationError as e:
        raise RuntimeError(f"Configuration error in {path}: {e}") from e
