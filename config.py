import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        data_dir: Path,
        export_dir: Path,
        timezone: str,
        token_secret: str,
        access_token_ttl_secs: int,
        refresh_token_ttl_secs: int,
        strict_token_types: bool,
        bcrypt_rounds: int,
        port: int,
        client_origin: str,
        environment: str,
        export_max_age_hours: float,
    ) -> None:
        self.database_url = database_url
        self.data_dir = data_dir
        self.export_dir = export_dir
        self.timezone = timezone
        self.token_secret = token_secret
        self.access_token_ttl_secs = access_token_ttl_secs
        self.refresh_token_ttl_secs = refresh_token_ttl_secs
        self.strict_token_types = strict_token_types
        self.bcrypt_rounds = bcrypt_rounds
        self.port = port
        self.client_origin = client_origin
        self.environment = environment
        self.export_max_age_hours = export_max_age_hours

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "expenses.db"
    database_url = os.getenv("EXPENSES_DATABASE_URL", f"sqlite:///{default_db}")
    export_dir = Path(os.getenv("EXPENSES_EXPORT_DIR", str(data_dir / "exports")))
    timezone = os.getenv("EXPENSES_TIMEZONE", "UTC")
    token_secret = os.getenv(
        "EXPENSES_TOKEN_SECRET",
        "3f0c9a1be47d52c6e8a1f07b9d24c5e6a8b3d17f2e09c4a65b7d8e1f2a3c4b5d",
    )
    access_token_ttl_secs = int(
        os.getenv("EXPENSES_ACCESS_TOKEN_TTL_SECS", str(7 * 24 * 3600))
    )
    refresh_token_ttl_secs = int(
        os.getenv("EXPENSES_REFRESH_TOKEN_TTL_SECS", str(30 * 24 * 3600))
    )
    strict_token_types = _env_flag("EXPENSES_STRICT_TOKEN_TYPES")
    bcrypt_rounds = int(os.getenv("EXPENSES_BCRYPT_ROUNDS", "12"))
    port = int(os.getenv("EXPENSES_PORT", "5000"))
    client_origin = os.getenv("EXPENSES_CLIENT_ORIGIN", "http://localhost:3000")
    environment = os.getenv("EXPENSES_ENVIRONMENT", "development")
    export_max_age_hours = float(os.getenv("EXPENSES_EXPORT_MAX_AGE_HOURS", "6"))
    return Settings(
        database_url=database_url,
        data_dir=data_dir,
        export_dir=export_dir,
        timezone=timezone,
        token_secret=token_secret,
        access_token_ttl_secs=access_token_ttl_secs,
        refresh_token_ttl_secs=refresh_token_ttl_secs,
        strict_token_types=strict_token_types,
        bcrypt_rounds=bcrypt_rounds,
        port=port,
        client_origin=client_origin,
        environment=environment,
        export_max_age_hours=export_max_age_hours,
    )
