from pydantic_settings import BaseSettings, SettingsConfigDict

from dispatch.core.policy import DispatchPolicy


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_nested_delimiter="__",
    )

    app_name: str = "driver-dispatch"

    # ---------------------------------------------------------------------
    # API contract / OpenAPI
    # ---------------------------------------------------------------------

    api_version: str = "1.0.0"
    api_description: str = (
        "Driver dispatch API.\n\n"
        "Endpoints are headers-first. Required headers: "
        "X-Org-Id, X-Actor-User-Id, X-Role.\n\n"
        "Batch triggers under /cron require Authorization: Bearer <CRON_SECRET>."
    )

    env: str = "local"
    debug: bool = True
    log_level: str = "INFO"

    db_host: str = "127.0.0.1"
    db_port: int = 5432
    db_name: str = "dispatch"
    db_user: str = "dispatch"
    db_password: str = "dispatch"

    # full URL wins over the parts above (e.g. sqlite for local runs)
    database_url_override: str | None = None

    # shared secret for scheduler-invoked batch triggers; empty disables them
    cron_secret: str = ""

    policy: DispatchPolicy = DispatchPolicy()

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        return (
            f"postgresql+psycopg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


settings = Settings()
