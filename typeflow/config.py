import warnings
from pathlib import Path
from typing import Literal, Optional

from pydantic import computed_field, model_validator
from pydantic_core import MultiHostUrl
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing_extensions import Self

# Stand-in key for local runs; credentials encrypted with it are not portable
DEVELOPMENT_SECRET_KEY = "typeflow-development-key"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_ignore_empty=True, extra="ignore")

    PROJECT_NAME: str = "Typeflow"
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"
    LOG_LEVEL: str = "INFO"

    # Encrypts sensitive fields of stored credential configs
    SECRET_KEY: str = DEVELOPMENT_SECRET_KEY

    # Workflow store. SQLite unless POSTGRES_SERVER is set.
    POSTGRES_SERVER: Optional[str] = None
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "typeflow"
    POSTGRES_PASSWORD: Optional[str] = None
    POSTGRES_DB: str = "typeflow"
    SQLITE_DB_PATH: str = "typeflow.db"

    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Publish execution events on workflow:execution:<id>
    EXECUTION_EVENTS_ENABLED: bool = False

    CODE_EXECUTION_TIMEOUT_MS: int = 5000
    CUSTOM_NODE_TIMEOUT_MS: int = 30000
    HTTP_REQUEST_TIMEOUT_MS: int = 30000
    WAIT_NODE_MAX_SECONDS: float = 300

    # gated: a node waits for every in-scope predecessor
    # eager: a node runs the first time it is dequeued (full runs only)
    FAN_IN_MODE: Literal["gated", "eager"] = "gated"

    # <PACKAGES_ROOT>/<organization>/site-packages, importable from code nodes
    PACKAGES_ROOT: Path = Path(".typeflow-packages")
    # <NODE_PACKAGES_DIR>/<category>/<package>/manifest.json
    NODE_PACKAGES_DIR: Optional[Path] = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        if not self.POSTGRES_SERVER:
            return f"sqlite:///{self.SQLITE_DB_PATH}"
        return str(
            MultiHostUrl.build(
                scheme="postgresql+psycopg",
                username=self.POSTGRES_USER,
                password=self.POSTGRES_PASSWORD,
                host=self.POSTGRES_SERVER,
                port=self.POSTGRES_PORT,
                path=self.POSTGRES_DB,
            )
        )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def REDIS_URL(self) -> str:
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def CELERY_BROKER_URL(self) -> str:
        return self.REDIS_URL

    @computed_field  # type: ignore[prop-decorator]
    @property
    def CELERY_RESULT_BACKEND(self) -> str:
        return self.REDIS_URL

    @model_validator(mode="after")
    def _require_deployment_secrets(self) -> Self:
        """Local runs only warn about development secrets; deployments refuse them."""
        problems = []
        if self.SECRET_KEY == DEVELOPMENT_SECRET_KEY:
            problems.append("SECRET_KEY is the development key")
        if self.POSTGRES_SERVER and not self.POSTGRES_PASSWORD:
            problems.append("POSTGRES_PASSWORD is not set")
        if not problems:
            return self

        message = "; ".join(problems) + ". Set them in the environment or .env."
        if self.ENVIRONMENT != "local":
            raise ValueError(message)
        if self.POSTGRES_SERVER:
            warnings.warn(message, stacklevel=1)
        return self


settings = Settings()  # type: ignore
