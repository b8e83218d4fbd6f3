# vibe_rooms/db_connection.py
import logging
from typing import Callable

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from vibe_rooms import config
from vibe_rooms.entities import Base

logger = logging.getLogger("vibe_rooms")


class DbConnection:
    def __init__(self, database_url: str | None = None) -> None:
        self.DB_HOST      = config.DB_HOST
        self.DB_PORT      = config.DB_PORT
        self.DB_NAME      = config.DB_NAME
        self.DB_USER      = config.DB_USER
        self.DB_PASSWORD  = config.DB_PASSWORD
        self.DB_SECRET_ID = config.DB_SECRET_ID

        # !###############################################
        # !   EXPLICIT URL > DATABASE_URL > POSTGRES
        # !   SETTINGS > LOCAL SQLITE FILE
        # !###############################################
        self.DATABASE_URL = database_url or config.DATABASE_URL
        if not self.DATABASE_URL:
            if self.DB_NAME:
                self.DATABASE_URL = (
                    f"postgresql+pg8000://{self.DB_USER}:{self._get_db_password_lazy()}"
                    f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
                )
            else:
                self.DATABASE_URL = config.LOCAL_SQLITE_URL
        self.IS_SQLITE = self.DATABASE_URL.startswith("sqlite")

    # -------- DB password (Secret Manager) --------
    def _get_db_password_lazy(self) -> str:
        if self.DB_PASSWORD:
            return self.DB_PASSWORD
        if self.DB_SECRET_ID:
            from google.cloud import secretmanager
            from google.auth import default as google_auth_default

            creds, _ = google_auth_default(scopes=["https://www.googleapis.com/auth/cloud-platform"])
            client = secretmanager.SecretManagerServiceClient(credentials=creds)
            name = client.secret_version_path(config.PROJECT_ID, self.DB_SECRET_ID, "latest")
            resp = client.access_secret_version(request={"name": name})
            self.DB_PASSWORD = resp.payload.data.decode("utf-8")
            return self.DB_PASSWORD
        raise RuntimeError("No DB_PASSWORD and no Secret Manager configured")

    # -------- SQLAlchemy Session factory --------
    def build_db_session_factory(self, create_schema: bool = True) -> Callable[[], Session]:
        if not getattr(self, "_sessionmaker", None):
            if self.IS_SQLITE:
                # sessions are opened from asyncio.to_thread workers
                engine = create_engine(
                    self.DATABASE_URL,
                    future=True,
                    connect_args={"check_same_thread": False},
                )
            else:
                engine = create_engine(
                    self.DATABASE_URL,
                    future=True,
                    pool_pre_ping=True,
                    connect_args={"timeout": 10},  # pg8000: fail in 10s instead of hanging forever
                )
            logger.info(f"[DB] Using {engine.url.render_as_string(hide_password=True)}")
            if create_schema:
                Base.metadata.create_all(engine)
            self.engine = engine
            self._sessionmaker = sessionmaker(
                bind=engine,
                autoflush=False,
                autocommit=False,
                expire_on_commit=False,
                future=True,
            )

        def _factory() -> Session:
            return self._sessionmaker()

        return _factory
