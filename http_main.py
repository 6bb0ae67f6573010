import logging

import uvicorn

from config import Settings
from infrastructure.db.ledger_repository_postgres import PostgresLedgerRepository
from infrastructure.db.ledger_repository_sqlite import SqliteLedgerRepository
from infrastructure.db.session_repository_postgres import PostgresSessionRepository
from infrastructure.db.session_repository_sqlite import SqliteSessionRepository
from infrastructure.db.user_repository_postgres import PostgresUserRepository
from infrastructure.db.user_repository_sqlite import SqliteUserRepository
from interfaces.http.handlers import create_http_app


log = logging.getLogger(__name__)


def build_app(settings: Settings):
    """Create the repositories for the configured backend and wire the HTTP app."""

    if settings.db_backend == "postgres":
        params = settings.db_params
        user_repo = PostgresUserRepository(params, settings.lock_timeout_ms)
        ledger_repo = PostgresLedgerRepository(params, lock_timeout_ms=settings.lock_timeout_ms)
        session_repo = PostgresSessionRepository(params, settings.lock_timeout_ms)
    else:
        user_repo = SqliteUserRepository(settings.db_path, settings.lock_timeout_ms)
        ledger_repo = SqliteLedgerRepository(settings.db_path, lock_timeout_ms=settings.lock_timeout_ms)
        session_repo = SqliteSessionRepository(settings.db_path, settings.lock_timeout_ms)

    return create_http_app(user_repo, ledger_repo, session_repo, settings.policy())


def main() -> None:
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = build_app(settings)
    log.info(
        "Coin shop starting on %s:%d (backend=%s)",
        settings.host,
        settings.port,
        settings.db_backend,
    )
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
