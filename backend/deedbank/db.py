import os
from urllib.parse import quote_plus

from sqlalchemy import create_engine, event
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()
engine = None
SessionLocal = None


def _read_int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer") from exc


def _build_sqlserver_url(login_env: str, password_env: str, database_override: str | None = None) -> str:
    driver = os.getenv("SQLSERVER_DRIVER", "")
    host = os.getenv("SQLSERVER_HOST", "")
    port = os.getenv("SQLSERVER_PORT", "")
    database = database_override or os.getenv("SQLSERVER_DB", "")
    user = os.getenv(login_env, "")
    password = os.getenv(password_env, "")

    missing = [key for key, value in {
        "SQLSERVER_HOST": host,
        "SQLSERVER_PORT": port,
        "SQLSERVER_DB": database,
        "SQLSERVER_DRIVER": driver,
        login_env: user,
        password_env: password,
    }.items() if not value]
    if missing:
        raise RuntimeError(f"Missing database configuration: {', '.join(missing)}")

    driver_encoded = quote_plus(driver)
    password_encoded = quote_plus(password)
    return (
        f"mssql+pyodbc://{user}:{password_encoded}@{host}:{port}/{database}"
        f"?driver={driver_encoded}&Encrypt=yes&TrustServerCertificate=yes"
    )


def BuildUserConnectionUrl() -> str:
    url = os.getenv("DATABASE_URL", "").strip()
    if url:
        return url
    return _build_sqlserver_url("SQLSERVER_USER_LOGIN", "SQLSERVER_USER_PASSWORD")


def BuildAdminConnectionUrl() -> str:
    url = os.getenv("DATABASE_ADMIN_URL", "").strip() or os.getenv("DATABASE_URL", "").strip()
    if url:
        return url
    return _build_sqlserver_url("SQLSERVER_ADMIN_LOGIN", "SQLSERVER_ADMIN_PASSWORD")


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def BuildEngine(url: str, **kwargs):
    # SQLite has no connection pool sizing and enforces foreign keys only on request.
    if make_url(url).get_backend_name() == "sqlite":
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        sqlite_engine = create_engine(url, **kwargs)
        event.listen(sqlite_engine, "connect", _enable_sqlite_foreign_keys)
        return sqlite_engine

    kwargs.setdefault("pool_pre_ping", True)
    kwargs.setdefault("pool_size", _read_int_env("SQLALCHEMY_POOL_SIZE", 10))
    kwargs.setdefault("max_overflow", _read_int_env("SQLALCHEMY_MAX_OVERFLOW", 20))
    kwargs.setdefault("pool_timeout", _read_int_env("SQLALCHEMY_POOL_TIMEOUT", 60))
    return create_engine(url, **kwargs)


def _ensure_engine():
    global engine, SessionLocal
    if engine is None:
        engine = BuildEngine(BuildUserConnectionUrl())
        SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def GetEngine():
    _ensure_engine()
    return engine


def GetDb():
    if SessionLocal is None:
        _ensure_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
