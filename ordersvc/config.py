"""Service configuration loaded from a YAML file, a .env file and the environment."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy import text as sql_text
from sqlalchemy.engine import URL, Engine

_log = logging.getLogger(__name__)

_ENV_BINDINGS: dict[tuple[str, ...], str] = {
    ("storage", "main", "host"): "MAIN_HOST",
    ("storage", "main", "password"): "MAIN_PASSWORD",
    ("storage", "main", "username"): "MAIN_USERNAME",
    ("storage", "main", "dbname"): "MAIN_DBNAME",
    ("storage", "main", "port"): "MAIN_PORT",
    ("storage", "side", "host"): "SIDE_HOST",
    ("storage", "side", "password"): "SIDE_PASSWORD",
    ("storage", "side", "username"): "SIDE_USERNAME",
    ("storage", "side", "dbname"): "SIDE_DBNAME",
    ("storage", "side", "port"): "SIDE_PORT",
    ("server", "port"): "SERVER_PORT",
    ("kafka", "brokers"): "KAFKA_BROKERS",
    ("redis", "address"): "REDIS_ADDRESS",
}

_VERSION_TABLE = "goose_db_version"


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key)
    return value if isinstance(value, Mapping) else {}


def _str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    return "" if value is None else str(value)


def _int(data: Mapping[str, Any], key: str) -> int:
    value = data.get(key)
    return 0 if value in (None, "") else int(value)


def _bool(data: Mapping[str, Any], key: str) -> bool:
    value = data.get(key)
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def _str_list(data: Mapping[str, Any], key: str) -> list[str]:
    value = data.get(key)
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


@dataclass
class KafkaConfig:
    topic: str = ""
    brokers: str = ""
    group_id: str = ""
    num_workers: int = 0
    num_partitions: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> KafkaConfig:
        return cls(
            topic=_str(data, "topics"),
            brokers=_str(data, "brokers"),
            group_id=_str(data, "group_id"),
            num_workers=_int(data, "num_workers"),
            num_partitions=_int(data, "num_partitions"),
        )


@dataclass
class SamplingConfig:
    initial: int = 0
    thereafter: int = 0


@dataclass
class LoggingConfig:
    mode: str = ""
    level: str = ""
    encoding: str = ""
    sampling: Optional[SamplingConfig] = None
    initial_fields: dict[str, Any] = field(default_factory=dict)
    disable_caller: bool = False
    disable_stacktrace: bool = False
    output_paths: list[str] = field(default_factory=list)
    error_output_paths: list[str] = field(default_factory=list)
    timestamp_key: str = ""
    capitalize_level: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> LoggingConfig:
        sampling_data = data.get("sampling")
        sampling = None
        if isinstance(sampling_data, Mapping):
            sampling = SamplingConfig(
                initial=_int(sampling_data, "initial"),
                thereafter=_int(sampling_data, "thereafter"),
            )
        return cls(
            mode=_str(data, "mode"),
            level=_str(data, "level"),
            encoding=_str(data, "encoding"),
            sampling=sampling,
            initial_fields=dict(_section(data, "initialFields")),
            disable_caller=_bool(data, "disableCaller"),
            disable_stacktrace=_bool(data, "disableStacktrace"),
            output_paths=_str_list(data, "outputPaths"),
            error_output_paths=_str_list(data, "errorOutputPaths"),
            timestamp_key=_str(data, "timestampKey"),
            capitalize_level=_bool(data, "capitalizeLevel"),
        )


@dataclass
class RedisConfig:
    address: str = ""


@dataclass
class ServerConfig:
    host: str = ""
    port: str = ""


@dataclass
class PoolConfig:
    max_connections: int = 0
    min_connections: int = 0
    max_lifetime: int = 0
    max_idle_time: int = 0
    health_check_period: int = 0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PoolConfig:
        return cls(
            max_connections=_int(data, "max_connections"),
            min_connections=_int(data, "min_connections"),
            max_lifetime=_int(data, "max_lifetime"),
            max_idle_time=_int(data, "max_idle_time"),
            health_check_period=_int(data, "health_check_period"),
        )


@dataclass
class OutboxConfig:
    batch_size: int = 0
    num_workers: int = 0


def parse_migration(text: str) -> list[str]:
    """Return the statements of the Up section of a migration file."""
    statements: list[str] = []
    current: list[str] = []
    in_up = False
    in_block = False

    def flush() -> None:
        statement = "\n".join(current).strip()
        current.clear()
        if statement:
            statements.append(statement)

    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith("-- +goose"):
            directive = stripped[len("-- +goose"):].strip()
            if directive == "Up":
                flush()
                in_up = True
            elif directive == "Down":
                flush()
                in_up = False
            elif directive == "StatementBegin":
                flush()
                in_block = True
            elif directive == "StatementEnd":
                flush()
                in_block = False
            continue
        if not in_up:
            continue
        if not stripped or (stripped.startswith("--") and not current):
            continue
        current.append(line)
        if not in_block and stripped.endswith(";"):
            flush()
    if in_up:
        flush()
    return statements


@dataclass
class PostgresConfig:
    host: str = ""
    port: str = ""
    username: str = ""
    password: str = ""
    database: str = ""
    connection_attempts: int = 0
    pool: PoolConfig = field(default_factory=PoolConfig)
    outbox_table: OutboxConfig = field(default_factory=OutboxConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> PostgresConfig:
        outbox = _section(data, "outbox_table")
        return cls(
            host=_str(data, "host"),
            port=_str(data, "port"),
            username=_str(data, "username"),
            password=_str(data, "password"),
            database=_str(data, "dbname"),
            connection_attempts=_int(data, "connection_attempts"),
            pool=PoolConfig.from_dict(_section(data, "pool")),
            outbox_table=OutboxConfig(
                batch_size=_int(outbox, "batch_size"),
                num_workers=_int(outbox, "num_workers"),
            ),
        )

    def dsn(self) -> str:
        return (
            f"host={self.host} port={self.port} user={self.username} "
            f"password={self.password} dbname={self.database} sslmode=disable"
        )

    def url(self) -> URL:
        return URL.create(
            "postgresql",
            username=self.username or None,
            password=self.password or None,
            host=self.host or None,
            port=int(self.port) if self.port else None,
            database=self.database or None,
            query={"sslmode": "disable"},
        )

    def connect(self) -> Engine:
        """Create a pooled engine sized by the pool settings."""
        pool = self.pool
        size = max(pool.min_connections, 1)
        engine = create_engine(
            self.url(),
            pool_size=size,
            max_overflow=max(pool.max_connections - size, 0),
            pool_recycle=pool.max_lifetime if pool.max_lifetime > 0 else -1,
            pool_pre_ping=pool.health_check_period > 0,
        )
        _log.info("Successfully created connection pool")
        return engine

    def apply_migrations(self, engine: Engine, migrations_path: str | os.PathLike[str]) -> list[int]:
        """Apply pending migrations in version order; return the versions applied."""
        directory = Path(migrations_path)
        if not directory.is_dir():
            raise FileNotFoundError(f"failed to apply migrations: no directory {directory}")
        migrations: list[tuple[int, Path]] = []
        for path in directory.glob("*.sql"):
            match = re.match(r"(\d+)_", path.name)
            if match:
                migrations.append((int(match.group(1)), path))
        migrations.sort()

        with engine.begin() as conn:
            conn.execute(sql_text(
                f"CREATE TABLE IF NOT EXISTS {_VERSION_TABLE} "
                "(version_id BIGINT NOT NULL, is_applied BOOLEAN NOT NULL)"
            ))
            done = {
                row[0]
                for row in conn.execute(
                    sql_text(f"SELECT version_id FROM {_VERSION_TABLE} WHERE is_applied")
                )
            }

        applied: list[int] = []
        for version, path in migrations:
            if version in done:
                continue
            statements = parse_migration(path.read_text(encoding="utf-8"))
            with engine.begin() as conn:
                for statement in statements:
                    conn.exec_driver_sql(statement)
                conn.execute(
                    sql_text(f"INSERT INTO {_VERSION_TABLE} (version_id, is_applied) VALUES (:v, :a)"),
                    {"v": version, "a": True},
                )
            applied.append(version)
        return applied


@dataclass
class StorageConfig:
    main: PostgresConfig = field(default_factory=PostgresConfig)
    side: PostgresConfig = field(default_factory=PostgresConfig)


@dataclass
class Config:
    storage: StorageConfig = field(default_factory=StorageConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    redis: RedisConfig = field(default_factory=RedisConfig)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Config:
        storage = _section(data, "storage")
        server = _section(data, "server")
        return cls(
            storage=StorageConfig(
                main=PostgresConfig.from_dict(_section(storage, "main")),
                side=PostgresConfig.from_dict(_section(storage, "side")),
            ),
            server=ServerConfig(host=_str(server, "host"), port=_str(server, "port")),
            logging=LoggingConfig.from_dict(_section(data, "logging")),
            kafka=KafkaConfig.from_dict(_section(data, "kafka")),
            redis=RedisConfig(address=_str(_section(data, "redis"), "address")),
        )


def _set_path(data: dict[str, Any], path: tuple[str, ...], value: str) -> None:
    node = data
    for key in path[:-1]:
        child = node.get(key)
        if not isinstance(child, dict):
            child = {}
            node[key] = child
        node = child
    node[path[-1]] = value


def load_config(env_path: str | os.PathLike[str], config_path: str | os.PathLike[str]) -> Config:
    """Load the .env file, read config.yaml from config_path and apply env bindings."""
    env_file = Path(env_path)
    if not env_file.is_file():
        raise FileNotFoundError(f"error loading .env file: {env_file}")
    load_dotenv(env_file, override=False)

    directory = Path(config_path)
    config_file = next(
        (directory / name for name in ("config.yaml", "config.yml") if (directory / name).is_file()),
        None,
    )
    if config_file is None:
        raise FileNotFoundError(f"error reading config file: no config.yaml in {directory}")
    with config_file.open(encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    if not isinstance(raw, dict):
        raise ValueError("unable to decode into struct: top level is not a mapping")

    for path, env_name in _ENV_BINDINGS.items():
        value = os.environ.get(env_name)
        if value is not None:
            _set_path(raw, path, value)

    try:
        config = Config.from_dict(raw)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"unable to decode into struct: {exc}") from exc
    _log.info("Loaded configuration: %s", config)
    return config