"""Structured logger configured through functional options.

Apply options in this order: the mode (which resets the whole configuration),
then level, encoding and sampling, then outputs and fields, and finally
caller, stacktrace and encoder fine-tuning.
"""

from __future__ import annotations

import json
import os
import sys
import threading
import time
import traceback
from dataclasses import dataclass, field
from dataclasses import fields as dataclass_fields
from datetime import datetime
from enum import Enum, IntEnum
from typing import IO, Any, Callable, Mapping, Optional

TIME_EPOCH = "epoch"
TIME_ISO8601 = "iso8601"


class Level(IntEnum):
    """Severity levels, ordered from least to most severe."""

    DEBUG = 10
    INFO = 20
    WARN = 30
    ERROR = 40
    DPANIC = 45
    PANIC = 48
    FATAL = 50

    @classmethod
    def parse(cls, text: str) -> Level:
        key = text.strip().upper()
        if key == "WARNING":
            key = "WARN"
        try:
            return cls[key]
        except KeyError:
            raise ValueError(f"unrecognized level: {text!r}") from None


class LevelEncoding(Enum):
    LOWERCASE = "lowercase"
    CAPITAL = "capital"
    CAPITAL_COLOR = "capital_color"


_COLORS = {
    Level.DEBUG: 35,
    Level.INFO: 34,
    Level.WARN: 33,
    Level.ERROR: 31,
    Level.DPANIC: 31,
    Level.PANIC: 31,
    Level.FATAL: 31,
}


@dataclass
class EncoderConfig:
    """Keys and formats used when an entry is written out."""

    time_key: str = "ts"
    level_key: str = "level"
    caller_key: str = "caller"
    message_key: str = "msg"
    stacktrace_key: str = "stacktrace"
    level_encoding: LevelEncoding = LevelEncoding.LOWERCASE
    time_format: str = TIME_EPOCH

    def encode_level(self, level: Level) -> str:
        if self.level_encoding is LevelEncoding.LOWERCASE:
            return level.name.lower()
        if self.level_encoding is LevelEncoding.CAPITAL:
            return level.name
        return f"\x1b[{_COLORS[level]}m{level.name}\x1b[0m"

    def encode_time(self) -> Any:
        if self.time_format == TIME_EPOCH:
            return time.time()
        now = datetime.now().astimezone()
        if self.time_format == TIME_ISO8601:
            return now.isoformat(timespec="milliseconds")
        return now.strftime(self.time_format)


@dataclass
class Sampling:
    """Per second, log the first `initial` entries, then every `thereafter`-th."""

    initial: int
    thereafter: int


@dataclass
class LoggerConfig:
    level: Level = Level.INFO
    development: bool = False
    disable_caller: bool = False
    disable_stacktrace: bool = False
    sampling: Optional[Sampling] = field(default_factory=lambda: Sampling(100, 100))
    encoding: str = "json"
    encoder: EncoderConfig = field(default_factory=EncoderConfig)
    output_paths: list[str] = field(default_factory=lambda: ["stderr"])
    error_output_paths: list[str] = field(default_factory=lambda: ["stderr"])
    initial_fields: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def production(cls) -> LoggerConfig:
        return cls()

    @classmethod
    def development(cls) -> LoggerConfig:
        return cls(
            level=Level.DEBUG,
            development=True,
            sampling=None,
            encoding="console",
            encoder=EncoderConfig(
                time_key="T",
                level_key="L",
                caller_key="C",
                message_key="M",
                stacktrace_key="S",
                level_encoding=LevelEncoding.CAPITAL,
                time_format=TIME_ISO8601,
            ),
        )


Option = Callable[[LoggerConfig], None]


def _reset(cfg: LoggerConfig, source: LoggerConfig) -> None:
    for f in dataclass_fields(cfg):
        setattr(cfg, f.name, getattr(source, f.name))


def with_mode(mode: str) -> Option:
    """Reset the configuration to the development or production profile."""

    def apply(cfg: LoggerConfig) -> None:
        if mode in ("dev", "development"):
            _reset(cfg, LoggerConfig.development())
            cfg.encoder.level_encoding = LevelEncoding.CAPITAL_COLOR
        elif mode in ("prod", "production"):
            _reset(cfg, LoggerConfig.production())
            cfg.encoder.level_encoding = LevelEncoding.LOWERCASE
        else:
            print(
                f'[logger] warning: unknown mode "{mode}", defaulting to production',
                file=sys.stderr,
            )
        cfg.encoder.time_key = "timestamp"
        cfg.encoder.time_format = TIME_ISO8601

    return apply


def with_level(level: Level | int | str) -> Option:
    resolved = Level.parse(level) if isinstance(level, str) else Level(level)

    def apply(cfg: LoggerConfig) -> None:
        cfg.level = resolved

    return apply


def with_disable_caller(disable: bool) -> Option:
    def apply(cfg: LoggerConfig) -> None:
        cfg.disable_caller = disable
        if disable:
            cfg.encoder.caller_key = ""
        elif cfg.encoder.caller_key == "":
            cfg.encoder.caller_key = "caller"

    return apply


def with_disable_stacktrace(disable: bool) -> Option:
    def apply(cfg: LoggerConfig) -> None:
        cfg.disable_stacktrace = disable

    return apply


def with_sampling(sampling: Optional[Sampling]) -> Option:
    def apply(cfg: LoggerConfig) -> None:
        cfg.sampling = sampling

    return apply


def with_encoding(encoding: str) -> Option:
    """Select the encoder: "console" or "json"."""

    def apply(cfg: LoggerConfig) -> None:
        cfg.encoding = encoding

    return apply


def with_encoder_config(fn: Callable[[EncoderConfig], None]) -> Option:
    def apply(cfg: LoggerConfig) -> None:
        fn(cfg.encoder)

    return apply


def with_output_paths(*paths: str) -> Option:
    def apply(cfg: LoggerConfig) -> None:
        cfg.output_paths = list(paths)

    return apply


def with_error_output_paths(*paths: str) -> Option:
    def apply(cfg: LoggerConfig) -> None:
        cfg.error_output_paths = list(paths)

    return apply


def with_initial_fields(fields: Mapping[str, Any]) -> Option:
    """Add the given fields to every entry."""

    def apply(cfg: LoggerConfig) -> None:
        cfg.initial_fields = dict(fields)

    return apply


class _Sink:
    """An output target; the standard streams are looked up on every write."""

    def __init__(self, path: str) -> None:
        self.path = path
        self._file: Optional[IO[str]] = None
        if path not in ("stdout", "stderr"):
            self._file = open(path, "a", encoding="utf-8")

    def _stream(self) -> IO[str]:
        if self._file is not None:
            return self._file
        return sys.stdout if self.path == "stdout" else sys.stderr

    def write(self, text: str) -> None:
        self._stream().write(text)

    def flush(self) -> None:
        self._stream().flush()

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None


def _open_sinks(paths: list[str]) -> list[_Sink]:
    sinks: list[_Sink] = []
    try:
        for path in paths:
            sinks.append(_Sink(path))
    except OSError:
        for sink in sinks:
            sink.close()
        raise
    return sinks


class _Sampler:
    def __init__(self, sampling: Sampling, tick: float = 1.0) -> None:
        self._initial = sampling.initial
        self._thereafter = sampling.thereafter
        self._tick = tick
        self._window: Optional[int] = None
        self._counts: dict[tuple[Level, str], int] = {}
        self._lock = threading.Lock()

    def allow(self, level: Level, msg: str) -> bool:
        window = int(time.monotonic() // self._tick)
        with self._lock:
            if window != self._window:
                self._window = window
                self._counts.clear()
            count = self._counts.get((level, msg), 0) + 1
            self._counts[(level, msg)] = count
        if count <= self._initial:
            return True
        return self._thereafter > 0 and (count - self._initial) % self._thereafter == 0


class Logger:
    """Writes structured entries according to a LoggerConfig."""

    def __init__(self, config: LoggerConfig) -> None:
        if config.encoding not in ("json", "console"):
            raise ValueError(f"no encoder registered for name {config.encoding!r}")
        self.config = config
        self._lock = threading.Lock()
        self._outputs = _open_sinks(config.output_paths)
        try:
            self._error_outputs = _open_sinks(config.error_output_paths)
        except OSError:
            for sink in self._outputs:
                sink.close()
            raise
        self._sampler = _Sampler(config.sampling) if config.sampling else None

    def debug(self, msg: str, **kwargs: Any) -> None:
        self._log(Level.DEBUG, msg, kwargs)

    def info(self, msg: str, **kwargs: Any) -> None:
        self._log(Level.INFO, msg, kwargs)

    def warning(self, msg: str, **kwargs: Any) -> None:
        self._log(Level.WARN, msg, kwargs)

    def error(self, msg: str, **kwargs: Any) -> None:
        self._log(Level.ERROR, msg, kwargs)

    def fatal(self, msg: str, **kwargs: Any) -> None:
        """Log the entry, flush the outputs and exit with status 1."""
        self._log(Level.FATAL, msg, kwargs)
        self.sync()
        raise SystemExit(1)

    def sync(self) -> None:
        with self._lock:
            for sink in (*self._outputs, *self._error_outputs):
                try:
                    sink.flush()
                except (OSError, ValueError):
                    pass

    def close(self) -> None:
        self.sync()
        for sink in (*self._outputs, *self._error_outputs):
            sink.close()

    def __enter__(self) -> Logger:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _log(self, level: Level, msg: str, entry_fields: dict[str, Any]) -> None:
        cfg = self.config
        if level < cfg.level:
            return
        if self._sampler is not None and not self._sampler.allow(level, msg):
            return
        caller_frame = sys._getframe(2)
        caller = None
        if not cfg.disable_caller and cfg.encoder.caller_key:
            caller = f"{os.path.basename(caller_frame.f_code.co_filename)}:{caller_frame.f_lineno}"
        stack = None
        threshold = Level.WARN if cfg.development else Level.ERROR
        if not cfg.disable_stacktrace and level >= threshold and cfg.encoder.stacktrace_key:
            stack = "".join(traceback.format_stack(caller_frame)).rstrip()
        line = self._encode(level, msg, entry_fields, caller, stack)
        with self._lock:
            for sink in self._outputs:
                try:
                    sink.write(line)
                except (OSError, ValueError) as exc:
                    self._report(f"write error: {exc}\n")

    def _report(self, text: str) -> None:
        for sink in self._error_outputs:
            try:
                sink.write(text)
            except (OSError, ValueError):
                pass

    def _encode(
        self,
        level: Level,
        msg: str,
        entry_fields: dict[str, Any],
        caller: Optional[str],
        stack: Optional[str],
    ) -> str:
        enc = self.config.encoder
        context = {**self.config.initial_fields, **entry_fields}
        if self.config.encoding == "json":
            entry: dict[str, Any] = {}
            if enc.level_key:
                entry[enc.level_key] = enc.encode_level(level)
            if enc.time_key:
                entry[enc.time_key] = enc.encode_time()
            if caller is not None:
                entry[enc.caller_key] = caller
            if enc.message_key:
                entry[enc.message_key] = msg
            entry.update(context)
            if stack is not None:
                entry[enc.stacktrace_key] = stack
            return json.dumps(entry, default=str) + "\n"

        parts: list[str] = []
        if enc.time_key:
            parts.append(str(enc.encode_time()))
        if enc.level_key:
            parts.append(enc.encode_level(level))
        if caller is not None:
            parts.append(caller)
        if enc.message_key:
            parts.append(msg)
        if context:
            parts.append(json.dumps(context, default=str))
        line = "\t".join(parts)
        if stack is not None:
            line += "\n" + stack
        return line + "\n"


def new_logger(*options: Option) -> Logger:
    """Build a logger from the production profile with the options applied in order."""
    cfg = LoggerConfig.production()
    for option in options:
        option(cfg)
    return Logger(cfg)