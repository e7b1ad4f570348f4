from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass(slots=True)
class PathsConfig:
    local_store: Path = Path("dispatchboard.db")
    log: Path = Path("dispatchboard.log")


@dataclass(slots=True)
class CacheConfig:
    technicians_ttl_seconds: float = 120
    dispatches_ttl_seconds: float = 60
    unassigned_jobs_ttl_seconds: float = 45
    assigned_jobs_ttl_seconds: float = 30


@dataclass(slots=True)
class SchedulingConfig:
    working_hours_end: int = 17
    min_duration_minutes: int = 15
    default_duration_minutes: int = 60
    undo_capacity: int = 5
    installation_batch_size: int = 15
    dispatch_page_size: int = 500


@dataclass(slots=True)
class RemoteConfig:
    admin_user_id: int | None = None


@dataclass(slots=True)
class AppConfig:
    paths: PathsConfig = field(default_factory=PathsConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    scheduling: SchedulingConfig = field(default_factory=SchedulingConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)


def _section(raw: dict, key: str) -> dict:
    value = raw.get(key, {}) or {}
    if not isinstance(value, dict):
        raise ValueError(f"`{key}` must be a mapping")
    return value


def _positive(value: float, name: str) -> float:
    if value <= 0:
        raise ValueError(f"`{name}` must be > 0")
    return value


def load_config(path: str | Path) -> AppConfig:
    config_path = Path(path).expanduser().resolve()
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ValueError("Config root must be a mapping")

    paths_raw = _section(raw, "paths")
    cache_raw = _section(raw, "cache")
    scheduling_raw = _section(raw, "scheduling")
    remote_raw = _section(raw, "remote")

    def to_path(key: str, default: Path) -> Path:
        output = Path(str(paths_raw.get(key, default))).expanduser()
        if not output.is_absolute():
            output = config_path.parent / output
        return output

    defaults = AppConfig()
    paths = PathsConfig(
        local_store=to_path("local_store", defaults.paths.local_store),
        log=to_path("log", defaults.paths.log),
    )

    cache = CacheConfig()
    for name in (
        "technicians_ttl_seconds",
        "dispatches_ttl_seconds",
        "unassigned_jobs_ttl_seconds",
        "assigned_jobs_ttl_seconds",
    ):
        value = float(cache_raw.get(name, getattr(cache, name)))
        setattr(cache, name, _positive(value, f"cache.{name}"))

    scheduling = SchedulingConfig()
    for name in (
        "working_hours_end",
        "min_duration_minutes",
        "default_duration_minutes",
        "undo_capacity",
        "installation_batch_size",
        "dispatch_page_size",
    ):
        setattr(scheduling, name, int(scheduling_raw.get(name, getattr(scheduling, name))))

    if not 0 < scheduling.working_hours_end <= 24:
        raise ValueError("`scheduling.working_hours_end` must be an hour of day in 1-24")
    for name in ("min_duration_minutes", "default_duration_minutes", "undo_capacity",
                 "installation_batch_size", "dispatch_page_size"):
        _positive(getattr(scheduling, name), f"scheduling.{name}")
    if scheduling.default_duration_minutes < scheduling.min_duration_minutes:
        raise ValueError("`scheduling.default_duration_minutes` must be >= `scheduling.min_duration_minutes`")

    admin_raw = remote_raw.get("admin_user_id")
    remote = RemoteConfig(admin_user_id=int(admin_raw) if admin_raw is not None else None)

    return AppConfig(paths=paths, cache=cache, scheduling=scheduling, remote=remote)


def ensure_local_paths(config: AppConfig) -> None:
    config.paths.local_store.parent.mkdir(parents=True, exist_ok=True)
    config.paths.log.parent.mkdir(parents=True, exist_ok=True)
