from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import os

from asset_review.models import DEFAULT_ROOT


def _as_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _as_int(value: str, default: int) -> int:
    try:
        return int(value.strip())
    except (TypeError, ValueError):
        return default


def _as_float(value: str, default: float) -> float:
    try:
        return float(value.strip())
    except (TypeError, ValueError):
        return default


def true_stack_required(environ: Mapping[str, str] | None = None) -> bool:
    env = os.environ if environ is None else environ
    return _as_bool(env.get("ARP_REQUIRE_TRUESTACK", "false"))


@dataclass(frozen=True)
class RuntimeProfile:
    store_backend: str = "memory"
    sqlite_path: str = ".local/asset-review.sqlite3"
    postgres_dsn: str = ""
    review_table: str = "t_review_info"
    default_root: str = DEFAULT_ROOT
    default_per_page: int = 15
    max_per_page: int = 200
    query_timeout_s: float = 7.0
    log_level: str = "INFO"
    cors_allow_origins: tuple[str, ...] = ("http://127.0.0.1:5173", "http://localhost:5173")
    require_truestack: bool = False

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "RuntimeProfile":
        env = os.environ if environ is None else environ
        backend = env.get("ARP_STORE_BACKEND", "memory").strip().lower() or "memory"
        if backend not in {"memory", "sqlite", "postgres"}:
            raise ValueError(f"ARP_STORE_BACKEND must be memory, sqlite or postgres, got {backend}")
        require_truestack = true_stack_required(env)
        if require_truestack and backend != "postgres":
            raise RuntimeError("ARP_STORE_BACKEND must be postgres when ARP_REQUIRE_TRUESTACK=true")
        dsn = env.get("POSTGRES_DSN", "").strip()
        if backend == "postgres" and not dsn:
            raise ValueError("POSTGRES_DSN must be set when ARP_STORE_BACKEND=postgres")
        max_per_page = max(_as_int(env.get("ARP_MAX_PER_PAGE", "200"), 200), 1)
        default_per_page = min(max(_as_int(env.get("ARP_DEFAULT_PER_PAGE", "15"), 15), 1), max_per_page)
        origins = env.get("CORS_ALLOW_ORIGINS", "http://127.0.0.1:5173,http://localhost:5173")
        return cls(
            store_backend=backend,
            sqlite_path=env.get("ARP_STORE_SQLITE_PATH", ".local/asset-review.sqlite3"),
            postgres_dsn=dsn,
            review_table=env.get("ARP_REVIEW_TABLE", "t_review_info").strip() or "t_review_info",
            default_root=env.get("ARP_DEFAULT_ROOT", DEFAULT_ROOT).strip() or DEFAULT_ROOT,
            default_per_page=default_per_page,
            max_per_page=max_per_page,
            query_timeout_s=max(_as_float(env.get("ARP_QUERY_TIMEOUT_S", "7"), 7.0), 0.0),
            log_level=env.get("ARP_LOG_LEVEL", "INFO").strip().upper() or "INFO",
            cors_allow_origins=tuple(x.strip() for x in origins.split(",") if x.strip()),
            require_truestack=require_truestack,
        )
