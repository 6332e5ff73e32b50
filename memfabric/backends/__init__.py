"""
Backend adapters.

Every variant implements the BackendAdapter contract; which one is built
is decided by configuration (`kind`), never by inspecting objects at runtime.
"""

from pathlib import Path

from ..config.settings import BackendCfg
from .base import BackendAdapter, WriteAck, matches_filters
from .memory import InMemoryBackend
from .remote import RemoteBackend
from .sqlite import SqliteBackend
from .vector import VectorBackend

__all__ = [
    "BackendAdapter",
    "WriteAck",
    "matches_filters",
    "InMemoryBackend",
    "VectorBackend",
    "SqliteBackend",
    "RemoteBackend",
    "build_backend",
]


def build_backend(cfg: BackendCfg, data_dir: str = "data") -> BackendAdapter:
    """Instantiate the adapter variant named by cfg.kind."""
    opts = cfg.options
    if cfg.kind == "memory":
        return InMemoryBackend(
            cfg.name,
            latency_s=float(opts.get("latency_s", 0.0)),
            offline=bool(opts.get("offline", False)),
        )
    if cfg.kind == "vector":
        return VectorBackend(
            cfg.name,
            dimension=int(opts.get("dimension", 256)),
            latency_s=float(opts.get("latency_s", 0.0)),
            offline=bool(opts.get("offline", False)),
        )
    if cfg.kind == "sqlite":
        path = opts.get("path") or str(Path(data_dir) / "backends" / f"{cfg.name}.db")
        return SqliteBackend(cfg.name, path)
    if cfg.kind == "remote":
        if not opts.get("base_url"):
            raise ValueError(f"backend {cfg.name!r}: remote backends need options.base_url")
        return RemoteBackend(
            cfg.name,
            base_url=opts["base_url"],
            api_key=opts.get("api_key"),
            timeout_s=float(opts.get("timeout_s", 5.0)),
        )
    raise ValueError(f"backend {cfg.name!r}: unknown kind {cfg.kind!r}")
