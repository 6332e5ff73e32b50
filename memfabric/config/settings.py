"""Application settings and configuration schema."""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

ENV_PREFIX = "MEMFABRIC_"


class OrchestratorCfg(BaseModel):
    """Deadlines and defaults for fan-out operations."""
    write_deadline_s: float = Field(5.0, gt=0)
    search_deadline_s: float = Field(3.0, gt=0)
    reconcile_call_timeout_s: float = Field(10.0, gt=0)
    reconcile_clock_skew_s: float = Field(0.0, ge=0)
    shutdown_grace_s: float = Field(10.0, ge=0)
    default_limit: int = Field(20, ge=1)
    per_backend_limit_factor: int = Field(2, ge=1)
    namespace: str = "default"
    snapshot_interval_s: float = Field(0.0, ge=0)


class AnchorCfg(BaseModel):
    """Integrity anchoring configuration."""
    enabled: bool = True
    domain_tag: str = "MEMFABRIC_INTEGRITY"
    ledger_url: Optional[str] = None
    timeout_s: float = Field(2.0, gt=0)


class BackendCfg(BaseModel):
    """One configured backend."""
    name: str
    kind: Literal["memory", "vector", "sqlite", "remote"] = "memory"
    role: str = "primary"
    priority: int = 1
    reconciliation_interval_ms: int = Field(30000, gt=0)
    options: Dict[str, Any] = Field(default_factory=dict)


class Paths(BaseModel):
    """File and directory paths configuration."""
    data_dir: str = "data"
    snapshot_db: Optional[str] = None


def default_backends() -> List[BackendCfg]:
    return [
        BackendCfg(name="primary", kind="memory", role="primary", priority=1, reconciliation_interval_ms=30000),
        BackendCfg(name="secondary", kind="memory", role="backup", priority=2, reconciliation_interval_ms=60000),
        BackendCfg(name="vector", kind="vector", role="vector_search", priority=1, reconciliation_interval_ms=15000),
        BackendCfg(name="cognitive", kind="memory", role="cognitive", priority=3, reconciliation_interval_ms=120000),
    ]


class Settings(BaseModel):
    """Main application settings."""
    orchestrator: OrchestratorCfg = OrchestratorCfg()
    anchor: AnchorCfg = AnchorCfg()
    backends: List[BackendCfg] = Field(default_factory=default_backends)
    paths: Paths = Paths()
    log_level: str = "INFO"


# env var suffix -> (section, field)
_ENV_OVERRIDES = {
    "WRITE_DEADLINE_S": ("orchestrator", "write_deadline_s"),
    "SEARCH_DEADLINE_S": ("orchestrator", "search_deadline_s"),
    "SHUTDOWN_GRACE_S": ("orchestrator", "shutdown_grace_s"),
    "RECONCILE_CLOCK_SKEW_S": ("orchestrator", "reconcile_clock_skew_s"),
    "DEFAULT_LIMIT": ("orchestrator", "default_limit"),
    "NAMESPACE": ("orchestrator", "namespace"),
    "SNAPSHOT_INTERVAL_S": ("orchestrator", "snapshot_interval_s"),
    "ANCHOR_ENABLED": ("anchor", "enabled"),
    "DOMAIN_TAG": ("anchor", "domain_tag"),
    "LEDGER_URL": ("anchor", "ledger_url"),
    "SNAPSHOT_DB": ("paths", "snapshot_db"),
    "LOG_LEVEL": (None, "log_level"),
}


def load_settings(path: Optional[str | Path] = None, environ: Optional[Dict[str, str]] = None) -> Settings:
    """
    Build settings from an optional JSON file plus MEMFABRIC_* environment overrides.

    Raises:
        pydantic.ValidationError: if the resulting configuration is invalid
    """
    environ = os.environ if environ is None else environ
    data: Dict[str, Any] = {}
    if path is not None:
        data = json.loads(Path(path).read_text(encoding="utf-8"))

    for suffix, (section, field) in _ENV_OVERRIDES.items():
        value = environ.get(ENV_PREFIX + suffix)
        if value is None:
            continue
        if section is None:
            data[field] = value
        else:
            data.setdefault(section, {})[field] = value

    return Settings.model_validate(data)
