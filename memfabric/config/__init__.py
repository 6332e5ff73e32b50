"""Configuration schema and loader."""

from .settings import AnchorCfg, BackendCfg, OrchestratorCfg, Paths, Settings, load_settings

__all__ = ["AnchorCfg", "BackendCfg", "OrchestratorCfg", "Paths", "Settings", "load_settings"]
