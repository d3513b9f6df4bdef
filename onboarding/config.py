"""Engine configuration, read from ONBOARDING_* environment variables or a .env file."""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from onboarding.state.store import StateStore
from onboarding.workflow.loader import DefinitionCache, DefinitionLoader


class EngineSettings(BaseSettings):
    """Locations of definitions and state, cache policy and log level."""

    data_dir: Path = Field(default=Path("data"), description="Root of the definition sources")
    tasks_dir: Optional[Path] = Field(default=None, description="Task definitions (default: <data_dir>/tasks)")
    workflows_dir: Optional[Path] = Field(
        default=None, description="Workflow definitions (default: <data_dir>/workflows)"
    )
    state_dir: Optional[Path] = Field(
        default=None, description="Per-entity state records (default: <data_dir>/client_state)"
    )

    # off by default so edited definitions are picked up immediately
    cache_enabled: bool = Field(default=False, description="Cache parsed definitions")
    cache_ttl_seconds: float = Field(default=300.0, gt=0, description="Cache entry lifetime")
    cache_invalidate_on_mtime: bool = Field(
        default=True, description="Drop cache entries whose source file changed"
    )

    log_level: str = Field(default="INFO", description="Root log level")

    model_config = SettingsConfigDict(
        env_prefix="ONBOARDING_",
        env_file=".env",
        extra="ignore",
    )

    @property
    def resolved_tasks_dir(self) -> Path:
        return self.tasks_dir or self.data_dir / "tasks"

    @property
    def resolved_workflows_dir(self) -> Path:
        return self.workflows_dir or self.data_dir / "workflows"

    @property
    def resolved_state_dir(self) -> Path:
        return self.state_dir or self.data_dir / "client_state"

    def build_cache(self) -> DefinitionCache:
        return DefinitionCache(
            ttl_seconds=self.cache_ttl_seconds,
            invalidate_on_mtime=self.cache_invalidate_on_mtime,
            enabled=self.cache_enabled,
        )

    def build_loader(self, cache: Optional[DefinitionCache] = None) -> DefinitionLoader:
        return DefinitionLoader(
            tasks_dir=self.resolved_tasks_dir,
            workflows_dir=self.resolved_workflows_dir,
            cache=cache if cache is not None else self.build_cache(),
        )

    def build_store(self) -> StateStore:
        return StateStore(self.resolved_state_dir)
