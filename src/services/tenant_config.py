"""
Per-tenant configuration.

Each tenant (agency) is described by one YAML or JSON file in the tenant
config directory, named after its ``client_id``. Files are validated with
pydantic and cached for the life of the process; configuration is read-only
while a request is being served.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

import yaml
from pydantic import Field, field_validator

from src.shared.errors import ConfigurationError, TenantNotFoundError
from src.shared.models import RealtyBaseModel
from src.shared.observability import get_logger

logger = get_logger(__name__)

TENANT_FILE_SUFFIXES = (".yaml", ".yml", ".json")


class TenantPrompts(RealtyBaseModel):
    system_instruction: Optional[str] = None
    fallback_response: Optional[str] = None


class TenantConfig(RealtyBaseModel):
    """Configuration for a single agency."""

    client_id: str
    client_name: str
    prompts: TenantPrompts = Field(default_factory=TenantPrompts)
    index_name: str
    namespace: Optional[str] = None
    default_development_id: Optional[str] = None
    # keyword off-topic refusal before retrieval; off unless the tenant opts in
    relevance_screen: bool = False
    chunking_rules: Dict[str, Any] = Field(default_factory=dict)
    extraction_rules: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("client_id", "client_name", "index_name")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @property
    def system_instruction(self) -> Optional[str]:
        return self.prompts.system_instruction


class TenantConfigProvider(Protocol):
    def get(self, client_id: str) -> TenantConfig:
        """Return the tenant's configuration or raise ``TenantNotFoundError``."""
        ...


class InMemoryTenantConfigProvider:
    """Provider over a fixed set of configs (tests, single-tenant deployments)."""

    def __init__(self, configs: Union[List[TenantConfig], Dict[str, TenantConfig]]):
        if isinstance(configs, dict):
            self._configs = dict(configs)
        else:
            self._configs = {cfg.client_id: cfg for cfg in configs}

    def get(self, client_id: str) -> TenantConfig:
        try:
            return self._configs[client_id]
        except KeyError:
            raise TenantNotFoundError(client_id) from None


class FileTenantConfigProvider:
    """
    Loads ``<directory>/<client_id>.{yaml,yml,json}`` on first use and keeps
    the parsed config in memory.
    """

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)
        self._cache: Dict[str, TenantConfig] = {}

    def get(self, client_id: str) -> TenantConfig:
        if not client_id:
            raise TenantNotFoundError(client_id)
        cached = self._cache.get(client_id)
        if cached is not None:
            return cached

        path = self._find_file(client_id)
        if path is None:
            logger.warning(
                "tenant_config_missing",
                client_id=client_id,
                directory=str(self.directory),
            )
            raise TenantNotFoundError(client_id)

        config = self._load(path, client_id)
        self._cache[client_id] = config
        logger.info("tenant_config_loaded", client_id=client_id, path=str(path))
        return config

    def invalidate(self, client_id: Optional[str] = None) -> None:
        """Drop one cached tenant (or all of them) so the next ``get`` re-reads."""
        if client_id is None:
            self._cache.clear()
        else:
            self._cache.pop(client_id, None)

    def _find_file(self, client_id: str) -> Optional[Path]:
        # client ids are used as file names; refuse anything path-like
        if Path(client_id).name != client_id or client_id.startswith("."):
            return None
        for suffix in TENANT_FILE_SUFFIXES:
            candidate = self.directory / f"{client_id}{suffix}"
            if candidate.is_file():
                return candidate
        return None

    def _load(self, path: Path, client_id: str) -> TenantConfig:
        with open(path, "r", encoding="utf-8") as f:
            if path.suffix == ".json":
                raw = json.load(f)
            else:
                raw = yaml.safe_load(f)
        if not isinstance(raw, dict):
            raise ConfigurationError(
                f"Tenant config for {client_id} must be a mapping",
                details={"path": str(path)},
            )
        raw.setdefault("client_id", client_id)
        if raw["client_id"] != client_id:
            raise ConfigurationError(
                f"Tenant config {path.name} declares client_id {raw['client_id']!r}",
                details={"path": str(path), "client_id": client_id},
            )
        return TenantConfig(**raw)
