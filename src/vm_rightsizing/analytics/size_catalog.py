"""Immutable VM size catalog: downgrade/upgrade paths and monthly costs."""

from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Union

import structlog
import yaml

from ..core.exceptions import ConfigurationException

logger = structlog.get_logger(__name__)

DEFAULT_CATALOG_RESOURCE = "vm_sizes.yaml"


class SizeCatalog:
    """Size-mapping service injected into the classification engine and AI augmenter.

    Lookups are case-insensitive and return the canonical size name.
    Unknown sizes yield ``None``.
    """

    def __init__(self, sizes: Mapping[str, Mapping[str, Any]], downgrades: Mapping[str, str],
                 upgrades: Mapping[str, str], source: str = "inline"):
        self._sizes = MappingProxyType({name: MappingProxyType(dict(spec)) for name, spec in sizes.items()})
        self._downgrades = MappingProxyType(dict(downgrades))
        self._upgrades = MappingProxyType(dict(upgrades))
        names = set(self._sizes) | set(self._downgrades) | set(self._upgrades)
        names |= set(self._downgrades.values()) | set(self._upgrades.values())
        self._canonical = MappingProxyType({name.lower(): name for name in names})
        self.source = source

    @classmethod
    def from_dict(cls, data: Dict[str, Any], source: str = "inline") -> "SizeCatalog":
        if not isinstance(data, dict):
            raise ConfigurationException(f"Size catalog {source} must be a mapping")
        try:
            return cls(
                sizes=data.get("sizes") or {},
                downgrades=data.get("downgrades") or {},
                upgrades=data.get("upgrades") or {},
                source=source,
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise ConfigurationException(f"Invalid size catalog {source}: {e}")

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "SizeCatalog":
        path = Path(path)
        if not path.exists():
            raise ConfigurationException(f"Size catalog not found: {path}")
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
        catalog = cls.from_dict(data, source=str(path))
        logger.info(f"Loaded size catalog from {path}", sizes=len(catalog))
        return catalog

    @classmethod
    def default(cls) -> "SizeCatalog":
        """Catalog shipped with the package."""
        text = resources.files("vm_rightsizing.data").joinpath(DEFAULT_CATALOG_RESOURCE).read_text()
        return cls.from_dict(yaml.safe_load(text), source=DEFAULT_CATALOG_RESOURCE)

    def canonical(self, size: Optional[str]) -> Optional[str]:
        if not size:
            return None
        return self._canonical.get(size.strip().lower())

    def downgrade(self, size: Optional[str]) -> Optional[str]:
        name = self.canonical(size)
        return self._downgrades.get(name) if name else None

    def upgrade(self, size: Optional[str]) -> Optional[str]:
        name = self.canonical(size)
        return self._upgrades.get(name) if name else None

    def _spec(self, size: Optional[str]) -> Mapping[str, Any]:
        name = self.canonical(size)
        return self._sizes.get(name, {}) if name else {}

    def monthly_cost(self, size: Optional[str]) -> float:
        """Monthly cost in USD; unknown sizes cost 0."""
        return float(self._spec(size).get("monthly_cost", 0.0))

    def vcpus(self, size: Optional[str]) -> Optional[int]:
        value = self._spec(size).get("vcpus")
        return int(value) if value is not None else None

    def memory_gb(self, size: Optional[str]) -> Optional[float]:
        value = self._spec(size).get("memory_gb")
        return float(value) if value is not None else None

    def family(self, size: Optional[str]) -> Optional[str]:
        return self._spec(size).get("family")

    def __contains__(self, size: Any) -> bool:
        return isinstance(size, str) and self.canonical(size) is not None

    def __len__(self) -> int:
        return len(self._sizes)
