"""
Template Registry loader.

Maps logical template names onto the identifiers of the VM templates they
are cloned from. Loaded from YAML or JSON:

    templates:
      ubuntu-22.04: 9000
      debian-12:
        vmid: 9001
        node: pve2
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from pve_provisioner.models.provisioning_models import TemplateRef

logger = logging.getLogger(__name__)


class TemplateRegistry:
    """Read-only name -> template lookup table."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize Template Registry.

        Args:
            config_path: Path to the registry file. Defaults to the
                        PROVISIONER_TEMPLATES_CONFIG environment variable;
                        without either the registry is empty.
        """
        self.config_path = config_path or os.getenv("PROVISIONER_TEMPLATES_CONFIG")
        self._templates: Dict[str, TemplateRef] = {}
        self._errors: List[str] = []

        if self.config_path:
            self.load()

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "TemplateRegistry":
        registry = cls.__new__(cls)
        registry.config_path = None
        registry._templates = {}
        registry._errors = []
        registry._load_entries(mapping)
        return registry

    def load(self) -> bool:
        """Load registry configuration from file.

        Returns:
            True if configuration loaded successfully, False otherwise.
        """
        self._errors.clear()
        self._templates = {}

        if not os.path.exists(self.config_path):
            self._errors.append(f"Configuration file not found: {self.config_path}")
            logger.warning(f"Template registry not found: {self.config_path}")
            return False

        try:
            path = Path(self.config_path)
            with open(self.config_path, "r", encoding="utf-8") as f:
                if path.suffix.lower() in [".yaml", ".yml"]:
                    config_data = yaml.safe_load(f)
                else:
                    config_data = json.load(f)
        except (OSError, ValueError, yaml.YAMLError) as e:
            self._errors.append(f"Failed to load configuration: {str(e)}")
            logger.error(f"Failed to load template registry {self.config_path}: {e}")
            return False

        if not isinstance(config_data, dict):
            self._errors.append("Configuration must be a dictionary")
            return False

        if "templates" not in config_data:
            self._errors.append("Configuration missing 'templates' field")
            return False

        self._load_entries(config_data["templates"] or {})
        logger.info(f"Loaded {len(self._templates)} templates from {self.config_path}")
        return len(self._errors) == 0

    def _load_entries(self, entries: Mapping[str, Any]):
        if not isinstance(entries, Mapping):
            self._errors.append("'templates' must be a mapping of name to identifier")
            return

        for name, entry in entries.items():
            node = None
            if isinstance(entry, Mapping):
                node = entry.get("node")
                entry = entry.get("vmid")
            try:
                vmid = int(entry)
            except (TypeError, ValueError):
                self._errors.append(f"{name}: invalid template identifier {entry!r}")
                continue
            self._templates[str(name)] = TemplateRef(name=str(name), vmid=vmid, node=node)

    def get(self, name: str) -> Optional[TemplateRef]:
        return self._templates.get(name)

    def names(self) -> List[str]:
        return sorted(self._templates)

    def as_mapping(self) -> Dict[str, int]:
        return {name: ref.vmid for name, ref in self._templates.items()}

    def get_errors(self) -> List[str]:
        return list(self._errors)
