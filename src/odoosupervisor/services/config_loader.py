"""YAML defaults loader for odoo-supervisor settings."""

from pathlib import Path
from typing import Any, Dict, Iterable, Optional

import yaml

from odoosupervisor.errors import SupervisorError
from odoosupervisor.settings import SETTINGS_KEYS


class ConfigLoader:
    """Loads settings defaults keyed like the environment variables, in lower case.

    Only keys ``SupervisorSettings`` understands are accepted, so a typo in the
    file fails loudly instead of being ignored.
    """

    def __init__(self, supported_keys: Iterable[str] = SETTINGS_KEYS):
        self.supported_keys = frozenset(supported_keys)

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path)
        if not path.is_file():
            raise SupervisorError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise SupervisorError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise SupervisorError("Config file must contain a YAML mapping at the root.")

        unknown = sorted(str(key) for key in parsed if key not in self.supported_keys)
        if unknown:
            raise SupervisorError(f"Unknown configuration keys: {', '.join(unknown)}")

        return parsed
