"""Odoo configuration generation from declared ``conf.*`` options."""

import os
import tempfile
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from packaging import version

from odoosupervisor.constants import (
    CONFIG_FILE_MODE,
    CONFIG_SECTION,
    OPTION_PREFIX,
    SYNCED_ADDONS_DIR,
    SYNCED_ADDONS_PATHS,
)
from odoosupervisor.errors import SupervisorError
from odoosupervisor.models import ResourceProfile

# (first major version, legacy key, new key)
VERSION_RENAMES: Tuple[Tuple[int, str, str], ...] = ((17, "longpolling_port", "gevent_port"),)


class OptionSource:
    """Provides declared application options as an ordered mapping."""

    def options(self) -> Dict[str, str]:
        raise NotImplementedError


class EnvironmentOptionSource(OptionSource):
    """Reads ``conf.<key>=<value>`` variables in environment order."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None, prefix: str = OPTION_PREFIX):
        self.environ = os.environ if environ is None else environ
        self.prefix = prefix

    def options(self) -> Dict[str, str]:
        declared: Dict[str, str] = {}
        for name, value in self.environ.items():
            if name.startswith(self.prefix) and len(name) > len(self.prefix):
                declared[name[len(self.prefix):]] = value
        return declared


class StaticOptionSource(OptionSource):
    def __init__(self, declared: Mapping[str, str]):
        self.declared = dict(declared)

    def options(self) -> Dict[str, str]:
        return dict(self.declared)


class ConfigDocument:
    """Ordered option mapping rendered as an INI ``[options]`` section."""

    def __init__(self, options: Optional[Iterable[Tuple[str, str]]] = None):
        self._options: Dict[str, str] = dict(options or [])

    def __contains__(self, key: str) -> bool:
        return key in self._options

    def __getitem__(self, key: str) -> str:
        return self._options[key]

    def __eq__(self, other) -> bool:
        if not isinstance(other, ConfigDocument):
            return NotImplemented
        return list(self.items()) == list(other.items())

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return self._options.get(key, default)

    def keys(self) -> List[str]:
        return list(self._options.keys())

    def items(self) -> List[Tuple[str, str]]:
        return list(self._options.items())

    def set(self, key: str, value: str):
        self._options[key] = value

    def remove(self, key: str):
        self._options.pop(key, None)

    def rename(self, old_key: str, new_key: str):
        """Renames a key keeping its position."""
        self._options = {
            (new_key if key == old_key else key): value for key, value in self._options.items()
        }

    def render(self) -> str:
        lines = [f"[{CONFIG_SECTION}]"]
        lines.extend(f"{key} = {value}" for key, value in self._options.items())
        return "\n".join(lines) + "\n"


def parse_config_file(path: str) -> ConfigDocument:
    """Reads back a generated document, keeping option order."""
    document = ConfigDocument()
    with open(path, "r", encoding="utf-8") as file_obj:
        for line in file_obj:
            stripped = line.strip()
            if not stripped or stripped.startswith(("#", ";", "[")) or "=" not in stripped:
                continue
            key, value = stripped.split("=", 1)
            document.set(key.strip(), value.strip())
    return document


def _has_content(directory: str) -> bool:
    try:
        return os.path.isdir(directory) and any(os.scandir(directory))
    except OSError:
        return False


class ConfigGenerator:
    """Builds the application configuration document.

    Declared options are copied verbatim and always win over auto-tuned
    resource keys, which are only appended when missing.
    """

    def __init__(
        self,
        odoo_version: str,
        logger,
        synced_addons_dir: str = SYNCED_ADDONS_DIR,
        synced_addons_paths: Tuple[str, ...] = SYNCED_ADDONS_PATHS,
        dir_has_content: Callable[[str], bool] = _has_content,
    ):
        self.odoo_version = odoo_version
        self.logger = logger
        self.synced_addons_dir = synced_addons_dir
        self.synced_addons_paths = synced_addons_paths
        self.dir_has_content = dir_has_content

    @property
    def major_version(self) -> int:
        try:
            return version.parse(self.odoo_version.strip()).major
        except version.InvalidVersion:
            return 0

    def generate(
        self,
        options: Mapping[str, str],
        profile: Optional[ResourceProfile] = None,
    ) -> ConfigDocument:
        document = ConfigDocument(options.items())
        for key, value in document.items():
            self.logger.debug("  Config: %s = %s", key, value)

        self._augment_addons_path(document)
        self._apply_version_renames(document)

        if profile is not None:
            for key, value in profile.as_options().items():
                if key in document:
                    self.logger.info("  Config: %s kept from declared option", key)
                    continue
                document.set(key, value)
                self.logger.info("  Config: %s = %s (auto)", key, value)

        return document

    def _augment_addons_path(self, document: ConfigDocument):
        if not self.dir_has_content(self.synced_addons_dir):
            self.logger.info("  %s is empty, skipping", self.synced_addons_dir)
            return
        if "addons_path" not in document:
            return

        entries = [entry.strip() for entry in document["addons_path"].split(",") if entry.strip()]
        missing = [path for path in self.synced_addons_paths if path not in entries]
        if not missing:
            return

        document.set("addons_path", ",".join(entries + missing))
        self.logger.info("  Added %s to addons_path (content detected)", self.synced_addons_dir)

    def _apply_version_renames(self, document: ConfigDocument):
        major = self.major_version
        for threshold, legacy_key, new_key in VERSION_RENAMES:
            if major < threshold or legacy_key not in document:
                continue
            if new_key in document:
                self.logger.warning(
                    "  Both %s and %s declared; dropping %s", legacy_key, new_key, legacy_key
                )
                document.remove(legacy_key)
                continue
            document.rename(legacy_key, new_key)
            self.logger.info("  Mapped: %s -> %s (Odoo %s)", legacy_key, new_key, self.odoo_version)

    def write(self, document: ConfigDocument, path: str) -> str:
        directory = os.path.dirname(path) or "."
        try:
            os.makedirs(directory, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(prefix=".erp-conf-", dir=directory)
        except OSError as exc:
            raise SupervisorError(f"Could not write configuration '{path}': {exc}") from exc

        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as file_obj:
                file_obj.write(document.render())
            os.chmod(temp_path, CONFIG_FILE_MODE)
            os.replace(temp_path, path)
        except OSError as exc:
            raise SupervisorError(f"Could not write configuration '{path}': {exc}") from exc
        finally:
            if os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass

        self.logger.info("Configuration file generated at %s", path)
        return path
