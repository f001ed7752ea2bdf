"""Startup installation of extra Python and NPM packages."""

import sys
from importlib import metadata
from typing import Callable, List, Optional

from packaging.requirements import InvalidRequirement, Requirement

from odoosupervisor.errors import SupervisorError


def split_package_list(value: Optional[str]) -> List[str]:
    return [item.strip() for item in (value or "").split(",") if item.strip()]


class PackageService:
    """Installs packages only when they are missing or at the wrong version."""

    def __init__(
        self,
        run_cmd: Callable,
        logger,
        installed_version: Callable[[str], str] = metadata.version,
        python_executable: str = sys.executable,
    ):
        self.run_cmd = run_cmd
        self.logger = logger
        self.installed_version = installed_version
        self.python_executable = python_executable

    def python_requirement_satisfied(self, requirement: str) -> bool:
        try:
            parsed = Requirement(requirement)
        except InvalidRequirement as exc:
            raise SupervisorError(f"Invalid PY_INSTALL entry '{requirement}': {exc}") from exc

        try:
            installed = self.installed_version(parsed.name)
        except metadata.PackageNotFoundError:
            self.logger.info("  [need] %s needs installation", requirement)
            return False

        if parsed.specifier and not parsed.specifier.contains(installed, prereleases=True):
            self.logger.info("  [need] %s needs upgrade (installed %s)", requirement, installed)
            return False

        self.logger.info("  [ok] %s already installed (version: %s)", parsed.name, installed)
        return True

    def ensure_python_packages(self, py_install: Optional[str]) -> bool:
        """Returns True when an installation ran."""
        packages = split_package_list(py_install)
        if not packages:
            self.logger.info("PY_INSTALL not set, skipping Python package installation.")
            return False

        self.logger.info("Checking Python packages: %s...", ", ".join(packages))
        missing = [pkg for pkg in packages if not self.python_requirement_satisfied(pkg)]
        if not missing:
            self.logger.info("All Python packages already installed.")
            return False

        self.logger.info("Installing Python packages: %s...", " ".join(packages))
        self.run_cmd(
            [self.python_executable, "-m", "pip", "install", "--no-cache-dir"] + packages,
            check=True,
            capture_output=True,
        )
        self.logger.info("Python packages installed successfully.")
        return True

    def ensure_npm_packages(self, npm_install: Optional[str]) -> bool:
        packages = split_package_list(npm_install)
        if not packages:
            self.logger.info("NPM_INSTALL not set, skipping NPM package installation.")
            return False

        self.logger.info("Checking NPM packages: %s...", ", ".join(packages))
        missing = []
        for pkg in packages:
            result = self.run_cmd(
                ["npm", "list", "-g", pkg, "--depth=0"], check=False, capture_output=True
            )
            if result.returncode == 0:
                self.logger.info("  [ok] %s already installed", pkg)
            else:
                self.logger.info("  [need] %s needs installation", pkg)
                missing.append(pkg)

        if not missing:
            self.logger.info("All NPM packages already installed.")
            return False

        self.logger.info("Installing NPM packages: %s...", " ".join(packages))
        self.run_cmd(["npm", "install", "-g"] + packages, check=True, capture_output=True)
        self.logger.info("NPM packages installed successfully.")
        return True
