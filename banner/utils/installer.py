#!/usr/bin/env python3
import os
import sys
import logging
from typing import Dict, List, Optional

from banner.core import constants
from banner.core.config import dump_default_config
from banner.core.exceptions import BannerError, DependencyError, NetworkError, PrivilegeError
from banner.utils.commands import is_command_available, run_cmd
from banner.utils.logger import success

logger = logging.getLogger("banner.installer")

PACKAGE_TIMEOUT = 600


def ensure_root(command: str) -> None:
    if os.geteuid() != 0:
        raise PrivilegeError(command)


def missing_dependencies(dependencies: Dict[str, str] = constants.DEPENDENCIES) -> List[str]:
    """Package names whose command is not on PATH."""
    return [package for command, package in dependencies.items() if not is_command_available(command)]


def require_tools(dependencies: Dict[str, str] = constants.DEPENDENCIES) -> None:
    missing = missing_dependencies(dependencies)
    if missing:
        raise DependencyError("Required tools are missing, run 'banner install' first", missing)


def detect_package_manager() -> Optional[str]:
    for manager in constants.PACKAGE_MANAGERS:
        if is_command_available(manager):
            return manager
    return None


def check_dependencies(dependencies: Dict[str, str] = constants.DEPENDENCIES) -> None:
    """Install missing host tools with apt or yum."""
    missing = missing_dependencies(dependencies)
    if missing:
        logger.info("Installing missing dependencies: %s", " ".join(missing))
        manager = detect_package_manager()
        if manager is None:
            raise DependencyError("Package manager not found. Please install manually", missing)
        if manager == "apt":
            commands = [["apt", "update"], ["apt", "install", "-y", *missing]]
        else:
            commands = [["yum", "install", "-y", *missing]]
        for cmd in commands:
            proc = run_cmd(cmd, timeout=PACKAGE_TIMEOUT)
            if proc.returncode != 0:
                logger.debug("%s failed: %s", cmd[0], proc.stderr.strip())
                raise DependencyError("Failed to install dependencies", missing)
        still_missing = missing_dependencies(dependencies)
        if still_missing:
            raise DependencyError("Dependencies still missing after install", still_missing)
    success(logger, "All dependencies are installed.")


class Installer:
    """install / update / uninstall of banner itself."""

    def __init__(self, config_dir: str = constants.CONFIG_DIR):
        self.config_dir = config_dir
        self.config_path = os.path.join(config_dir, os.path.basename(constants.CONFIG_PATH))
        self.marker_path = os.path.join(config_dir, os.path.basename(constants.INSTALL_MARKER))

    def is_installed(self) -> bool:
        return os.path.exists(self.marker_path)

    def _write_marker(self):
        with open(self.marker_path, "w", encoding="utf-8") as f:
            f.write(f"{constants.__version__}\n")

    def install(self) -> None:
        logger.info("Installing %s...", constants.SCRIPT_NAME)
        check_dependencies()

        if self.is_installed():
            raise BannerError("Previous installation found", details="use the 'update' command to update")

        os.makedirs(self.config_dir, exist_ok=True)
        if not os.path.exists(self.config_path):
            with open(self.config_path, "w", encoding="utf-8") as f:
                f.write(dump_default_config())
            logger.info("Wrote default configuration to %s", self.config_path)
        self._write_marker()
        success(logger, "Installation completed successfully!")

    def update(self) -> None:
        logger.info("Updating %s...", constants.SCRIPT_NAME)
        if not self.is_installed():
            raise BannerError("Script is not installed", details="use the 'install' command first")

        source = f"git+{constants.REPO_URL}@{constants.BRANCH}"
        proc = run_cmd([sys.executable, "-m", "pip", "install", "--upgrade", source], timeout=PACKAGE_TIMEOUT)
        if proc.returncode != 0:
            tail = proc.stderr.strip().splitlines()[-1:] or [f"exit status {proc.returncode}"]
            raise NetworkError("Failed to download the update", details=tail[0])
        self._write_marker()
        success(logger, "Update completed successfully!")

    def uninstall(self, reconciler) -> None:
        logger.info("Uninstalling %s...", constants.SCRIPT_NAME)
        if not self.is_installed():
            logger.warning("Script is not installed.")
            return

        reconciler.unban_all()
        for path in (self.marker_path, self.config_path):
            if os.path.exists(path):
                os.remove(path)
        if os.path.isdir(self.config_dir) and not os.listdir(self.config_dir):
            os.rmdir(self.config_dir)

        proc = run_cmd([sys.executable, "-m", "pip", "uninstall", "-y", constants.SCRIPT_NAME],
                       timeout=PACKAGE_TIMEOUT)
        if proc.returncode != 0:
            tail = proc.stderr.strip().splitlines()[-1:] or [f"exit status {proc.returncode}"]
            raise BannerError(f"Failed to remove the {constants.SCRIPT_NAME} package", details=tail[0])
        success(logger, "Uninstallation completed successfully!")
