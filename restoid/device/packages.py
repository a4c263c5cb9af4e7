"""Installed package enumeration through the package manager shell."""

import logging
import re
import shlex
from typing import Dict, List, Optional

from ..engine.executor import ShellExecutor
from ..models.app import SelectableApp


logger = logging.getLogger(__name__)

VERSION_CODE_RE = re.compile(r"versionCode=(\d+)")
VERSION_NAME_RE = re.compile(r"versionName=(\S+)")


class PackageInspector:
    """Looks up installed third-party apps and probes paths on the device."""

    def __init__(self, executor: ShellExecutor):
        self.executor = executor
        self._cache: Dict[str, SelectableApp] = {}

    def list_user_packages(self) -> List[str]:
        result = self.executor.run("pm list packages -3")
        if not result.is_success:
            logger.error(f"Failed to list packages: {result.err}")
            return []
        packages = []
        for line in result.stdout:
            line = line.strip()
            if line.startswith("package:"):
                packages.append(line[len("package:"):].strip())
        return packages

    def get_app(self, package_name: str) -> Optional[SelectableApp]:
        """Current install info for a package, or None when it is not installed."""
        pkg = shlex.quote(package_name)
        path_result = self.executor.run(f"pm path {pkg}")
        apk_paths = [line.strip()[len("package:"):] for line in path_result.stdout
                     if line.strip().startswith("package:")]
        if not path_result.is_success or not apk_paths:
            self._cache.pop(package_name, None)
            return None

        dump = self.executor.run(f"dumpsys package {pkg} | grep -E 'versionName|versionCode'")
        version_code = 0
        version_name = "N/A"
        for line in dump.stdout:
            code_match = VERSION_CODE_RE.search(line)
            if code_match and not version_code:
                version_code = int(code_match.group(1))
            name_match = VERSION_NAME_RE.search(line)
            if name_match and version_name == "N/A":
                version_name = name_match.group(1)

        cached = self._cache.get(package_name)
        app = SelectableApp(
            display_name=package_name,
            package_name=package_name,
            version_name=version_name,
            version_code=version_code,
            apk_paths=apk_paths,
            is_selected=cached.is_selected if cached else True,
        )
        self._cache[package_name] = app
        return app

    def get_apps(self, package_names: List[str]) -> List[SelectableApp]:
        """Install info for the packages that are installed, in input order."""
        apps = []
        for name in package_names:
            app = self.get_app(name)
            if app is not None:
                apps.append(app)
        return apps

    def list_user_apps(self) -> List[SelectableApp]:
        apps = self.get_apps(self.list_user_packages())
        return sorted(apps, key=lambda a: a.display_name.lower())

    def path_exists(self, path: str) -> bool:
        return self.executor.succeeds(f"[ -e {shlex.quote(path)} ]")

    def directory_size(self, paths: List[str]) -> int:
        """Total size in bytes of the given paths as reported by `du -sb`."""
        if not paths:
            return 0
        result = self.executor.run("du -sb " + " ".join(shlex.quote(p) for p in paths))
        total = 0
        for line in result.stdout:
            parts = line.split()
            if parts and parts[0].isdigit():
                total += int(parts[0])
        return total
