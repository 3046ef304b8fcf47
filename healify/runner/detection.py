"""
Package manager and test script detection for a cloned project.
"""

import json
import logging
from pathlib import Path
from typing import Optional

from healify.errors import ExecutionError


logger = logging.getLogger(__name__)


# Lockfile precedence: first match wins, npm when none is present
LOCKFILES = (
    ("bun.lockb", "bun"),
    ("bun.lock", "bun"),
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
)

# Script precedence when no explicit command is configured
SCRIPT_PRECEDENCE = ("test:e2e", "test:playwright", "test")
DEFAULT_SCRIPT = "test"

INSTALL_COMMANDS = {
    "npm": ["npm", "ci", "--prefer-offline"],
    "yarn": ["yarn", "install", "--frozen-lockfile"],
    "pnpm": ["pnpm", "install", "--frozen-lockfile"],
    "bun": ["bun", "install", "--frozen-lockfile"],
}

BROWSER_INSTALL_COMMAND = ["npx", "playwright", "install", "chromium", "--with-deps"]


def read_package_json(workdir: Path) -> dict:
    """
    Load package.json from the project root.

    Raises:
        ExecutionError: If the file is missing, not valid JSON or not an object
    """
    path = Path(workdir) / "package.json"
    if not path.exists():
        raise ExecutionError("detect", "package.json not found in repository root")
    try:
        with open(path, "r", encoding="utf-8") as f:
            package_json = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ExecutionError("detect", f"package.json is not readable: {e}") from e
    if not isinstance(package_json, dict):
        raise ExecutionError("detect", f"package.json must contain a JSON object, got {type(package_json).__name__}")
    return package_json


def detect_package_manager(workdir: Path) -> str:
    """Pick the package manager from the lockfile present in workdir."""
    workdir = Path(workdir)
    for lockfile, manager in LOCKFILES:
        if (workdir / lockfile).exists():
            return manager
    return "npm"


def detect_test_script(package_json: dict, override: Optional[str] = None) -> str:
    """
    Choose the package.json script that runs the end-to-end suite.

    An explicit override always wins.
    """
    if override:
        return override

    scripts = package_json.get("scripts") or {}
    for name in SCRIPT_PRECEDENCE:
        if name in scripts:
            return name
    return DEFAULT_SCRIPT


def uses_playwright(package_json: dict) -> bool:
    """True if the project depends on Playwright."""
    deps = {}
    deps.update(package_json.get("dependencies") or {})
    deps.update(package_json.get("devDependencies") or {})
    return "@playwright/test" in deps or "playwright" in deps


def build_install_command(manager: str) -> list[str]:
    return list(INSTALL_COMMANDS.get(manager, INSTALL_COMMANDS["npm"]))


def build_test_command(manager: str, script: str) -> list[str]:
    """Command running a script with the JSON reporter."""
    if manager == "npm":
        # npm needs "--" to forward arguments to the script
        return ["npm", "run", script, "--", "--reporter=json"]
    return [manager, "run", script, "--reporter=json"]
