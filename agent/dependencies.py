"""
External tool availability checks.

Required for every task: GitHub CLI, git, the platform's host shell and the
template script itself. The editor is only reported.
"""

import asyncio
import logging
import sys
from typing import Dict, List, Tuple

from .config import AgentConfig
from .errors import DependencyMissingError
from .process_runner import resolve_script_path

logger = logging.getLogger("dependencies")

CHECK_TIMEOUT_SECONDS = 15
REQUIRED = ("gh", "git", "shell", "script")

DISPLAY_NAMES = {
    "gh": "GitHub CLI",
    "git": "Git",
    "shell": "host shell",
    "script": "template script",
    "vscode": "VS Code",
}


async def check_command(*command: str) -> bool:
    """True if the command starts and exits with status 0."""
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError:
        return False

    try:
        await asyncio.wait_for(process.wait(), timeout=CHECK_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        logger.warning(f"Dependency check timed out: {' '.join(command)}")
        return False
    return process.returncode == 0


class DependencyChecker:
    """Checks that the tools the template script needs are present."""

    def __init__(self, config: AgentConfig, platform: str = sys.platform):
        self.config = config
        self.platform = platform

    def _shell_probe(self) -> Tuple[str, ...]:
        if self.platform == "win32":
            return ("powershell", "-Command", "Write-Host OK")
        return ("bash", "--version")

    async def check(self) -> Dict[str, bool]:
        checks = {
            "gh": await check_command("gh", "--version"),
            "git": await check_command("git", "--version"),
            "shell": await check_command(*self._shell_probe()),
            "script": resolve_script_path(self.config.script_path, self.platform).is_file(),
            "vscode": (
                await check_command("code", "--version")
                if self.config.auto_open_vscode else True
            ),
        }
        logger.info(f"Dependency check: {checks}")
        return checks

    async def require(self) -> Dict[str, bool]:
        """Raise DependencyMissingError if any required tool is unavailable."""
        checks = await self.check()
        missing: List[str] = [DISPLAY_NAMES[name] for name in REQUIRED if not checks[name]]
        if missing:
            raise DependencyMissingError(f"Missing required dependencies: {', '.join(missing)}")
        if not checks["vscode"]:
            logger.warning("VS Code not found; the editor will not open")
        return checks
