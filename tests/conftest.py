"""
Pytest configuration for agent tests.

This module provides:
1. Agent configuration pointing at temporary directories
2. Stubs for the credential and dependency collaborators
3. A fake template script that records its arguments and environment
"""

import stat
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional

import httpx
import pytest

from agent.config import AgentConfig
from agent.credentials import CredentialResolver
from agent.errors import AuthenticationError, DependencyMissingError


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------
class FakeClock:
    """Controllable clock for time-based store behaviour."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class StubCredentials:
    """Credential resolver stand-in with a fixed outcome."""

    def __init__(self, token: Optional[str] = "ghp_test_token"):
        self.token = token
        self.calls = 0

    async def require_token(self) -> str:
        self.calls += 1
        if not self.token:
            raise AuthenticationError("GitHub authentication required. Please run: gh auth login")
        return self.token

    async def check_startup_auth(self) -> bool:
        return bool(self.token)


class StubDependencies:
    """Dependency checker stand-in."""

    def __init__(self, missing: Optional[List[str]] = None):
        self.missing = missing or []

    async def require(self) -> Dict[str, bool]:
        if self.missing:
            raise DependencyMissingError(
                f"Missing required dependencies: {', '.join(self.missing)}"
            )
        return {}


def github_user_transport(status_code: int = 200) -> httpx.MockTransport:
    """Mock of the GitHub identity endpoint."""
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/user"
        return httpx.Response(status_code, json={"login": "octocat"})
    return httpx.MockTransport(handler)


# Records "$@" one per line and the token variables, then runs the scenario
FAKE_SCRIPT = """#!/usr/bin/env bash
printf '%s\\n' "$@" > "{record_dir}/args.txt"
echo "GITHUB_TOKEN=$GITHUB_TOKEN" > "{record_dir}/env.txt"
echo "GH_TOKEN=$GH_TOKEN" >> "{record_dir}/env.txt"
if [ "$2" = "missing-template" ]; then
    echo "template not found" >&2
    exit 1
fi
mkdir -p "$4"
echo "Repository $4 created from $2"
exit 0
"""


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def record_dir(tmp_path) -> Path:
    path = tmp_path / "record"
    path.mkdir()
    return path


@pytest.fixture
def fake_script(tmp_path, record_dir) -> Path:
    """Bash template script used in place of the real one."""
    script = tmp_path / "fork_template_repo_simple.sh"
    script.write_text(FAKE_SCRIPT.format(record_dir=record_dir))
    script.chmod(script.stat().st_mode | stat.S_IEXEC)
    return script


@pytest.fixture
def agent_config(tmp_path, fake_script) -> AgentConfig:
    work_dir = tmp_path / "workspace"
    work_dir.mkdir()
    return AgentConfig(
        work_dir=work_dir,
        script_path=fake_script.with_suffix(".ps1"),
        auto_open_vscode=True,
        github_token="ghp_test_token",
        log_dir=tmp_path,
    )


@pytest.fixture
def verified_credentials(agent_config) -> CredentialResolver:
    return CredentialResolver(agent_config, transport=github_user_transport(200))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
