"""
GitHub Credential Resolution

Token precedence:
1. GITHUB_TOKEN from configuration
2. GH_TOKEN from configuration (alias)
3. `gh auth token` output, accepted only with a GitHub token prefix

A token must also pass verification against the GitHub identity endpoint
before any token-consuming command is spawned.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

import httpx

from .config import AgentConfig
from .errors import AuthenticationError

logger = logging.getLogger("credentials")

GITHUB_API_BASE = "https://api.github.com"
USER_AGENT = "jetsite-agent"
GITHUB_TOKEN_PREFIXES: Tuple[str, ...] = ("gho_", "ghp_", "ghu_", "ghs_", "ghr_", "github_pat_")
CLI_TIMEOUT_SECONDS = 15
VERIFY_TIMEOUT_SECONDS = 10.0
# Seconds a successful verification is reused by advisory checks
VERIFY_CACHE_TTL_SECONDS = 300


class CredentialResolver:
    """Resolves and verifies the GitHub token used by spawned commands."""

    def __init__(
        self,
        config: AgentConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        cli_command: Tuple[str, ...] = ("gh", "auth", "token"),
    ):
        self.config = config
        self._transport = transport
        self._cli_command = cli_command
        self._verified_token: Optional[str] = None
        self._verified_at: Optional[datetime] = None

    async def resolve_token(self) -> Optional[str]:
        """Return the first available token in precedence order, or None."""
        if self.config.github_token:
            return self.config.github_token

        if self.config.gh_token:
            return self.config.gh_token

        token = await self._token_from_cli()
        if token:
            logger.info("GitHub token obtained from CLI")
        return token

    async def _token_from_cli(self) -> Optional[str]:
        try:
            process = await asyncio.create_subprocess_exec(
                *self._cli_command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning(f"Could not get GitHub token from CLI: {e}")
            return None

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=CLI_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning(f"GitHub CLI token export timed out after {CLI_TIMEOUT_SECONDS}s")
            return None

        if process.returncode != 0:
            logger.warning(
                f"Could not get GitHub token from CLI: {stderr.decode(errors='replace').strip()}"
            )
            return None

        token = stdout.decode(errors="replace").strip()
        if token and token.startswith(GITHUB_TOKEN_PREFIXES):
            return token

        logger.warning("GitHub CLI returned a value without a recognised token prefix")
        return None

    async def verify(self, token: str, use_cache: bool = True) -> bool:
        """
        Check the token against the GitHub identity endpoint.

        True only for HTTP 200; any other status or transport error is False.
        With use_cache, a recent successful check of the same token is reused.
        """
        if use_cache and self._is_cached(token):
            return True

        headers = {
            "Authorization": f"token {token}",
            "User-Agent": USER_AGENT,
            "Accept": "application/vnd.github.v3+json",
        }
        async with httpx.AsyncClient(
            timeout=VERIFY_TIMEOUT_SECONDS,
            transport=self._transport,
        ) as client:
            try:
                response = await client.get(f"{GITHUB_API_BASE}/user", headers=headers)
            except httpx.HTTPError as e:
                logger.error(f"GitHub auth error: {e}")
                return False

        if response.status_code == 200:
            logger.info("GitHub authentication verified")
            self._verified_token = token
            self._verified_at = datetime.now(timezone.utc)
            return True

        logger.error(f"GitHub auth failed: {response.status_code}")
        return False

    def _is_cached(self, token: str) -> bool:
        if token != self._verified_token or self._verified_at is None:
            return False
        age = (datetime.now(timezone.utc) - self._verified_at).total_seconds()
        return age < VERIFY_CACHE_TTL_SECONDS

    async def require_token(self) -> str:
        """
        Resolve and verify, raising AuthenticationError on any failure.

        Always checks against the API, so a revoked token is caught before
        the next spawn.
        """
        token = await self.resolve_token()
        if not token:
            raise AuthenticationError("GitHub authentication required. Please run: gh auth login")

        if not await self.verify(token, use_cache=False):
            raise AuthenticationError(
                "GitHub authentication failed: token was rejected by the GitHub API"
            )
        return token

    async def check_startup_auth(self) -> bool:
        """Advisory start-up check; logs the outcome and never raises."""
        token = await self.resolve_token()
        if not token:
            logger.error("No GitHub token found. Please run: gh auth login")
            return False

        if await self.verify(token):
            return True

        logger.error("GitHub authentication failed - repository creation will fail")
        logger.error("   Please run: gh auth login")
        return False
