from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from ..paths import GATEWAY_PORT

logger = logging.getLogger("clawboot.onboard")


class OnboardError(RuntimeError):
    pass


@dataclass(frozen=True)
class AuthStrategy:
    name: str
    args: List[str] = field(default_factory=list, repr=False)


def resolve_auth(env: Mapping[str, str]) -> Optional[AuthStrategy]:
    """First match wins: AI Gateway key > Anthropic key > OpenAI key."""
    gw_key = str(env.get("CLOUDFLARE_AI_GATEWAY_API_KEY") or "")
    gw_account = str(env.get("CF_AI_GATEWAY_ACCOUNT_ID") or "")
    gw_id = str(env.get("CF_AI_GATEWAY_GATEWAY_ID") or "")
    if gw_key and gw_account and gw_id:
        return AuthStrategy(
            name="cloudflare-ai-gateway-api-key",
            args=[
                "--auth-choice",
                "cloudflare-ai-gateway-api-key",
                "--cloudflare-ai-gateway-account-id",
                gw_account,
                "--cloudflare-ai-gateway-gateway-id",
                gw_id,
                "--cloudflare-ai-gateway-api-key",
                gw_key,
            ],
        )
    anthropic = str(env.get("ANTHROPIC_API_KEY") or "")
    if anthropic:
        return AuthStrategy(name="apiKey", args=["--auth-choice", "apiKey", "--anthropic-api-key", anthropic])
    openai = str(env.get("OPENAI_API_KEY") or "")
    if openai:
        return AuthStrategy(
            name="openai-api-key", args=["--auth-choice", "openai-api-key", "--openai-api-key", openai]
        )
    return None


def onboard_command(auth: Optional[AuthStrategy], *, binary: str = "openclaw") -> List[str]:
    return [
        binary,
        "onboard",
        "--non-interactive",
        "--accept-risk",
        "--mode",
        "local",
        *(auth.args if auth is not None else []),
        "--gateway-port",
        str(GATEWAY_PORT),
        "--gateway-bind",
        "lan",
        # Channels and skills are patched in later; health is checked by the worker.
        "--skip-channels",
        "--skip-skills",
        "--skip-health",
    ]


def run_onboard(env: Mapping[str, str], *, binary: str = "openclaw") -> Optional[AuthStrategy]:
    auth = resolve_auth(env)
    if auth is None:
        logger.warning("no AI provider credentials found, onboarding without auth", extra={"stage": "onboarding"})
    else:
        logger.info("onboarding with auth choice %s", auth.name, extra={"stage": "onboarding"})
    try:
        p = subprocess.run(onboard_command(auth, binary=binary), env=dict(env), check=False)
    except OSError as e:
        raise OnboardError(f"failed to run {binary} onboard: {e}") from e
    if p.returncode != 0:
        raise OnboardError(f"{binary} onboard exited with code {p.returncode}")
    logger.info("onboard completed", extra={"stage": "onboarding"})
    return auth
