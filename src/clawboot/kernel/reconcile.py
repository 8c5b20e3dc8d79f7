"""Config reconciliation: environment overlays on top of openclaw.json.

Each overlay is a named function `(cfg, env) -> cfg` that owns one subtree.
They run in a fixed order; a later rule may intentionally overwrite what an
earlier one wrote. Channel rules replace their whole subtree so keys from an
older persisted config cannot survive (the gateway validates channel
objects strictly).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from ..contracts.v1 import (
    AgentDefaults,
    AgentsConfig,
    ChannelsConfig,
    ControlUi,
    DiscordChannel,
    DiscordDm,
    GatewayConfig,
    McpServerEntry,
    ModelDescriptor,
    ModelsConfig,
    PluginEntry,
    PluginsConfig,
    ProviderEntry,
    RuntimeConfig,
    SlackChannel,
    TelegramChannel,
)
from ..paths import GATEWAY_PORT
from ..util.conv import split_csv
from ..util.fs import atomic_write_json, read_json
from .sidecars import build_specs

logger = logging.getLogger("clawboot.reconcile")

Env = Mapping[str, str]

TRUSTED_PROXIES = ["10.1.0.0"]
MCP_PLUGIN_ID = "mcp-integration"
DEFAULT_DM_POLICY = "pairing"
MODEL_CONTEXT_WINDOW = 131072
MODEL_MAX_TOKENS = 8192


def _get(env: Env, key: str) -> str:
    return str(env.get(key) or "")


@dataclass(frozen=True)
class OverlayRule:
    name: str
    apply: Callable[[RuntimeConfig, Env], RuntimeConfig]


def apply_gateway(cfg: RuntimeConfig, env: Env) -> RuntimeConfig:
    gw = cfg.gateway or GatewayConfig()
    gw.port = GATEWAY_PORT
    gw.mode = "local"
    gw.trusted_proxies = list(TRUSTED_PROXIES)
    # No token auth: Cloudflare Access authenticates in front of the sandbox.
    if _get(env, "OPENCLAW_DEV_MODE") == "true":
        ui = gw.control_ui or ControlUi()
        ui.allow_insecure_auth = True
        gw.control_ui = ui
    cfg.gateway = gw
    return cfg


def split_model_ref(raw: str) -> Tuple[str, str]:
    """'provider/model-id' -> (provider, model-id). Only the first '/' splits.

    Without a slash the whole value is the provider and the model id is empty,
    which the override treats as unusable. The old node patch script instead
    took the whole value as the model id under an empty provider.
    """
    provider, sep, model_id = raw.partition("/")
    return provider, (model_id if sep else "")


def resolve_gateway_base_url(provider: str, env: Env) -> Optional[str]:
    account_id = _get(env, "CF_AI_GATEWAY_ACCOUNT_ID")
    gateway_id = _get(env, "CF_AI_GATEWAY_GATEWAY_ID")
    if account_id and gateway_id:
        url = f"https://gateway.ai.cloudflare.com/v1/{account_id}/{gateway_id}/{provider}"
        if provider == "workers-ai":
            url += "/v1"
        return url
    cf_account = _get(env, "CF_ACCOUNT_ID")
    if provider == "workers-ai" and cf_account:
        return f"https://api.cloudflare.com/client/v4/accounts/{cf_account}/ai/v1"
    return None


def apply_model_override(cfg: RuntimeConfig, env: Env) -> RuntimeConfig:
    raw = _get(env, "CF_AI_GATEWAY_MODEL")
    if not raw:
        return cfg

    provider, model_id = split_model_ref(raw)
    base_url = resolve_gateway_base_url(provider, env) if provider and model_id else None
    api_key = _get(env, "CLOUDFLARE_AI_GATEWAY_API_KEY")
    if not base_url or not api_key:
        logger.warning(
            "CF_AI_GATEWAY_MODEL set but missing required config (account ID, gateway ID, or API key)",
            extra={"rule": "model_override"},
        )
        return cfg

    provider_name = f"cf-ai-gw-{provider}"
    models = cfg.models or ModelsConfig()
    providers = dict(models.providers or {})
    providers[provider_name] = ProviderEntry(
        base_url=base_url,
        api_key=api_key,
        api="anthropic-messages" if provider == "anthropic" else "openai-completions",
        models=[
            ModelDescriptor(
                id=model_id,
                name=model_id,
                context_window=MODEL_CONTEXT_WINDOW,
                max_tokens=MODEL_MAX_TOKENS,
            )
        ],
    )
    models.providers = providers
    cfg.models = models

    agents = cfg.agents or AgentsConfig()
    defaults = agents.defaults or AgentDefaults()
    defaults.model = {"primary": f"{provider_name}/{model_id}"}
    agents.defaults = defaults
    cfg.agents = agents

    logger.info(
        "AI Gateway model override: provider=%s model=%s via %s",
        provider_name,
        model_id,
        base_url,
        extra={"rule": "model_override"},
    )
    return cfg


def resolve_allow_from(policy: str, explicit: str) -> Optional[List[str]]:
    """An explicit allow-list always wins; otherwise 'open' means everyone."""
    if explicit:
        return split_csv(explicit)
    if policy == "open":
        return ["*"]
    return None


def _channels(cfg: RuntimeConfig) -> ChannelsConfig:
    if cfg.channels is None:
        cfg.channels = ChannelsConfig()
    return cfg.channels


def apply_telegram(cfg: RuntimeConfig, env: Env) -> RuntimeConfig:
    token = _get(env, "TELEGRAM_BOT_TOKEN")
    if not token:
        return cfg
    policy = _get(env, "TELEGRAM_DM_POLICY") or DEFAULT_DM_POLICY
    channel = TelegramChannel(bot_token=token, enabled=True, dm_policy=policy)
    allow_from = resolve_allow_from(policy, _get(env, "TELEGRAM_DM_ALLOW_FROM"))
    if allow_from is not None:
        channel.allow_from = allow_from
    _channels(cfg).telegram = channel
    return cfg


def apply_discord(cfg: RuntimeConfig, env: Env) -> RuntimeConfig:
    token = _get(env, "DISCORD_BOT_TOKEN")
    if not token:
        return cfg
    policy = _get(env, "DISCORD_DM_POLICY") or DEFAULT_DM_POLICY
    dm = DiscordDm(policy=policy)
    allow_from = resolve_allow_from(policy, _get(env, "DISCORD_DM_ALLOW_FROM"))
    if allow_from is not None:
        dm.allow_from = allow_from
    _channels(cfg).discord = DiscordChannel(token=token, enabled=True, dm=dm)
    return cfg


def apply_slack(cfg: RuntimeConfig, env: Env) -> RuntimeConfig:
    bot_token = _get(env, "SLACK_BOT_TOKEN")
    app_token = _get(env, "SLACK_APP_TOKEN")
    if not (bot_token and app_token):
        return cfg
    _channels(cfg).slack = SlackChannel(bot_token=bot_token, app_token=app_token, enabled=True)
    return cfg


def mcp_server_map(env: Env) -> Dict[str, McpServerEntry]:
    return {
        spec.name: McpServerEntry(enabled=True, transport="http", url=spec.mcp_url)
        for spec in build_specs(env)
    }


def apply_mcp_plugin(cfg: RuntimeConfig, env: Env) -> RuntimeConfig:
    servers = mcp_server_map(env)
    if not servers:
        logger.info("MCP: no MCP credentials provided, skipping plugin config", extra={"rule": "mcp_plugin"})
        return cfg

    plugins = cfg.plugins or PluginsConfig()
    plugins.enabled = True
    allow = list(plugins.allow or [])
    if MCP_PLUGIN_ID not in allow:
        allow.append(MCP_PLUGIN_ID)
    plugins.allow = allow
    entries = dict(plugins.entries or {})
    entries[MCP_PLUGIN_ID] = PluginEntry(
        enabled=True,
        config={
            "enabled": True,
            "servers": {name: s.model_dump(mode="json", by_alias=True) for name, s in servers.items()},
        },
    ).model_dump(mode="json", by_alias=True, exclude_unset=True)
    plugins.entries = entries
    cfg.plugins = plugins
    logger.info("MCP: plugin configured with %d server(s)", len(servers), extra={"rule": "mcp_plugin"})
    return cfg


OVERLAY_RULES: Tuple[OverlayRule, ...] = (
    OverlayRule("gateway", apply_gateway),
    OverlayRule("model_override", apply_model_override),
    OverlayRule("telegram", apply_telegram),
    OverlayRule("discord", apply_discord),
    OverlayRule("slack", apply_slack),
    OverlayRule("mcp_plugin", apply_mcp_plugin),
)


def reconcile(
    loaded: Optional[Dict[str, object]],
    env: Env,
    *,
    rules: Sequence[OverlayRule] = OVERLAY_RULES,
) -> RuntimeConfig:
    """Apply every overlay rule, in order, to a copy of `loaded`."""
    cfg = RuntimeConfig.from_document(loaded)
    for rule in rules:
        logger.debug("applying overlay %s", rule.name, extra={"rule": rule.name})
        cfg = rule.apply(cfg, env)
    return cfg


def load_config(path: Path) -> Dict[str, object]:
    doc = read_json(path)
    if not doc and not path.exists():
        logger.info("no config at %s, starting with empty config", path)
    return doc


def write_config(path: Path, cfg: RuntimeConfig) -> None:
    atomic_write_json(path, cfg.to_document(), indent=2)


def reconcile_file(path: Path, env: Env) -> RuntimeConfig:
    """Load, overlay and atomically rewrite the config file."""
    logger.info("patching config at %s", path)
    cfg = reconcile(load_config(path), env)
    write_config(path, cfg)
    logger.info("configuration patched successfully")
    return cfg
