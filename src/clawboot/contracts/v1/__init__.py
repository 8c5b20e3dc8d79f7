from __future__ import annotations

from .config import (
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
from .restore import RestoreResult, StateTreeName
from .sidecar import CredentialFile, SidecarReport, SidecarResult, SidecarSpec, SidecarStatus

__all__ = [
    "AgentDefaults",
    "AgentsConfig",
    "ChannelsConfig",
    "ControlUi",
    "CredentialFile",
    "DiscordChannel",
    "DiscordDm",
    "GatewayConfig",
    "McpServerEntry",
    "ModelDescriptor",
    "ModelsConfig",
    "PluginEntry",
    "PluginsConfig",
    "ProviderEntry",
    "RestoreResult",
    "RuntimeConfig",
    "SidecarReport",
    "SidecarResult",
    "SidecarSpec",
    "SidecarStatus",
    "SlackChannel",
    "StateTreeName",
    "TelegramChannel",
]
