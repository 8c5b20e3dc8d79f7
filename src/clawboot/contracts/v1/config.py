"""Typed view of openclaw.json.

Only the subtrees the reconciler writes are modelled. Every model allows
extra keys, so anything the gateway understands but we do not survives a
load/dump cycle untouched. Dumps use `exclude_unset`, so a field is written
only if it was present in the loaded document or assigned by an overlay.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _ConfigNode(BaseModel):
    model_config = ConfigDict(extra="allow", alias_generator=to_camel, populate_by_name=True)


class ControlUi(_ConfigNode):
    allow_insecure_auth: Optional[bool] = None


class GatewayConfig(_ConfigNode):
    port: Optional[int] = None
    mode: Optional[str] = None
    trusted_proxies: Optional[List[str]] = None
    control_ui: Optional[ControlUi] = None


class TelegramChannel(_ConfigNode):
    bot_token: Optional[str] = None
    enabled: Optional[bool] = None
    dm_policy: Optional[str] = None
    allow_from: Optional[List[Union[str, int]]] = None


class DiscordDm(_ConfigNode):
    policy: Optional[str] = None
    allow_from: Optional[List[Union[str, int]]] = None


class DiscordChannel(_ConfigNode):
    token: Optional[str] = None
    enabled: Optional[bool] = None
    dm: Optional[DiscordDm] = None


class SlackChannel(_ConfigNode):
    bot_token: Optional[str] = None
    app_token: Optional[str] = None
    enabled: Optional[bool] = None


class ChannelsConfig(_ConfigNode):
    telegram: Optional[TelegramChannel] = None
    discord: Optional[DiscordChannel] = None
    slack: Optional[SlackChannel] = None


class ModelDescriptor(_ConfigNode):
    id: Optional[str] = None
    name: Optional[str] = None
    context_window: Optional[int] = None
    max_tokens: Optional[int] = None


class ProviderEntry(_ConfigNode):
    base_url: Optional[str] = None
    api_key: Optional[str] = None
    api: Optional[str] = None
    models: Optional[List[ModelDescriptor]] = None


class ModelsConfig(_ConfigNode):
    providers: Optional[Dict[str, ProviderEntry]] = None


class AgentDefaults(_ConfigNode):
    # The gateway accepts either "provider/model" or {"primary": ...}.
    model: Optional[Union[str, Dict[str, Any]]] = None


class AgentsConfig(_ConfigNode):
    defaults: Optional[AgentDefaults] = None


class McpServerEntry(_ConfigNode):
    enabled: bool = True
    transport: str = "http"
    url: str


class PluginEntry(_ConfigNode):
    enabled: Optional[bool] = None
    config: Any = None


class PluginsConfig(_ConfigNode):
    enabled: Optional[bool] = None
    # Entries and allow-list items owned by other plugins are kept as loaded.
    allow: Optional[List[Any]] = None
    entries: Optional[Dict[str, Any]] = None


class RuntimeConfig(_ConfigNode):
    gateway: Optional[GatewayConfig] = None
    channels: Optional[ChannelsConfig] = None
    models: Optional[ModelsConfig] = None
    agents: Optional[AgentsConfig] = None
    plugins: Optional[PluginsConfig] = None

    @classmethod
    def from_document(cls, doc: Optional[Dict[str, Any]]) -> "RuntimeConfig":
        return cls.model_validate(doc or {})

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)
