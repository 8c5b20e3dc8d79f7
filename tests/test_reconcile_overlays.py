import json
import tempfile
import unittest
from pathlib import Path

from clawboot.kernel.reconcile import (
    OVERLAY_RULES,
    apply_discord,
    apply_mcp_plugin,
    apply_model_override,
    apply_slack,
    apply_telegram,
    reconcile,
    reconcile_file,
    resolve_gateway_base_url,
    split_model_ref,
)
from clawboot.contracts.v1 import RuntimeConfig


def _doc(loaded, env):
    return reconcile(loaded, env).to_document()


class TestGatewayOverlay(unittest.TestCase):
    def test_fixed_fields_on_empty_document(self) -> None:
        doc = _doc({}, {})
        self.assertEqual(doc["gateway"], {"port": 18789, "mode": "local", "trustedProxies": ["10.1.0.0"]})
        self.assertNotIn("channels", doc)
        self.assertNotIn("plugins", doc)

    def test_dev_mode_enables_insecure_auth_and_keeps_other_control_ui_keys(self) -> None:
        loaded = {"gateway": {"controlUi": {"basePath": "/ui"}, "bind": "lan"}}
        doc = _doc(loaded, {"OPENCLAW_DEV_MODE": "true"})
        self.assertEqual(doc["gateway"]["controlUi"], {"basePath": "/ui", "allowInsecureAuth": True})
        self.assertEqual(doc["gateway"]["bind"], "lan")

    def test_dev_mode_only_for_literal_true(self) -> None:
        doc = _doc({}, {"OPENCLAW_DEV_MODE": "1"})
        self.assertNotIn("controlUi", doc["gateway"])

    def test_gateway_fields_overwrite_onboard_values(self) -> None:
        doc = _doc({"gateway": {"port": 1234, "mode": "remote", "trustedProxies": []}}, {})
        self.assertEqual(doc["gateway"]["port"], 18789)
        self.assertEqual(doc["gateway"]["mode"], "local")
        self.assertEqual(doc["gateway"]["trustedProxies"], ["10.1.0.0"])


class TestModelOverride(unittest.TestCase):
    def test_split_on_first_slash_only(self) -> None:
        self.assertEqual(split_model_ref("workers-ai/@cf/meta/llama"), ("workers-ai", "@cf/meta/llama"))
        self.assertEqual(split_model_ref("openai"), ("openai", ""))

    def test_account_and_gateway_id_path_wins(self) -> None:
        env = {
            "CF_AI_GATEWAY_MODEL": "anthropic/claude-x",
            "CF_AI_GATEWAY_ACCOUNT_ID": "acc1",
            "CF_AI_GATEWAY_GATEWAY_ID": "gw1",
            "CLOUDFLARE_AI_GATEWAY_API_KEY": "k",
            "CF_ACCOUNT_ID": "other",
        }
        doc = _doc({}, env)
        provider = doc["models"]["providers"]["cf-ai-gw-anthropic"]
        self.assertEqual(provider["baseUrl"], "https://gateway.ai.cloudflare.com/v1/acc1/gw1/anthropic")
        self.assertEqual(provider["apiKey"], "k")
        self.assertEqual(provider["api"], "anthropic-messages")
        self.assertEqual(
            provider["models"],
            [{"id": "claude-x", "name": "claude-x", "contextWindow": 131072, "maxTokens": 8192}],
        )
        self.assertEqual(doc["agents"]["defaults"]["model"], {"primary": "cf-ai-gw-anthropic/claude-x"})

    def test_workers_ai_through_gateway_gets_v1_suffix(self) -> None:
        env = {"CF_AI_GATEWAY_ACCOUNT_ID": "a", "CF_AI_GATEWAY_GATEWAY_ID": "g", "CF_ACCOUNT_ID": "c"}
        self.assertEqual(
            resolve_gateway_base_url("workers-ai", env),
            "https://gateway.ai.cloudflare.com/v1/a/g/workers-ai/v1",
        )

    def test_workers_ai_with_account_only_uses_direct_api(self) -> None:
        env = {
            "CF_AI_GATEWAY_MODEL": "workers-ai/@cf/meta/llama-3.3-70b-instruct-fp8-fast",
            "CF_ACCOUNT_ID": "acct",
            "CLOUDFLARE_AI_GATEWAY_API_KEY": "k",
        }
        doc = _doc({}, env)
        provider = doc["models"]["providers"]["cf-ai-gw-workers-ai"]
        self.assertEqual(provider["baseUrl"], "https://api.cloudflare.com/client/v4/accounts/acct/ai/v1")
        self.assertEqual(provider["api"], "openai-completions")
        self.assertEqual(
            doc["agents"]["defaults"]["model"]["primary"],
            "cf-ai-gw-workers-ai/@cf/meta/llama-3.3-70b-instruct-fp8-fast",
        )

    def test_non_workers_provider_with_account_only_is_skipped(self) -> None:
        env = {"CF_AI_GATEWAY_MODEL": "openai/gpt-4o", "CF_ACCOUNT_ID": "acct", "CLOUDFLARE_AI_GATEWAY_API_KEY": "k"}
        with self.assertLogs("clawboot.reconcile", level="WARNING"):
            doc = _doc({}, env)
        self.assertNotIn("models", doc)
        self.assertNotIn("agents", doc)

    def test_model_without_slash_is_skipped(self) -> None:
        env = {
            "CF_AI_GATEWAY_MODEL": "gpt-4o",
            "CF_AI_GATEWAY_ACCOUNT_ID": "a",
            "CF_AI_GATEWAY_GATEWAY_ID": "g",
            "CLOUDFLARE_AI_GATEWAY_API_KEY": "k",
        }
        with self.assertLogs("clawboot.reconcile", level="WARNING"):
            cfg = apply_model_override(RuntimeConfig(), env)
        self.assertIsNone(cfg.models)
        self.assertIsNone(cfg.agents)

    def test_missing_api_key_is_skipped_without_raising(self) -> None:
        env = {"CF_AI_GATEWAY_MODEL": "openai/gpt-4o", "CF_AI_GATEWAY_ACCOUNT_ID": "a", "CF_AI_GATEWAY_GATEWAY_ID": "g"}
        cfg = apply_model_override(RuntimeConfig(), env)
        self.assertIsNone(cfg.models)

    def test_existing_providers_and_agent_defaults_are_kept(self) -> None:
        loaded = {
            "models": {"providers": {"anthropic": {"apiKey": "x"}}, "mode": "merge"},
            "agents": {"defaults": {"workspace": "/root/clawd", "model": "anthropic/claude"}},
        }
        env = {
            "CF_AI_GATEWAY_MODEL": "openai/gpt-4o",
            "CF_AI_GATEWAY_ACCOUNT_ID": "a",
            "CF_AI_GATEWAY_GATEWAY_ID": "g",
            "CLOUDFLARE_AI_GATEWAY_API_KEY": "k",
        }
        doc = _doc(loaded, env)
        self.assertEqual(doc["models"]["providers"]["anthropic"], {"apiKey": "x"})
        self.assertEqual(doc["models"]["mode"], "merge")
        self.assertIn("cf-ai-gw-openai", doc["models"]["providers"])
        self.assertEqual(doc["agents"]["defaults"]["workspace"], "/root/clawd")
        self.assertEqual(doc["agents"]["defaults"]["model"], {"primary": "cf-ai-gw-openai/gpt-4o"})


class TestChannelOverlays(unittest.TestCase):
    def test_telegram_replaces_whole_subtree(self) -> None:
        loaded = {"channels": {"telegram": {"botToken": "old", "staleKey": 1, "groups": {"x": {}}}}}
        doc = _doc(loaded, {"TELEGRAM_BOT_TOKEN": "t"})
        self.assertEqual(doc["channels"]["telegram"], {"botToken": "t", "enabled": True, "dmPolicy": "pairing"})

    def test_untouched_channel_keeps_unknown_keys(self) -> None:
        loaded = {"channels": {"telegram": {"botToken": "old", "staleKey": 1}, "whatsapp": {"enabled": True}}}
        doc = _doc(loaded, {"DISCORD_BOT_TOKEN": "d"})
        self.assertEqual(doc["channels"]["telegram"], {"botToken": "old", "staleKey": 1})
        self.assertEqual(doc["channels"]["whatsapp"], {"enabled": True})

    def test_telegram_explicit_allow_list_beats_open_policy(self) -> None:
        env = {"TELEGRAM_BOT_TOKEN": "t", "TELEGRAM_DM_POLICY": "open", "TELEGRAM_DM_ALLOW_FROM": "123,456"}
        cfg = apply_telegram(RuntimeConfig(), env)
        self.assertEqual(cfg.to_document()["channels"]["telegram"]["allowFrom"], ["123", "456"])

    def test_telegram_open_policy_allows_everyone(self) -> None:
        cfg = apply_telegram(RuntimeConfig(), {"TELEGRAM_BOT_TOKEN": "t", "TELEGRAM_DM_POLICY": "open"})
        self.assertEqual(cfg.to_document()["channels"]["telegram"]["allowFrom"], ["*"])

    def test_telegram_allow_list_applies_under_pairing(self) -> None:
        cfg = apply_telegram(RuntimeConfig(), {"TELEGRAM_BOT_TOKEN": "t", "TELEGRAM_DM_ALLOW_FROM": "42"})
        tg = cfg.to_document()["channels"]["telegram"]
        self.assertEqual(tg["dmPolicy"], "pairing")
        self.assertEqual(tg["allowFrom"], ["42"])

    def test_discord_uses_nested_dm_object(self) -> None:
        cfg = apply_discord(RuntimeConfig(), {"DISCORD_BOT_TOKEN": "d", "DISCORD_DM_POLICY": "open"})
        self.assertEqual(
            cfg.to_document()["channels"]["discord"],
            {"token": "d", "enabled": True, "dm": {"policy": "open", "allowFrom": ["*"]}},
        )

    def test_discord_default_policy_has_no_allow_from(self) -> None:
        cfg = apply_discord(RuntimeConfig(), {"DISCORD_BOT_TOKEN": "d"})
        self.assertEqual(cfg.to_document()["channels"]["discord"]["dm"], {"policy": "pairing"})

    def test_slack_requires_both_tokens(self) -> None:
        self.assertIsNone(apply_slack(RuntimeConfig(), {"SLACK_BOT_TOKEN": "b"}).channels)
        cfg = apply_slack(RuntimeConfig(), {"SLACK_BOT_TOKEN": "b", "SLACK_APP_TOKEN": "a"})
        self.assertEqual(
            cfg.to_document()["channels"]["slack"], {"botToken": "b", "appToken": "a", "enabled": True}
        )


class TestMcpPluginOverlay(unittest.TestCase):
    def test_notion_only_registers_exactly_one_server(self) -> None:
        doc = apply_mcp_plugin(RuntimeConfig(), {"NOTION_API_KEY": "n"}).to_document()
        plugins = doc["plugins"]
        self.assertTrue(plugins["enabled"])
        self.assertEqual(plugins["allow"], ["mcp-integration"])
        entry = plugins["entries"]["mcp-integration"]
        self.assertEqual(
            entry,
            {
                "enabled": True,
                "config": {
                    "enabled": True,
                    "servers": {
                        "notion": {"enabled": True, "transport": "http", "url": "http://localhost:3101/mcp"}
                    },
                },
            },
        )

    def test_google_requires_id_and_secret(self) -> None:
        cfg = apply_mcp_plugin(RuntimeConfig(), {"GOOGLE_OAUTH_CLIENT_ID": "id"})
        self.assertIsNone(cfg.plugins)
        env = {"GOOGLE_OAUTH_CLIENT_ID": "id", "GOOGLE_OAUTH_CLIENT_SECRET": "s", "NOTION_API_KEY": "n"}
        servers = apply_mcp_plugin(RuntimeConfig(), env).to_document()["plugins"]["entries"]["mcp-integration"][
            "config"
        ]["servers"]
        self.assertEqual(list(servers), ["google-workspace", "notion"])
        self.assertEqual(servers["google-workspace"]["url"], "http://localhost:3100/mcp")

    def test_allow_list_is_appended_once(self) -> None:
        loaded = {"plugins": {"allow": ["other", "mcp-integration"], "entries": {"other": {"enabled": False}}}}
        doc = _doc(loaded, {"NOTION_API_KEY": "n"})
        self.assertEqual(doc["plugins"]["allow"], ["other", "mcp-integration"])
        self.assertEqual(doc["plugins"]["entries"]["other"], {"enabled": False})

    def test_foreign_plugin_entries_keep_any_shape(self) -> None:
        foreign = {
            "other": {"enabled": True, "config": ["x"]},
            "scalar": "on",
            "nested": {"config": {"deep": [1, {"k": None}]}, "extra": 3},
        }
        loaded = {"plugins": {"allow": ["other", 7], "entries": foreign}}
        self.assertEqual(_doc(loaded, {}), {**_doc({}, {}), "plugins": loaded["plugins"]})
        doc = _doc(loaded, {"NOTION_API_KEY": "n"})
        self.assertEqual(doc["plugins"]["allow"], ["other", 7, "mcp-integration"])
        for name, value in foreign.items():
            self.assertEqual(doc["plugins"]["entries"][name], value)

    def test_empty_server_map_leaves_plugins_untouched(self) -> None:
        loaded = {"plugins": {"enabled": True, "allow": ["x"]}}
        doc = _doc(loaded, {})
        self.assertEqual(doc["plugins"], {"enabled": True, "allow": ["x"]})


class TestReconcilePipeline(unittest.TestCase):
    ENV = {
        "TELEGRAM_BOT_TOKEN": "t",
        "TELEGRAM_DM_POLICY": "open",
        "DISCORD_BOT_TOKEN": "d",
        "SLACK_BOT_TOKEN": "b",
        "SLACK_APP_TOKEN": "a",
        "NOTION_API_KEY": "n",
        "CF_AI_GATEWAY_MODEL": "anthropic/claude-x",
        "CF_AI_GATEWAY_ACCOUNT_ID": "acc1",
        "CF_AI_GATEWAY_GATEWAY_ID": "gw1",
        "CLOUDFLARE_AI_GATEWAY_API_KEY": "k",
    }

    def test_rule_order_is_fixed(self) -> None:
        self.assertEqual(
            [r.name for r in OVERLAY_RULES],
            ["gateway", "model_override", "telegram", "discord", "slack", "mcp_plugin"],
        )

    def test_second_application_is_a_fixed_point(self) -> None:
        loaded = {"meta": {"lastTouchedVersion": "2026.2.3"}, "channels": {"telegram": {"stale": True}}}
        once = json.dumps(_doc(loaded, self.ENV), indent=2)
        twice = json.dumps(_doc(json.loads(once), self.ENV), indent=2)
        again = json.dumps(_doc(json.loads(once), self.ENV), indent=2)
        self.assertEqual(once, twice)
        self.assertEqual(twice, again)

    def test_input_document_is_not_mutated(self) -> None:
        loaded = {"gateway": {"port": 1}}
        reconcile(loaded, self.ENV)
        self.assertEqual(loaded, {"gateway": {"port": 1}})

    def test_unknown_top_level_keys_survive(self) -> None:
        doc = _doc({"wizard": {"lastRunAt": "x"}, "skills": {"install": {"nodeManager": "pnpm"}}}, self.ENV)
        self.assertEqual(doc["wizard"], {"lastRunAt": "x"})
        self.assertEqual(doc["skills"], {"install": {"nodeManager": "pnpm"}})

    def test_reconcile_file_writes_pretty_json(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "openclaw.json"
            reconcile_file(path, {"SLACK_BOT_TOKEN": "b", "SLACK_APP_TOKEN": "a"})
            text = path.read_text(encoding="utf-8")
            self.assertTrue(text.startswith('{\n  "gateway": {\n    "port": 18789'))
            self.assertTrue(text.endswith("}\n"))
            first = text
            reconcile_file(path, {"SLACK_BOT_TOKEN": "b", "SLACK_APP_TOKEN": "a"})
            self.assertEqual(path.read_text(encoding="utf-8"), first)

    def test_reconcile_file_starts_empty_when_file_is_missing_or_corrupt(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "openclaw.json"
            path.write_text("{not json", encoding="utf-8")
            cfg = reconcile_file(path, {})
            self.assertEqual(set(cfg.to_document()), {"gateway"})


if __name__ == "__main__":
    unittest.main()
