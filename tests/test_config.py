from pathlib import Path

import pytest
from pydantic import ValidationError

from chatstream.agents.registry import ChatVariantRegistry, ResolvedVariant
from chatstream.agents.signals import SignalKind
from chatstream.config import ServiceConfig, load_config

ROOT = Path(__file__).parent.parent


def _variant(name, **kwargs):
    return {"name": name, "init_endpoint": f"/api/{name}-chat-init", **kwargs}


def test_defaults_to_first_chat_type():
    config = ServiceConfig(chat_types=[_variant("rely"), _variant("obi-wai")])
    assert config.default_chat_type == "rely"
    assert config.orchestrator.max_loops == 5
    assert config.user_id_prefix == "u-"


def test_unknown_default_chat_type_rejected():
    with pytest.raises(ValidationError, match="default_chat_type"):
        ServiceConfig(chat_types=[_variant("rely")], default_chat_type="agent")


def test_duplicate_chat_types_rejected():
    with pytest.raises(ValidationError, match="Duplicate"):
        ServiceConfig(chat_types=[_variant("rely"), _variant("rely")])


def test_empty_chat_types_rejected():
    with pytest.raises(ValidationError, match="At least one chat type"):
        ServiceConfig(chat_types=[])


def test_unknown_signal_marker_rejected():
    with pytest.raises(ValidationError):
        ServiceConfig(chat_types=[_variant("rely", signals=["LAUNCH_ROCKETS"])])


def test_endpoints_must_be_paths():
    with pytest.raises(ValidationError, match="absolute path"):
        ServiceConfig(chat_types=[{"name": "rely", "init_endpoint": "rely-init"}])


def test_max_loops_must_be_positive():
    with pytest.raises(ValidationError):
        ServiceConfig(chat_types=[_variant("rely")], orchestrator={"max_loops": 0})


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "missing.yaml"))


@pytest.mark.parametrize(
    "path, names",
    [
        ("config.yaml", ["agent", "fox-ea", "obi-wai"]),
        ("configs/obi-wai.yaml", ["obi-wai"]),
        ("configs/relationship.yaml", ["rely"]),
    ],
)
def test_shipped_configs_load(path, names):
    config = load_config(str(ROOT / path))
    registry = ChatVariantRegistry.from_config(config)
    assert registry.names() == names
    assert registry.default == names[0]


def test_registry_resolves_variants(registry):
    agent = registry.resolve("agent")
    assert agent.tool_execute_endpoint == "/api/agent-tool-execute"
    assert agent.has_tools
    assert agent.required_fields == ("agentId",)
    assert [p.kind for p in agent.signal_patterns] == [
        SignalKind.GENERATE_ACTIONS,
        SignalKind.GENERATE_ASSET,
        SignalKind.STORE_MEASUREMENT,
    ]

    obi_wai = registry.resolve("obi-wai")
    assert not obi_wai.has_tools
    assert [p.kind for p in obi_wai.signal_patterns] == [SignalKind.READY_TO_PRACTICE]

    assert registry.resolve("nonexistent") is None
    assert "fox-ea" in registry
    assert len(registry) == 3


def test_registry_accepts_fake_variants():
    fake = ResolvedVariant(name="fake", init_endpoint="/init", tool_execute_endpoint=None)
    registry = ChatVariantRegistry([fake])
    assert registry.default == "fake"
    assert registry.resolve("fake") is fake

    with pytest.raises(ValueError):
        ChatVariantRegistry([fake], default="other")
