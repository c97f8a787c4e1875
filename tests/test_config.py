import json
from pathlib import Path

import pytest

from macsign.config import (
    BuildConfig,
    BuildVariant,
    MacOptions,
    config_from_dict,
    load_config,
    merge_options,
)
from macsign.errors import ConfigError

BASE = {"productName": "My App", "version": "1.2.3"}


def test_explicit_null_identity_disables_signing():
    options = MacOptions.from_dict({"identity": None})
    assert options.identity is None
    assert options.identity_disabled
    assert not MacOptions.from_dict({}).identity_disabled


def test_invalid_signing_type():
    with pytest.raises(ConfigError):
        MacOptions.from_dict({"type": "adhoc"}, "mac")


def test_merge_keeps_base_fields_the_override_does_not_set():
    base = MacOptions.from_dict({"identity": "Jane Doe", "entitlements": "mac.plist", "type": "distribution"})
    override = MacOptions.from_dict({"entitlements": "mas.plist"})
    merged = merge_options(base, override)
    assert merged.identity == "Jane Doe"
    assert merged.entitlements == "mas.plist"
    assert merged.type == "distribution"


def test_merge_explicit_null_overrides():
    base = MacOptions.from_dict({"identity": "Jane Doe", "entitlements": "mac.plist"})
    merged = merge_options(base, MacOptions.from_dict({"identity": None, "entitlements": None}))
    assert merged.identity is None
    assert merged.identity_disabled
    assert merged.entitlements is None


def test_options_per_variant():
    config = BuildConfig(
        product_name="My App", version="1.0.0",
        mac=MacOptions.from_dict({"identity": "Jane Doe", "entitlements": "mac.plist"}),
        mas=MacOptions.from_dict({"entitlements": "mas.plist", "type": "distribution"}),
        mas_dev=MacOptions.from_dict({"entitlementsInherit": "dev.inherit.plist"}),
    )
    assert config.options_for(BuildVariant.DIRECT).entitlements == "mac.plist"

    store = config.options_for(BuildVariant.STORE)
    assert (store.identity, store.entitlements, store.type) == ("Jane Doe", "mas.plist", "distribution")

    dev = config.options_for(BuildVariant.STORE_DEVELOPMENT)
    assert dev.type == "development"
    assert dev.entitlements == "mas.plist"
    assert dev.entitlements_inherit == "dev.inherit.plist"


def test_product_filename_defaults_to_sanitized_name():
    assert BuildConfig(product_name="My: App?", version="1").product_filename == "My App"


def test_config_from_dict_with_environment(tmp_path):
    env = {
        "CSC_IDENTITY_AUTO_DISCOVERY": "false",
        "CSC_KEYCHAIN": "build.keychain",
        "CSC_NAME": "Jane Doe (ABCDE12345)",
        "MACSIGN_TOOL_TIMEOUT": "90",
    }
    raw = dict(BASE, directories={"buildResources": "res", "output": "out"})
    config = config_from_dict(raw, tmp_path, env)
    assert not config.auto_discovery
    assert config.keychain == "build.keychain"
    assert config.mac.identity == "Jane Doe (ABCDE12345)"
    assert config.tool_timeout == 90.0
    assert config.build_resources == tmp_path / "res"
    assert config.output == tmp_path / "out"


def test_configured_null_identity_wins_over_environment():
    raw = dict(BASE, mac={"identity": None})
    config = config_from_dict(raw, Path("."), {"CSC_NAME": "Jane Doe"})
    assert config.mac.identity_disabled


@pytest.mark.parametrize("raw", [{"version": "1"}, {"productName": "x"}, dict(BASE, toolTimeout="soon")])
def test_config_from_dict_rejects_incomplete(raw):
    with pytest.raises(ConfigError):
        config_from_dict(raw, Path("."), {})


def test_load_config(tmp_path):
    path = tmp_path / "macsign.json"
    path.write_text(json.dumps(dict(BASE, forceCodeSigning=True, mas={"identity": "ABCDE12345"})))
    config = load_config(path, env={})
    assert config.force_code_signing
    assert config.mas.identity == "ABCDE12345"
    assert config.build_resources == tmp_path / "build"


def test_load_config_errors(tmp_path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "missing.json", env={})
    bad = tmp_path / "bad.json"
    bad.write_text("{not json")
    with pytest.raises(ConfigError):
        load_config(bad, env={})


@pytest.mark.parametrize("value", ["false", 0, 1, None])
def test_force_code_signing_must_be_boolean(value):
    with pytest.raises(ConfigError):
        config_from_dict(dict(BASE, forceCodeSigning=value), Path("."), {})
    assert config_from_dict(dict(BASE, forceCodeSigning=False), Path("."), {}).force_code_signing is False


@pytest.mark.parametrize("key", ["mas-dev", "masDev"])
def test_store_development_section_keys(key):
    raw = dict(BASE, **{key: {"entitlements": "dev.plist"}})
    config = config_from_dict(raw, Path("."), {})
    assert config.mas_dev.entitlements == "dev.plist"
    assert config.options_for(BuildVariant.STORE_DEVELOPMENT).entitlements == "dev.plist"


def test_store_development_section_given_twice():
    raw = dict(BASE, **{"mas-dev": {}, "masDev": {}})
    with pytest.raises(ConfigError):
        config_from_dict(raw, Path("."), {})
