"""Unit tests for validation.py - server configuration validation."""

import pytest

from validation import (
    SERVER_SCHEMA,
    normalize_location,
    validate_openapi_schema,
    validate_resource_group_name,
    validate_server_config,
    validate_server_name,
    validate_spec_against_schema,
)


@pytest.fixture
def raw(server_config):
    return dict(server_config)


class TestValidateOpenAPISchema:
    """Tests for validate_openapi_schema function."""

    def test_server_schema_is_valid(self):
        is_valid, error = validate_openapi_schema(SERVER_SCHEMA)
        assert is_valid is True
        assert error is None

    def test_invalid_type(self):
        is_valid, error = validate_openapi_schema({"type": "invalid_type"})
        assert is_valid is False
        assert error.startswith("Invalid schema")


class TestValidateSpecAgainstSchema:
    """Tests for validate_spec_against_schema function."""

    def test_errors_joined_with_paths(self):
        schema = {
            "type": "object",
            "properties": {
                "a": {"type": "string"},
                "b": {"type": "integer"},
            },
        }
        is_valid, error = validate_spec_against_schema({"a": 1, "b": "x"}, schema)
        assert is_valid is False
        assert error.startswith("a: ")
        assert "; b: " in error

    def test_root_error(self):
        is_valid, error = validate_spec_against_schema(
            {}, {"type": "object", "required": ["name"]}
        )
        assert is_valid is False
        assert error.startswith("(root): ")


class TestValidateServerConfig:
    """Tests for validate_server_config function."""

    def test_minimal_config(self, raw):
        assert validate_server_config(raw) == (True, None)

    def test_full_config(self, raw):
        raw.update(
            {
                "enable_power_bi_service": True,
                "ipv4_firewall_rule": [
                    {
                        "name": "office",
                        "range_start": "10.0.0.1",
                        "range_end": "10.0.0.255",
                    }
                ],
                "querypool_connection_mode": "ReadOnly",
                "backup_blob_container_uri": "https://acct.blob.core.windows.net/b",
                "tags": {"env": "test"},
                "timeouts": {"create": 60},
            }
        )
        assert validate_server_config(raw) == (True, None)

    def test_not_an_object(self):
        is_valid, error = validate_server_config(["name"])
        assert is_valid is False
        assert "must be an object" in error

    @pytest.mark.parametrize("missing", ["name", "resource_group_name", "sku"])
    def test_missing_required(self, raw, missing):
        del raw[missing]
        is_valid, error = validate_server_config(raw)
        assert is_valid is False
        assert missing in error

    def test_unknown_sku(self, raw):
        raw["sku"] = "P1"
        is_valid, error = validate_server_config(raw)
        assert is_valid is False
        assert error.startswith("sku: ")

    def test_unknown_querypool_mode(self, raw):
        raw["querypool_connection_mode"] = "WriteOnly"
        is_valid, error = validate_server_config(raw)
        assert is_valid is False
        assert "querypool_connection_mode" in error

    def test_invalid_ipv4(self, raw):
        raw["ipv4_firewall_rule"] = [
            {"name": "bad", "range_start": "10.0.0.300", "range_end": "10.0.0.1"}
        ]
        is_valid, error = validate_server_config(raw)
        assert is_valid is False
        assert "ipv4_firewall_rule.0.range_start" in error

    def test_duplicate_rule_names(self, raw):
        rule = {"name": "office", "range_start": "10.0.0.1", "range_end": "10.0.0.2"}
        raw["ipv4_firewall_rule"] = [rule, dict(rule)]
        is_valid, error = validate_server_config(raw)
        assert is_valid is False
        assert "duplicate rule names: office" in error

    def test_unknown_field(self, raw):
        raw["administrators"] = ["bob@example.com"]
        is_valid, error = validate_server_config(raw)
        assert is_valid is False
        assert "administrators" in error

    def test_too_many_tags(self, raw):
        raw["tags"] = {f"k{i}": "v" for i in range(51)}
        is_valid, _ = validate_server_config(raw)
        assert is_valid is False

    def test_invalid_timeout(self, raw):
        raw["timeouts"] = {"create": 0}
        is_valid, error = validate_server_config(raw)
        assert is_valid is False
        assert "timeouts.create" in error

    def test_bad_name_reported(self, raw):
        raw["name"] = "Analysis-Server"
        is_valid, error = validate_server_config(raw)
        assert is_valid is False
        assert "lowercase" in error


class TestNamingPolicies:
    """Tests for the name validators."""

    @pytest.mark.parametrize("name", ["abc", "server01", "a" + "b" * 62])
    def test_valid_server_names(self, name):
        assert validate_server_name(name) == name

    @pytest.mark.parametrize(
        "name", ["", "ab", "1server", "Server", "my-server", "a" + "b" * 63]
    )
    def test_invalid_server_names(self, name):
        with pytest.raises(ValueError):
            validate_server_name(name)

    @pytest.mark.parametrize("name", ["rg", "my-rg_1", "rg.(prod)"])
    def test_valid_resource_group_names(self, name):
        assert validate_resource_group_name(name) == name

    @pytest.mark.parametrize(
        "name,message",
        [
            ("", "cannot be empty"),
            ("r" * 91, "may not exceed"),
            ("rg.", "cannot end with a period"),
            ("rg/prod", "may only contain"),
        ],
    )
    def test_invalid_resource_group_names(self, name, message):
        with pytest.raises(ValueError, match=message):
            validate_resource_group_name(name)


class TestNormalizeLocation:
    def test_normalize(self):
        assert normalize_location("West Europe") == "westeurope"
        assert normalize_location("westeurope") == "westeurope"
