"""
Configuration: defaults, YAML files, environment binding and validation.
"""

import pytest
import yaml

from conftest import ADMIN, HOLDER


class TestConfigValues:

    def test_defaults(self):
        from proofgate.config import ConfigManager

        manager = ConfigManager()
        assert manager.get("gate.zk_enforced") is False
        assert manager.get("gate.grant_ttl_seconds") == 3600
        assert manager.get("attestation.default_ttl_seconds") == 600
        assert manager.get("attestation.max_ttl_seconds") == 86_400
        assert manager.get("observability.log_format") == "json"

    def test_set_validates(self):
        from proofgate.config import ConfigManager, ConfigValidationError

        manager = ConfigManager()
        manager.set("gate.grant_ttl_seconds", 900)
        assert manager.get("gate.grant_ttl_seconds") == 900

        with pytest.raises(ConfigValidationError):
            manager.set("gate.grant_ttl_seconds", 0)
        with pytest.raises(ConfigValidationError):
            manager.set("gate.zk_enforced", "yes")
        with pytest.raises(ConfigValidationError):
            manager.set("attestation.max_ttl_seconds", 86_401)

    def test_unknown_path(self):
        from proofgate.config import ConfigError, ConfigManager

        with pytest.raises(ConfigError):
            ConfigManager().get("gate.nope")

    def test_env_beats_file_and_default(self, monkeypatch, tmp_path):
        from proofgate.config import ConfigManager

        path = tmp_path / "proofgate.yaml"
        path.write_text("gate:\n  grant_ttl_seconds: 300\n")
        manager = ConfigManager()
        manager.load_from_file(path)
        assert manager.get("gate.grant_ttl_seconds") == 300

        monkeypatch.setenv("PROOFGATE_GRANT_TTL", "120")
        assert manager.get("gate.grant_ttl_seconds") == 120

    def test_runtime_set_beats_env(self, monkeypatch):
        from proofgate.config import ConfigManager

        monkeypatch.setenv("PROOFGATE_GRANT_TTL", "120")
        manager = ConfigManager()
        manager.set("gate.grant_ttl_seconds", 900)
        assert manager.get("gate.grant_ttl_seconds") == 900

    @pytest.mark.parametrize("raw", ["0", "-1", "soon", ""])
    def test_env_value_validated(self, monkeypatch, raw):
        from proofgate.config import ConfigManager, ConfigValidationError

        monkeypatch.setenv("PROOFGATE_GRANT_TTL", raw)
        with pytest.raises(ConfigValidationError, match="PROOFGATE_GRANT_TTL"):
            ConfigManager().get("gate.grant_ttl_seconds")

    def test_env_above_attestation_cap_rejected(self, monkeypatch):
        from proofgate.config import ConfigManager, ConfigValidationError

        monkeypatch.setenv("PROOFGATE_ATTESTATION_MAX_TTL", "86401")
        with pytest.raises(ConfigValidationError):
            ConfigManager().get("attestation.max_ttl_seconds")

    def test_change_callback(self):
        from proofgate.config import ConfigManager

        manager = ConfigManager()
        changes = []
        manager.config.gate.grant_ttl_seconds.on_change(lambda old, new: changes.append((old, new)))
        manager.set("gate.grant_ttl_seconds", 60)
        assert changes == [(3600, 60)]


class TestConfigFiles:

    def test_load_yaml(self, tmp_path):
        from proofgate.config import ConfigManager

        path = tmp_path / "proofgate.yaml"
        path.write_text(yaml.safe_dump({
            "gate": {"zk_enforced": True, "grant_ttl_seconds": 300},
            "attestation": {"default_ttl_seconds": 120},
        }))
        manager = ConfigManager()
        manager.load_from_file(path)

        assert manager.get("gate.zk_enforced") is True
        assert manager.get("gate.grant_ttl_seconds") == 300
        assert manager.get("attestation.default_ttl_seconds") == 120

    def test_empty_file(self, tmp_path):
        from proofgate.config import ConfigManager

        path = tmp_path / "empty.yaml"
        path.write_text("")
        manager = ConfigManager()
        manager.load_from_file(path)
        assert manager.get("gate.grant_ttl_seconds") == 3600

    def test_unknown_key(self, tmp_path):
        from proofgate.config import ConfigError, ConfigManager

        path = tmp_path / "bad.yaml"
        path.write_text("gate:\n  grant_ttl: 5\n")
        with pytest.raises(ConfigError, match="gate.grant_ttl"):
            ConfigManager().load_from_file(path)

    def test_missing_file(self, tmp_path):
        from proofgate.config import ConfigError, ConfigManager

        with pytest.raises(ConfigError, match="not found"):
            ConfigManager().load_from_file(tmp_path / "absent.yaml")

    def test_invalid_yaml(self, tmp_path):
        from proofgate.config import ConfigError, ConfigManager

        path = tmp_path / "broken.yaml"
        path.write_text("gate: [unclosed\n")
        with pytest.raises(ConfigError, match="Invalid YAML"):
            ConfigManager().load_from_file(path)

    def test_non_mapping_root(self, tmp_path):
        from proofgate.config import ConfigError, ConfigManager

        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigError, match="mapping"):
            ConfigManager().load_from_file(path)


class TestValidationAndExport:

    def test_valid_by_default(self):
        from proofgate.config import ConfigManager

        assert ConfigManager().validate() == []

    def test_default_ttl_above_max(self):
        from proofgate.config import ConfigManager

        manager = ConfigManager()
        manager.set("attestation.max_ttl_seconds", 300)
        errors = manager.validate()
        assert any("default_ttl_seconds" in e for e in errors)

    def test_bad_env_value_reported(self, monkeypatch):
        from proofgate.config import ConfigManager

        monkeypatch.setenv("PROOFGATE_GRANT_TTL", "soon")
        errors = ConfigManager().validate()
        assert any(e.startswith("gate.grant_ttl_seconds") for e in errors)

    def test_yaml_round_trip(self):
        from proofgate.config import ProofgateConfig

        data = yaml.safe_load(ProofgateConfig().to_yaml())
        assert data["gate"]["grant_ttl_seconds"] == 3600
        assert set(data) == {"gate", "attestation", "observability"}

    def test_schema_lists_env_bindings(self):
        from proofgate.config import ConfigManager

        schema = ConfigManager().export_schema()["properties"]
        assert schema["gate"]["grant_ttl_seconds"]["env_var"] == "PROOFGATE_GRANT_TTL"
        assert "env_var" not in schema["gate"]["zk_enforced"]
        assert schema["attestation"]["max_ttl_seconds"]["type"] == "int"


class TestGateReadsConfig:

    def test_grant_ttl_read_per_call(self, world, monkeypatch):
        monkeypatch.setenv("PROOFGATE_GRANT_TTL", "30")
        assert world.attest_and_submit(world.inputs()).expires_at == 130

    def test_enforcement_flag_shared_with_config(self, clock):
        from proofgate.config import ProofgateConfig
        from proofgate.deployment import create_deployment

        config = ProofgateConfig()
        deployment = create_deployment(ADMIN, config=config, clock=clock)
        record_id = deployment.records.add_record({"k": "v"}, owner=HOLDER)

        assert deployment.gate.authorize_read(HOLDER, record_id) is None
        deployment.gate.set_zk_enforced(ADMIN, True)
        assert config.gate.zk_enforced.get() is True

    def test_attestation_limits_from_config(self, clock):
        from proofgate.config import ProofgateConfig
        from proofgate.deployment import create_deployment

        config = ProofgateConfig()
        config.attestation.max_ttl_seconds.set(1000)
        config.attestation.default_ttl_seconds.set(50)
        deployment = create_deployment(ADMIN, config=config, clock=clock)

        assert deployment.attestations.max_ttl == 1000
        assert deployment.attestations.default_ttl == 50
