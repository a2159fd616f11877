"""
tests/test_config_and_cli.py

YAML configuration loading and the `veilfund` command group.
"""

import json

import pytest
import yaml
from click.testing import CliRunner

from veilfund.cli import cli
from veilfund.config import ScenarioConfig, load_config
from veilfund.core.crypto import SigningKey
from veilfund.core.exceptions import ConfigurationError


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def scenario_file(tmp_path, base_scenario):
    base_scenario["fund"]["batch_size"] = 2
    base_scenario["steps"] = [
        {"action": "deposit", "user": "alice", "amount": 1000},
        {"action": "deposit", "user": "bob", "amount": 1000},
        {"action": "fulfill"},
        {"action": "burn", "user": "alice", "amount": 999, "redeem": "stablecoin"},
        {"action": "burn", "user": "bob", "amount": 1001, "redeem": "stablecoin"},
        {"action": "fulfill"},
        {"action": "claim_stablecoin", "user": "alice"},
        {"action": "sweep_fees"},
    ]
    path = tmp_path / "scenario.yaml"
    path.write_text(yaml.safe_dump(base_scenario))
    return path


# ─────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────

class TestConfig:

    def test_load_applies_defaults(self, scenario_file):
        config = load_config(scenario_file)

        assert config.fund.batch_size == 2
        assert config.fund.decryption_deadline_seconds == 3600
        assert config.fund.two_step_mint is False
        assert [t.symbol for t in config.tokens] == ["AAA", "BBB"]
        assert config.tokens[0].rate_tokens == 1
        assert config.users["alice"] == 1_000_000

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_config(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("fund: [unclosed\n")
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_unknown_section(self, base_scenario):
        base_scenario["governance"] = {}
        with pytest.raises(ConfigurationError):
            ScenarioConfig.from_dict(base_scenario)

    def test_unknown_fund_key(self, base_scenario):
        base_scenario["fund"]["batchsize"] = 3
        with pytest.raises(ConfigurationError):
            ScenarioConfig.from_dict(base_scenario)

    def test_tokens_required(self, base_scenario):
        base_scenario["tokens"] = []
        with pytest.raises(ConfigurationError):
            ScenarioConfig.from_dict(base_scenario)

    def test_unknown_step_action(self, base_scenario):
        base_scenario["steps"] = [{"action": "rug_pull"}]
        with pytest.raises(ConfigurationError):
            ScenarioConfig.from_dict(base_scenario)


# ─────────────────────────────────────────────────────────────
# veilfund simulate / veilfund verify
# ─────────────────────────────────────────────────────────────

class TestSimulateCommand:

    def test_runs_scenario_and_reports(self, runner, scenario_file, tmp_path):
        ledger_dir = tmp_path / "ledger"
        result = runner.invoke(cli, ["simulate", str(scenario_file), "--ledger", str(ledger_dir)])

        assert result.exit_code == 0, result.output
        report = json.loads(result.output)
        assert report["fund"]["share_supply"] == 0
        assert report["fund"]["collected_fees"] == 0
        # alice 999 of 2000 shares against 998 of each token: 498 + 498
        assert report["users"]["alice"]["stablecoin"] == 1_000_000 - 1000 + 996
        assert all(step["error"] is None for step in report["steps"])
        assert (ledger_dir / "fund-1" / "events.jsonl").exists()

    def test_rejected_step_sets_exit_code(self, runner, tmp_path, base_scenario):
        base_scenario["steps"] = [{"action": "claim_underlying", "user": "alice"}]
        path = tmp_path / "scenario.yaml"
        path.write_text(yaml.safe_dump(base_scenario))

        result = runner.invoke(cli, ["simulate", str(path)])
        assert result.exit_code == 1

    def test_bad_config_exits_2(self, runner, tmp_path):
        path = tmp_path / "scenario.yaml"
        path.write_text("tokens: []\n")
        result = runner.invoke(cli, ["simulate", str(path)])
        assert result.exit_code == 2

    def test_events_signed_with_given_key(self, runner, scenario_file, tmp_path):
        key = SigningKey.from_seed(bytes(range(32)))
        key_path = tmp_path / "fund.pem"
        key.save(key_path)
        ledger_dir = tmp_path / "ledger"

        result = runner.invoke(cli, [
            "simulate", str(scenario_file), "--ledger", str(ledger_dir), "--key", str(key_path),
        ])
        assert result.exit_code == 0, result.output

        first = json.loads((ledger_dir / "fund-1" / "events.jsonl").read_text().splitlines()[0])
        assert first["signer_public_key"] == key.public_key_hex


class TestVerifyCommand:

    def _ledger(self, runner, scenario_file, tmp_path):
        ledger_dir = tmp_path / "ledger"
        runner.invoke(cli, ["simulate", str(scenario_file), "--ledger", str(ledger_dir)])
        return ledger_dir / "fund-1" / "events.jsonl"

    def test_valid_ledger(self, runner, scenario_file, tmp_path):
        ledger = self._ledger(runner, scenario_file, tmp_path)
        result = runner.invoke(cli, ["verify", str(ledger), "--format", "json"])

        assert result.exit_code == 0, result.output
        out = json.loads(result.output)["veilfund_verify"]
        assert out["chain_valid"] is True
        assert out["fund_ids"] == ["fund-1"]

    def test_tampered_ledger(self, runner, scenario_file, tmp_path):
        ledger = self._ledger(runner, scenario_file, tmp_path)
        lines = ledger.read_text().splitlines()
        event = json.loads(lines[1])
        event["payload"]["shares"] = 10 ** 9
        lines[1] = json.dumps(event)
        ledger.write_text("\n".join(lines) + "\n")

        result = runner.invoke(cli, ["verify", str(ledger)])
        assert result.exit_code == 1
        assert "INVALID" in result.output

    def test_quiet_and_missing_file(self, runner, tmp_path):
        result = runner.invoke(cli, ["verify", str(tmp_path / "missing.jsonl"), "--quiet"])
        assert result.exit_code == 2
        assert result.output == ""
