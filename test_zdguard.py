"""Tests for the zdguard CLI."""
import json
import textwrap

from typer.testing import CliRunner

from zdguard.cli import app

runner = CliRunner()

SAFE = """
    from zdguard.migration import Migration

    class AddActiveToUsers(Migration):
        def up(self, schema):
            schema.add_column("users", "active", "boolean")
"""

UNSAFE = """
    from zdguard.migration import Migration

    class CleanupUsers(Migration):
        def up(self, schema):
            schema.remove_column("users", "legacy")
            schema.rename_column("users", "fname", "first_name")

        def down(self, schema):
            schema.add_column("users", "legacy", "string", default="x")
"""


def _migrations(tmp_path, **files):
    for name, body in files.items():
        (tmp_path / f"{name}.py").write_text(textwrap.dedent(body))
    return tmp_path


def test_safe_migration_passes_cleanly(tmp_path):
    d = _migrations(tmp_path, **{"0001_add_active": SAFE})
    result = runner.invoke(app, ["check", str(d)])
    assert result.exit_code == 0


def test_unsafe_migration_fails(tmp_path):
    d = _migrations(tmp_path, **{"0001_add_active": SAFE, "0002_cleanup": UNSAFE})
    result = runner.invoke(app, ["check", str(d)])
    assert result.exit_code == 1
    assert "ZD002" in result.stdout


def test_json_output_stops_at_first_violation(tmp_path):
    d = _migrations(tmp_path, **{"0002_cleanup": UNSAFE})
    result = runner.invoke(app, ["check", str(d), "--format", "json"])
    assert result.exit_code == 1
    data = json.loads(result.stdout)
    (report,) = data.values()
    assert report["migration"] == "0002_cleanup"
    assert [o["rule_id"] for o in report["operations"]] == ["ZD002"]
    assert report["operations"][0]["line"] == 6


def test_report_all_lists_every_violation(tmp_path):
    d = _migrations(tmp_path, **{"0002_cleanup": UNSAFE})
    result = runner.invoke(app, ["check", str(d), "--all", "--format", "json"])
    (report,) = json.loads(result.stdout).values()
    assert [o["rule_id"] for o in report["operations"]] == ["ZD002", "ZD003"]


def test_sarif_output(tmp_path):
    d = _migrations(tmp_path, **{"0002_cleanup": UNSAFE})
    result = runner.invoke(app, ["check", str(d), "--format", "sarif"])
    sarif = json.loads(result.stdout)
    assert sarif["version"] == "2.1.0"
    results = sarif["runs"][0]["results"]
    assert results[0]["ruleId"] == "ZD002"
    assert results[0]["locations"][0]["physicalLocation"]["region"]["startLine"] == 6


def test_down_direction_is_exempt(tmp_path):
    d = _migrations(tmp_path, **{"0002_cleanup": UNSAFE})
    assert runner.invoke(app, ["check", str(d), "--down"]).exit_code == 0


def test_safety_assured_env_var(tmp_path):
    d = _migrations(tmp_path, **{"0002_cleanup": UNSAFE})
    result = runner.invoke(app, ["check", str(d)], env={"SAFETY_ASSURED": "1"})
    assert result.exit_code == 0


def test_safety_assured_flag(tmp_path):
    d = _migrations(tmp_path, **{"0002_cleanup": UNSAFE})
    assert runner.invoke(app, ["check", str(d), "--safety-assured"]).exit_code == 0


def test_schema_load_flag(tmp_path):
    d = _migrations(tmp_path, **{"0002_cleanup": UNSAFE})
    result = runner.invoke(app, ["check", str(d), "--schema-load", "--format", "json"])
    assert result.exit_code == 0
    (report,) = json.loads(result.stdout).values()
    assert [o["outcome"] for o in report["operations"]] == ["exempt", "exempt"]


def test_schema_load_env_var(tmp_path):
    d = _migrations(tmp_path, **{"0002_cleanup": UNSAFE})
    result = runner.invoke(app, ["check", str(d)], env={"ZDGUARD_SCHEMA_LOAD": "1"})
    assert result.exit_code == 0


def test_missing_path():
    result = runner.invoke(app, ["check", "does/not/exist.py"])
    assert result.exit_code == 1


def test_empty_directory(tmp_path):
    assert runner.invoke(app, ["check", str(tmp_path)]).exit_code == 0


def test_rules_command_lists_rules():
    result = runner.invoke(app, ["rules"])
    assert result.exit_code == 0
    assert "ZD001" in result.stdout
