"""Tests for the reference migration runner and loader."""
import sys
import textwrap

import pytest

from zdguard.config import GuardConfig
from zdguard.errors import MigrationLoadError, UnsafeMigrationError
from zdguard.loader import load_migration, load_migrations
from zdguard.migration import DryRunBackend, Migration, MigrationRunner
from zdguard.operations import AddColumn, RemoveColumn
from zdguard.rules import Outcome


class AddActiveToUsers(Migration):
    def up(self, schema):
        schema.add_column("users", "active", "boolean")
        schema.add_column("users", "role", "string", default="member")
        schema.add_column("users", "nickname", "string")

    def down(self, schema):
        schema.remove_column("users", "role")
        schema.remove_column("users", "active")


class RemoveLegacyColumn(Migration):
    def up(self, schema):
        with schema.safety_assured():
            schema.remove_column("users", "legacy")


class AssuredMigration(Migration):
    safety_assured = True

    def up(self, schema):
        schema.rename_column("users", "fname", "first_name")


class ConcurrentIndex(Migration):
    disable_ddl_transaction = True

    def up(self, schema):
        schema.add_index("users", ["email"], algorithm="concurrently")


class Backfill(Migration):
    def up(self, schema):
        users = schema.table("users")
        for batch in users.find_in_batches(batch_size=2):
            users.where(id=[row["id"] for row in batch]).update_all(active=True)


class LoadEverything(Migration):
    def up(self, schema):
        for row in schema.table("users").each():
            pass


def test_runner_stops_at_first_blocked_operation():
    backend = DryRunBackend()
    report = MigrationRunner(backend=backend).run(AddActiveToUsers)
    assert not report.ok
    assert report.error is not None
    assert report.error.rule_id == "ZD001"
    assert [o.verdict.outcome for o in report.observations] == [Outcome.ALLOWED, Outcome.BLOCKED]
    # the blocked operation never reached the backend
    assert backend.executed == [AddColumn("users", "active", "boolean")]
    with pytest.raises(UnsafeMigrationError):
        report.raise_for_violations()


def test_report_records_line_in_migration_file():
    report = MigrationRunner().run(AddActiveToUsers)
    blocked = report.violations[0]
    assert blocked.line == AddActiveToUsers.up.__code__.co_firstlineno + 2


def test_report_all_continues_past_violations():
    report = MigrationRunner(GuardConfig(fail_fast=False)).run(AddActiveToUsers)
    assert report.error is None
    assert len(report.observations) == 3
    assert [o.verdict.rule_id for o in report.violations] == ["ZD001"]


def test_rollback_is_exempt():
    backend = DryRunBackend()
    report = MigrationRunner(backend=backend).run(AddActiveToUsers, direction="down")
    assert report.ok
    assert backend.executed == [RemoveColumn("users", "role"), RemoveColumn("users", "active")]
    assert all(o.verdict.outcome is Outcome.EXEMPT for o in report.observations)


def test_invalid_direction():
    with pytest.raises(ValueError):
        MigrationRunner().run(AddActiveToUsers, direction="sideways")


def test_safety_assured_block_and_class_flag():
    assert MigrationRunner().run(RemoveLegacyColumn).ok
    assert MigrationRunner().run(AssuredMigration).ok


def test_global_override_from_config():
    assert MigrationRunner(GuardConfig(safety_assured=True)).run(AddActiveToUsers).ok


class DropLegacy(Migration):
    def up(self, schema):
        schema.remove_column("users", "legacy")


def test_default_config_reads_safety_assured_from_env(monkeypatch):
    monkeypatch.delenv("SAFETY_ASSURED", raising=False)
    monkeypatch.delenv("ZDGUARD_SCHEMA_LOAD", raising=False)
    assert not MigrationRunner().run(DropLegacy).ok
    monkeypatch.setenv("SAFETY_ASSURED", "1")
    assert MigrationRunner().run(DropLegacy).ok


def test_explicit_config_wins_over_env(monkeypatch):
    monkeypatch.setenv("SAFETY_ASSURED", "1")
    assert not MigrationRunner(GuardConfig()).run(DropLegacy).ok


def test_schema_load_exempts_every_operation():
    backend = DryRunBackend()
    report = MigrationRunner(GuardConfig(schema_load=True), backend).run(AddActiveToUsers)
    assert report.ok
    assert len(backend.executed) == 3
    assert all(o.verdict.outcome is Outcome.EXEMPT for o in report.observations)


def test_schema_load_from_env(monkeypatch):
    monkeypatch.setenv("ZDGUARD_SCHEMA_LOAD", "yes")
    assert MigrationRunner().run(AddActiveToUsers).ok


def test_concurrent_index_runs_outside_transaction():
    backend = DryRunBackend()
    report = MigrationRunner(backend=backend).run(ConcurrentIndex)
    assert report.ok
    assert backend.transactions == 0
    MigrationRunner(backend=backend).run(Backfill)
    assert backend.transactions == 1


def test_batched_backfill_is_allowed_and_iterates_rows():
    backend = DryRunBackend(rows={"users": [{"id": 1}, {"id": 2}, {"id": 3}]})
    report = MigrationRunner(backend=backend).run(Backfill)
    assert report.ok
    mutations = [op for op in backend.executed if op.kind.value == "data_mutation"]
    assert len(mutations) == 2
    assert all(op.scoped for op in mutations)


def test_unbatched_iteration_is_blocked():
    report = MigrationRunner().run(LoadEverything)
    assert report.error.rule_id == "ZD007"


def test_config_from_env():
    config = GuardConfig.from_env({"SAFETY_ASSURED": "true", "ZDGUARD_SCHEMA_LOAD": "0"})
    assert config.safety_assured
    assert not config.schema_load
    assert GuardConfig.from_env({}, fail_fast=False) == GuardConfig(fail_fast=False)


def _write(path, body):
    path.write_text(textwrap.dedent(body))
    return path


def test_load_migrations_sorted_by_number(tmp_path):
    _write(tmp_path / "0002_remove.py", """
        from zdguard.migration import Migration

        class RemoveActive(Migration):
            def up(self, schema):
                schema.remove_column("users", "active")
    """)
    _write(tmp_path / "0001_add.py", """
        from zdguard.migration import Migration

        class AddActive(Migration):
            def up(self, schema):
                schema.add_column("users", "active", "boolean")
    """)
    _write(tmp_path / "helpers.py", "X = 1\n")
    _write(tmp_path / "0003_empty.py", "X = 1\n")

    migrations = load_migrations(tmp_path)
    assert [m.name for m in migrations] == ["0001_add", "0002_remove"]
    assert migrations[1].migration_class.__name__ == "RemoveActive"


def test_load_migration_import_error(tmp_path):
    path = _write(tmp_path / "0001_broken.py", "import does_not_exist\n")
    with pytest.raises(MigrationLoadError):
        load_migration(path)


def test_load_migrations_missing_directory(tmp_path):
    assert load_migrations(tmp_path / "nope") == []


def test_load_migration_picks_subclass_over_shared_base(tmp_path):
    path = _write(tmp_path / "0001_drop_legacy.py", """
        from zdguard.migration import Migration

        class Base(Migration):
            pass

        class Zeta(Base):
            def up(self, schema):
                schema.remove_column("users", "legacy")
    """)
    info = load_migration(path)
    assert info.migration_class.__name__ == "Zeta"
    assert not MigrationRunner(GuardConfig()).run(info.migration_class).ok


def test_load_migration_prefers_local_class_over_imported_one(tmp_path):
    path = _write(tmp_path / "0001_local.py", """
        from zdguard.migration import Migration
        from test_migration import AddActiveToUsers

        class AddNickname(Migration):
            def up(self, schema):
                schema.add_column("users", "nickname", "string")
    """)
    assert load_migration(path).migration_class.__name__ == "AddNickname"


def test_load_migration_with_deferred_annotations(tmp_path):
    path = _write(tmp_path / "0001_backfill_roles.py", """
        from __future__ import annotations

        from dataclasses import dataclass
        from typing import ClassVar

        from zdguard.migration import Migration

        @dataclass
        class RoleBackfill:
            role: str
            batch_size: ClassVar[int] = 500

        class BackfillRoles(Migration):
            def up(self, schema):
                schema.table("users").where(role=None).update_all(role=RoleBackfill("member").role)
    """)
    info = load_migration(path)
    assert info.migration_class.__name__ == "BackfillRoles"
    assert "zdguard_migrations.0001_backfill_roles" in sys.modules
    assert MigrationRunner(GuardConfig()).run(info.migration_class).ok


def test_failed_import_is_not_left_in_sys_modules(tmp_path):
    path = _write(tmp_path / "0001_half_done.py", "raise RuntimeError('boom')\n")
    with pytest.raises(MigrationLoadError):
        load_migration(path)
    assert "zdguard_migrations.0001_half_done" not in sys.modules
