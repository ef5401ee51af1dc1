import logging
import uuid

import pytest
from sqlalchemy import create_engine, inspect
from typer.testing import CliRunner

from tenant_file_store.cli import app
from tenant_file_store.config import reset_settings

runner = CliRunner()


@pytest.fixture
def cli_env(tmp_path, monkeypatch):
    db_path = tmp_path / "cli.db"
    storage = tmp_path / "cli-storage"
    monkeypatch.setenv("POSTGRES__DSN", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("STORAGE__BASE_PATH", str(storage))
    monkeypatch.setenv("QUOTA__DEFAULT_LIMIT_BYTES", "4096")
    reset_settings()

    # CLI ставит JSON-handler на root; после теста возвращаем как было
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield {"db_path": db_path, "storage": storage}
    root.handlers[:] = handlers
    root.setLevel(level)
    reset_settings()


def test_cli_init_and_check(cli_env):
    """
    init и check одним сценарием: init создает таблицы и корень хранилища,
    check после этого видит все сервисы.
    """
    result_init = runner.invoke(app, ["init"])

    assert result_init.exit_code == 0, f"Команда 'init' провалилась: {result_init.output}"
    assert "Database tables created" in result_init.output
    assert "Storage (local) is ready" in result_init.output
    assert cli_env["storage"].is_dir()

    # Таблицы действительно созданы в БД
    engine = create_engine(f"sqlite:///{cli_env['db_path']}")
    inspector = inspect(engine)
    assert inspector.has_table("files")
    assert inspector.has_table("user_quotas")
    assert inspector.has_table("audit_logs")
    engine.dispose()

    result_check = runner.invoke(app, ["check"])
    assert result_check.exit_code == 0, result_check.output
    assert "database: OK" in result_check.output
    assert "storage: OK" in result_check.output


def test_cli_quota_commands(cli_env):
    assert runner.invoke(app, ["init"]).exit_code == 0
    user_id = str(uuid.uuid4())

    shown = runner.invoke(app, ["quota", "show", user_id])
    assert shown.exit_code == 0, shown.output
    assert "Limit:     4096 bytes" in shown.output

    updated = runner.invoke(app, ["quota", "set-limit", user_id, "2048"])
    assert updated.exit_code == 0, updated.output
    assert "Limit updated" in updated.output
    assert "Limit:     2048 bytes" in updated.output

    resynced = runner.invoke(app, ["quota", "resync", user_id])
    assert resynced.exit_code == 0, resynced.output
    assert "Used:      0 bytes" in resynced.output

    negative = runner.invoke(app, ["quota", "set-limit", user_id, "--", "-5"])
    assert negative.exit_code == 1


def test_cli_orphans_report(cli_env):
    assert runner.invoke(app, ["init"]).exit_code == 0

    clean = runner.invoke(app, ["orphans"])
    assert clean.exit_code == 0
    assert "No orphaned objects found" in clean.output

    stray = cli_env["storage"] / "2024" / "01"
    stray.mkdir(parents=True)
    (stray / "abc_stray.txt").write_bytes(b"stray")

    report = runner.invoke(app, ["orphans"])
    assert report.exit_code == 0
    assert "2024/01/abc_stray.txt" in report.output
    assert "1 orphaned object(s)" in report.output
    # отчет ничего не удаляет
    assert (stray / "abc_stray.txt").exists()
