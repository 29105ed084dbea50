from click.testing import CliRunner

from db.schema import TODOS, render_table
from main import cli, next_script_path


def test_next_script_number(tmp_path):
    (tmp_path / "0001_auth_tables.sql").write_text("")
    (tmp_path / "0002_todos.sql").write_text("")
    assert next_script_path(tmp_path, "Add Labels!").name == "0003_add_labels.sql"


def test_first_script_number(tmp_path):
    assert next_script_path(tmp_path, "init").name == "0001_init.sql"


def test_generate_writes_rendered_ddl(tmp_path):
    result = CliRunner().invoke(cli, ["generate", "todos", "--table", "todos", "--dir", str(tmp_path)])

    assert result.exit_code == 0, result.output
    script = tmp_path / "0001_todos.sql"
    text = script.read_text()
    assert text.startswith("-- 0001_todos: todos\n")
    assert render_table(TODOS) in text


def test_generate_unknown_table(tmp_path):
    result = CliRunner().invoke(cli, ["generate", "x", "--table", "invoices", "--dir", str(tmp_path)])
    assert result.exit_code != 0
    assert "invoices" in result.output
    assert list(tmp_path.iterdir()) == []


def test_setup_requires_confirmation(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgresql://u:p@localhost:1/never")
    result = CliRunner().invoke(cli, ["setup"], input="n\n")
    assert result.exit_code != 0
    assert "Aborted" in result.output


def test_health_reports_configuration_problems(monkeypatch):
    for key in ("DATABASE_URL", "DB_HOST", "DB_PORT", "DB_USER", "DB_PASSWORD", "DB_NAME"):
        monkeypatch.delenv(key, raising=False)
    result = CliRunner().invoke(cli, ["health"])
    assert result.exit_code == 1
    assert "Unhealthy" in result.output
