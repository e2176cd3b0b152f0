"""CLI tests."""

from typer.testing import CliRunner

from tollgate import __version__
from tollgate.cli import app

runner = CliRunner()


def test_version():
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert result.stdout.strip() == f"tollgate {__version__}"


def test_create_user_rejects_short_password():
    result = runner.invoke(
        app,
        ["users", "create", "bob@example.com", "--name", "Bob", "--password"],
        input="abc\nabc\n",
    )

    assert result.exit_code == 1
    assert "Password must be between" in result.stdout


def test_sweep_in_background(mock_queue):
    result = runner.invoke(app, ["maintenance", "sweep", "--background", "--days", "3"])

    assert result.exit_code == 0
    assert mock_queue.call_count == 2
    names = [call.args[0] for call in mock_queue.call_args_list]
    assert names == ["sweep_sessions", "sweep_tokens"]
    assert mock_queue.call_args_list[1].kwargs["retention_days"] == 3
