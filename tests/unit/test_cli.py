"""Test the click CLI surface (no database required)."""

from click.testing import CliRunner

from order_orchestrator.cli import main


class TestCli:
    def test_help_lists_commands(self):
        result = CliRunner().invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("serve", "relay", "init-db", "outbox-status", "requeue", "seed"):
            assert command in result.output

    def test_store_commands_need_postgres(self):
        runner = CliRunner()
        for args in (["init-db"], ["outbox-status"], ["requeue", "evt-1"], ["seed", "--product", "p-widget"]):
            result = runner.invoke(main, args)
            assert result.exit_code == 1
            assert "postgres" in result.output

    def test_bad_config_is_rejected(self, tmp_path):
        config = tmp_path / "orders.toml"
        config.write_text(
            "[relay]\nbase_backoff_seconds = 10.0\nmax_backoff_seconds = 1.0\n"
        )
        result = CliRunner().invoke(main, ["outbox-status", "--config", str(config)])
        assert result.exit_code != 0

    def test_seed_needs_products(self):
        result = CliRunner().invoke(main, ["seed"])
        assert result.exit_code == 1
        assert "--product" in result.output
