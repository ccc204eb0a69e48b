"""Tests for CLI entry point."""

import shutil
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from docpulse.cli import _option, _positionals, main
from docpulse.config import Config
from docpulse.rollup import RollupLock
from docpulse.storage import HeartbeatStore


class TestArgumentHelpers(unittest.TestCase):
    """Test cases for the argument helpers."""

    def test_option(self):
        args = ["--email", "a@x.com", "--days"]
        self.assertEqual(_option(args, "--email"), "a@x.com")
        self.assertIsNone(_option(args, "--days"))
        self.assertEqual(_option(args, "--port", "8787"), "8787")

    def test_positionals_skip_option_values(self):
        args = ["add", "d.com", "--pattern", "/d/(\\w+)", "h1", "--keep-raw"]
        self.assertEqual(_positionals(args), ["add", "d.com", "h1"])


class TestCLI(unittest.TestCase):
    """Test cases for CLI commands and main execution."""

    def setUp(self):
        """Set up a config pointing at a temporary data directory."""
        self.temp_dir = tempfile.mkdtemp()
        self.config = Config(config_dir=self.temp_dir)
        self.config.set("data_dir", self.temp_dir)
        self.config.set("verbose_logging", False)
        self._get_config = patch("docpulse.cli.get_config", return_value=self.config)
        self._get_config.start()

    def tearDown(self):
        self._get_config.stop()
        shutil.rmtree(self.temp_dir)

    def run_cli(self, *args):
        with patch("builtins.print") as mock_print:
            code = main(list(args))
        output = "\n".join(str(c.args[0]) for c in mock_print.call_args_list if c.args)
        return code, output

    def open_store(self):
        return HeartbeatStore(Path(self.temp_dir) / "docpulse.db")

    def test_no_arguments_prints_usage(self):
        code, output = self.run_cli()
        self.assertEqual(code, 0)
        self.assertIn("Usage: docpulse", output)

    def test_help(self):
        code, output = self.run_cli("rollup", "--help")
        self.assertEqual(code, 0)
        self.assertIn("Commands:", output)

    def test_unknown_command(self):
        code, output = self.run_cli("frobnicate")
        self.assertEqual(code, 1)
        self.assertIn("Unknown command", output)

    def test_main_reads_sys_argv(self):
        with patch.object(sys, "argv", ["docpulse"]):
            with patch("builtins.print"):
                self.assertEqual(main(), 0)

    def test_account_create_prints_key(self):
        code, output = self.run_cli("account", "create", "A@x.com")

        self.assertEqual(code, 0)
        store = self.open_store()
        account = store.get_account_by_email("a@x.com")
        store.close()
        self.assertIn(f"API key: {account.api_key}", output)

    def test_account_create_duplicate_is_error(self):
        self.run_cli("account", "create", "a@x.com")
        code, output = self.run_cli("account", "create", "a@x.com")

        self.assertEqual(code, 1)
        self.assertIn("Error:", output)

    def test_account_usage(self):
        code, _ = self.run_cli("account", "delete")
        self.assertEqual(code, 1)

    def test_selector_add_shared(self):
        code, output = self.run_cli(
            "selector", "add", "docs.google.com", ".docs-title-input",
            "--pattern", "/d/([\\w-]+)",
        )

        self.assertEqual(code, 0)
        self.assertIn("all accounts", output)
        store = self.open_store()
        descriptor = store.find_selector("docs.google.com")
        store.close()
        self.assertEqual(descriptor.doc_id_pattern, "/d/([\\w-]+)")

    def test_selector_add_for_unknown_account(self):
        code, output = self.run_cli(
            "selector", "add", "d.com", "h1", "--email", "ghost@x.com"
        )
        self.assertEqual(code, 1)
        self.assertIn("No account", output)

    def test_project_add(self):
        self.run_cli("account", "create", "a@x.com")

        code, _ = self.run_cli(
            "project", "add", "a@x.com", "Q3", "--keywords", "quarterly, plan"
        )

        self.assertEqual(code, 0)
        store = self.open_store()
        account = store.get_account_by_email("a@x.com")
        projects = store.list_projects(account.id)
        store.close()
        self.assertEqual(projects[0].keywords, ["quarterly", "plan"])

    def test_rollup_runs(self):
        code, _ = self.run_cli("rollup", "--keep-raw")
        self.assertEqual(code, 0)

    def test_rollup_refused_while_locked(self):
        lock = RollupLock(Path(self.temp_dir) / "rollup.lock")
        self.assertTrue(lock.acquire())
        try:
            code, output = self.run_cli("rollup")
        finally:
            lock.release()

        self.assertEqual(code, 1)
        self.assertIn("already running", output)

    def test_report(self):
        self.run_cli("account", "create", "a@x.com")

        code, output = self.run_cli("report", "--email", "a@x.com")

        self.assertEqual(code, 0)
        self.assertIn("Active today: 0m", output)
        self.assertIn("No activity recorded", output)

    def test_report_requires_email(self):
        code, _ = self.run_cli("report")
        self.assertEqual(code, 1)

    @patch("docpulse.cli.serve")
    def test_serve_passes_bind_options(self, mock_serve):
        code, _ = self.run_cli("serve", "--host", "0.0.0.0", "--port", "9000")

        self.assertEqual(code, 0)
        mock_serve.assert_called_once_with(self.config, host="0.0.0.0", port=9000)

    @patch("docpulse.cli.serve")
    def test_serve_invalid_port(self, mock_serve):
        code, _ = self.run_cli("serve", "--port", "abc")
        self.assertEqual(code, 1)
        mock_serve.assert_not_called()
