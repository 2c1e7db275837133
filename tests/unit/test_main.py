"""Tests for the command-line entry point."""

import json
import signal
from pathlib import Path
from unittest import mock

import pytest

from telemetry_agent import main as cli

pytestmark = pytest.mark.cli


class TestParser:
    """Tests for argument parsing."""

    def test_run_options(self) -> None:
        args = cli.build_parser().parse_args(["run", "--base-dir", "/srv/agent", "--config", "c.json",
                                              "--log-level", "DEBUG"])
        assert args.command == "run"
        assert args.base_dir == "/srv/agent"
        assert args.config == "c.json"
        assert args.log_level == "DEBUG"
        assert args.func is cli._run_agent_command

    def test_watch_options(self) -> None:
        args = cli.build_parser().parse_args(["watch", "--count", "3"])
        assert args.count == 3
        assert args.pipe_name is None
        assert args.func is cli._run_watch_command


class TestRunCommand:
    """Tests for the default 'run' command."""

    def test_no_command_runs_worker(self, tmp_path: Path) -> None:
        (tmp_path / "config.json").write_text(json.dumps({"client": "acme", "hyperV": False}), encoding="utf-8")
        with mock.patch.object(cli, "TelemetryAgent") as agent_cls, \
                mock.patch.object(cli, "PsutilMetricSource") as source_cls:
            exit_code = cli.main(["--base-dir", str(tmp_path)])

        assert exit_code == 0
        source_cls.assert_called_once_with(hyper_v=False)
        context = agent_cls.call_args[0][0]
        assert context.config.client == "acme"
        assert context.base_directory == str(tmp_path)
        agent_cls.return_value.start.assert_called_once()
        assert (tmp_path / "Logs" / "worker-test.log").exists()

    def test_worker_fault_does_not_change_exit_code(self, tmp_path: Path) -> None:
        with mock.patch.object(cli, "TelemetryAgent") as agent_cls, \
                mock.patch.object(cli, "PsutilMetricSource"):
            agent_cls.return_value.start.side_effect = RuntimeError("boom")
            assert cli.main(["run", "--base-dir", str(tmp_path)]) == 0

    def test_signal_handlers_are_restored(self, tmp_path: Path) -> None:
        previous = signal.getsignal(signal.SIGTERM)
        with mock.patch.object(cli, "TelemetryAgent"), mock.patch.object(cli, "PsutilMetricSource"):
            cli.main(["run", "--base-dir", str(tmp_path)])
        assert signal.getsignal(signal.SIGTERM) == previous

    def test_signal_requests_stop(self) -> None:
        agent = mock.Mock()
        previous = cli._install_signal_handlers(agent)
        try:
            handler = signal.getsignal(signal.SIGTERM)
            handler(signal.SIGTERM, None)
        finally:
            cli._restore_signal_handlers(previous)
        agent.request_stop.assert_called_once()


class TestWatchCommand:

    def test_prints_stream_lines(self, tmp_path: Path, capsys) -> None:
        with mock.patch.object(cli, "iter_stream_lines", return_value=iter(['{"a":1}', '{"a":2}'])) as lines:
            exit_code = cli.main(["watch", "--base-dir", str(tmp_path), "--count", "2"])
        assert exit_code == 0
        assert capsys.readouterr().out.splitlines() == ['{"a":1}', '{"a":2}']
        assert lines.call_args[1]["max_lines"] == 2

    def test_unreachable_stream_exits_non_zero(self, tmp_path: Path, capsys) -> None:
        with mock.patch.object(cli, "iter_stream_lines", side_effect=ConnectionRefusedError("refused")):
            assert cli.main(["watch", "--base-dir", str(tmp_path)]) == 1
        assert "Could not read the live stream" in capsys.readouterr().err

    def test_pipe_name_comes_from_config(self, tmp_path: Path) -> None:
        (tmp_path / "config.json").write_text(json.dumps({"pipeName": "AcmePipe"}), encoding="utf-8")
        with mock.patch.object(cli, "iter_stream_lines", return_value=iter([])) as lines:
            assert cli.main(["watch", "--base-dir", str(tmp_path)]) == 0
        assert lines.call_args[0][0] == cli.determine_channel_address("AcmePipe", str(tmp_path))

    def test_pipe_name_option_overrides_config(self, tmp_path: Path) -> None:
        (tmp_path / "config.json").write_text(json.dumps({"pipeName": "AcmePipe"}), encoding="utf-8")
        with mock.patch.object(cli, "iter_stream_lines", return_value=iter([])) as lines:
            assert cli.main(["watch", "--base-dir", str(tmp_path), "--pipe-name", "OtherPipe"]) == 0
        assert lines.call_args[0][0] == cli.determine_channel_address("OtherPipe", str(tmp_path))

    def test_default_pipe_name_without_config(self, tmp_path: Path) -> None:
        with mock.patch.object(cli, "iter_stream_lines", return_value=iter([])) as lines:
            assert cli.main(["watch", "--base-dir", str(tmp_path)]) == 0
        assert lines.call_args[0][0] == cli.determine_channel_address("TelemetryPipe", str(tmp_path))
