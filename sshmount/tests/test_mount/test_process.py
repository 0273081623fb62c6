import subprocess
from unittest import mock

import pytest

from sshmount.mount.process import (
    ProcessErrorKind,
    ProcessState,
    SSHFSServerConfig,
    SSHFSServerProcess,
)
from sshmount.vm import IdMapping


# Captured before any test patches subprocess.Popen
_real_popen = subprocess.Popen


def mock_server(substitute_command: str):
    def wrapper(_command, *args, **kwargs):
        return _real_popen(substitute_command, shell=True, *args, **kwargs)

    return wrapper


@pytest.fixture
def config():
    return SSHFSServerConfig(
        host="10.0.0.5",
        port=22,
        username="ubuntu",
        instance="primary",
        private_key="c2VjcmV0",
        source_path="/home/me/src",
        target_path="/home/ubuntu/src",
        uid_mappings=(IdMapping(1000, 1000), IdMapping(0, 1001)),
        gid_mappings=(IdMapping(100, 1000),),
        log_level=2,
    )


def run_server(config, command: str) -> SSHFSServerProcess:
    process = SSHFSServerProcess(config)

    with mock.patch("subprocess.Popen", side_effect=mock_server(command)):
        outcome = process.start_and_block_until_connected()

    process.outcome = outcome
    return process


def test_config_arguments(config):
    assert config.arguments() == [
        "10.0.0.5",
        "22",
        "ubuntu",
        "/home/me/src",
        "/home/ubuntu/src",
        "1000:1000,0:1001,",
        "100:1000,",
        "2",
    ]


def test_config_hides_private_key(config):
    assert config.environment()["KEY"] == "c2VjcmV0"
    assert "c2VjcmV0" not in config.arguments()
    assert "c2VjcmV0" not in repr(config)


def test_process_command(config):
    process = SSHFSServerProcess(config, "/opt/sshfs_server")

    with mock.patch("subprocess.Popen") as mock_popen:
        mock_popen.side_effect = Exception()

        with pytest.raises(Exception):
            process.start()

        assert mock_popen.call_args[0][0] == ["/opt/sshfs_server"] + config.arguments()
        assert mock_popen.call_args[1]["env"]["KEY"] == "c2VjcmV0"


def test_connected(config):
    # exec is necessary to ensure that sleep receives the termination signal
    process = run_server(config, "echo Connected; exec sleep 10")

    assert process.outcome.connected
    assert process.outcome.state is None
    assert process.running()
    assert process.process_state() == ProcessState()

    assert process.terminate(5000)
    assert not process.running()
    assert process.process_state().terminated
    assert process.process_state().completed_successfully()


def test_token_is_substring(config):
    process = run_server(config, "echo 'sshfs: Connected to 10.0.0.5'; exec sleep 10")

    assert process.outcome.connected
    process.terminate(5000)


def test_token_split_across_output(config):
    process = run_server(
        config, "printf 'Conn'; sleep 0.2; printf 'ected'; exec sleep 10"
    )

    assert process.outcome.connected
    process.terminate(5000)


def test_token_is_case_sensitive(config):
    process = run_server(config, "echo connected; exit 3")

    assert not process.outcome.connected
    assert process.outcome.state.exit_code == 3


def test_exit_before_connected(config):
    process = run_server(config, "echo 'could not connect' >&2; exit 3")

    assert not process.outcome.connected
    assert process.outcome.state.exit_code == 3
    assert process.outcome.state.failure_message() == (
        "process returned exit code: 3"
    )
    assert not process.running()

    assert process.read_all_standard_error() == "could not connect\n"
    assert process.read_all_standard_error() == ""


def test_connected_then_exit(config):
    process = run_server(config, "echo Connected; exit 1")

    assert process.outcome.connected


def test_output_is_collected(config):
    process = run_server(config, "echo more; echo Connected; exec sleep 10")

    assert process.outcome.connected
    process.terminate(5000)

    assert process.read_all_standard_output() == "more\nConnected\n"


def test_failed_to_start(config):
    process = SSHFSServerProcess(config)

    on_error = mock.Mock()
    on_finished = mock.Mock()
    process.on_error(on_error)
    process.on_finished(on_finished)

    with mock.patch("subprocess.Popen") as mock_popen:
        mock_popen.side_effect = FileNotFoundError("sshfs_server")
        outcome = process.start_and_block_until_connected()

    assert not outcome.connected
    assert outcome.state.exit_code is None
    assert outcome.state.error.kind == ProcessErrorKind.FAILED_TO_START
    assert "failed to start sshfs_server" in outcome.state.failure_message()

    on_error.assert_called_once_with(outcome.state.error)
    on_finished.assert_called_once_with(outcome.state)


def test_crashed(config):
    process = SSHFSServerProcess(config)

    on_error = mock.Mock()
    process.on_error(on_error)

    with mock.patch("subprocess.Popen", side_effect=mock_server("kill -9 $$")):
        outcome = process.start_and_block_until_connected()

    assert not outcome.connected
    assert outcome.state.error.kind == ProcessErrorKind.CRASHED
    assert not outcome.state.completed_successfully()
    assert on_error.called


def test_finished_callback(config):
    process = SSHFSServerProcess(config)

    on_finished = mock.Mock()
    process.on_finished(on_finished)

    with mock.patch("subprocess.Popen", side_effect=mock_server("exit 0")):
        outcome = process.start_and_block_until_connected()

    on_finished.assert_called_once_with(ProcessState(exit_code=0))
    assert outcome.state.completed_successfully()


def test_start_twice(config):
    process = run_server(config, "exit 0")

    with pytest.raises(RuntimeError):
        process.start()


def test_terminate_not_started(config):
    process = SSHFSServerProcess(config)

    assert process.terminate(5000)


def test_terminate_already_exited(config):
    process = run_server(config, "exit 3")

    assert process.terminate(5000)
    assert process.process_state().exit_code == 3


def test_terminate_timeout(config):
    process = run_server(config, "trap '' TERM; echo Connected; exec sleep 10")

    assert process.outcome.connected
    assert not process.terminate(200)
    assert process.running()

    process.kill()

    assert process.terminate(5000)
    assert process.process_state().terminated


def test_terminate_while_child_holds_output(config):
    # The background sleep inherits stdout and stderr and outlives the server
    process = run_server(
        config,
        "sleep 3 & trap 'exit 0' TERM; echo Connected; "
        "while true; do sleep 0.1; done",
    )

    assert process.outcome.connected
    assert process.terminate(2000)
    assert not process.running()
    assert process.process_state().exit_code == 0


def test_output_keeps_recent_bytes(config):
    with mock.patch("sshmount.constants.OUTPUT_BUFFER_SIZE", 16):
        process = run_server(
            config,
            "printf '0123456789abcdefghij' >&2; printf 'ABCDEFGHIJKLMNOPQRST'; exit 3",
        )

    assert not process.outcome.connected
    assert process.read_all_standard_error() == "456789abcdefghij"
    assert process.read_all_standard_output() == "EFGHIJKLMNOPQRST"


def test_token_found_after_long_output(config):
    process = run_server(
        config, "head -c 100000 /dev/zero | tr '\\0' x; echo Connected; exec sleep 10"
    )

    assert process.outcome.connected
    process.terminate(5000)
