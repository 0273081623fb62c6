from unittest import mock
import logging
import os

import pytest

from sshmount.__main__ import main
import sshmount.constants as constants
from sshmount.errors import SSHFSMissingError
from sshmount.logger import log
from sshmount.vm import IdMapping


@pytest.fixture
def config_path(tmp_path):
    (tmp_path / "config").write_text(
        f"""
        [mount]
        lock_path = {tmp_path / "locks"}
        """
    )

    return str(tmp_path / "config")


@pytest.fixture
def mock_wait():
    with mock.patch("sshmount.__main__._wait_for_stop_request") as m:
        yield m


def run(config_path, *args):
    with pytest.raises(SystemExit) as e:
        main(
            [
                f"--config={config_path}",
                "--host=10.0.0.5",
                "-i",
                "key",
                *args,
                "primary",
                "src",
                "/home/ubuntu/src",
            ]
        )

    return e.value.code


def test_no_args():
    with pytest.raises(SystemExit):
        main([])


def test_debug_flag_set(config_path, mock_wait):
    with mock.patch("sshmount.mount.SSHFSMountHandler"):
        run(config_path, "--debug")

        assert log.getEffectiveLevel() == logging.DEBUG


def test_debug_flag_not_set(config_path, mock_wait):
    with mock.patch("sshmount.mount.SSHFSMountHandler"):
        run(config_path)

        assert log.getEffectiveLevel() == logging.WARNING


def test_mount_until_stop_requested(config_path, mock_wait, capsys):
    with mock.patch("sshmount.mount.SSHFSMountHandler") as mock_handler:
        assert run(config_path) == 0

        handler = mock_handler.return_value

        assert handler.start.called
        assert mock_wait.called
        assert handler.stop.called
        assert handler.close.called

    assert "mounted" in capsys.readouterr().err


def test_mount_spec(config_path, mock_wait):
    with mock.patch("sshmount.mount.SSHFSMountHandler") as mock_handler:
        run(config_path, "--uid-map=0:1001")

        vm, _, spec, _ = mock_handler.call_args[0]

    assert vm.vm_name == "primary"
    assert vm.ssh_hostname() == "10.0.0.5"

    assert spec.source_path == os.path.abspath("src")
    assert spec.target_path == "/home/ubuntu/src"
    assert spec.uid_mappings == (IdMapping(0, 1001),)
    assert spec.gid_mappings == (
        IdMapping(os.getgid(), constants.DEFAULT_INSTANCE_ID),
    )


def test_overrides(config_path, mock_wait):
    with mock.patch("sshmount.mount.SSHFSMountHandler") as mock_handler:
        run(config_path, "--server=/opt/sshfs_server", "--timeout=1234")

        config = mock_handler.call_args[0][3]

        assert config.mount.server_program == "/opt/sshfs_server"
        assert mock_handler.return_value.start.call_args[0][1] == 1234


def test_mount_failure(config_path, mock_wait, caplog):
    with mock.patch("sshmount.mount.SSHFSMountHandler") as mock_handler:
        mock_handler.return_value.start.side_effect = SSHFSMissingError()

        assert run(config_path) == constants.SSHMOUNT_ERROR_CODE

        assert mock_handler.return_value.close.called
        assert not mock_wait.called

    assert "failed to mount: sshfs is not installed" in caplog.text


def test_interrupted(config_path, mock_wait):
    with mock.patch("sshmount.mount.SSHFSMountHandler") as mock_handler:
        mock_handler.return_value.start.side_effect = KeyboardInterrupt()

        assert run(config_path) == 128 + 2


def test_mount_already_serviced(config_path, mock_wait, caplog):
    with mock.patch("sshmount.mount.SSHFSMountHandler") as mock_handler:
        with mock.patch("fasteners.InterProcessLock") as mock_lock:
            mock_lock.return_value.acquire.return_value = False

            assert run(config_path) == constants.SSHMOUNT_ERROR_CODE

        assert not mock_handler.called

    assert "is already being serviced" in caplog.text


def test_timeout_from_config_without_override(tmp_path, mock_wait):
    (tmp_path / "config").write_text(
        f"""
        [mount]
        lock_path = {tmp_path / "locks"}
        timeout = 4321
        """
    )

    with mock.patch("sshmount.mount.SSHFSMountHandler") as mock_handler:
        run(str(tmp_path / "config"))

        assert mock_handler.return_value.start.call_args[0][1] == 4321
