"""
Shared pytest fixtures for aspect_reauth tests.
"""

import sys
import tempfile
from unittest import mock

import keyring
import pytest

from aspect_reauth.config import Settings
from tests.fakes import HELPER, HOST, LOGIN_HINT, REMOTE, MemoryKeyring, install_fake_tools, path_with


@pytest.fixture
def settings():
    """Settings for host devbox / remote x.example.com, independent of the environment."""
    return Settings(host=HOST, remote=REMOTE, credential_helper=HELPER)


@pytest.fixture
def session():
    """Stand-in for an established SSHSession."""
    ssh = mock.MagicMock()
    ssh.host = HOST
    ssh.command.side_effect = lambda command, *args: ["ssh", "--", HOST, command, *args]
    return ssh


@pytest.fixture
def memory_keyring():
    """Route the keyring library to an in-memory backend for the test."""
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    try:
        yield backend
    finally:
        keyring.set_keyring(previous)


@pytest.fixture
def socket_tmp(tmp_path, monkeypatch):
    """Directory in which control socket directories are created."""
    root = tmp_path / "tmp"
    root.mkdir()
    monkeypatch.setattr(tempfile, "tempdir", str(root))
    return root


@pytest.fixture
def fake_tools(tmp_path, monkeypatch, socket_tmp):
    """Fake ssh/helper/keyctl on PATH with their state in tmp_path/state."""
    if sys.platform == "win32":
        pytest.skip("fake tools are POSIX shell scripts")
    state = tmp_path / "state"
    state.mkdir()
    tools = install_fake_tools(tmp_path / "bin")
    monkeypatch.setenv("PATH", path_with(tmp_path / "bin"))
    monkeypatch.setenv("FAKE_STATE_DIR", str(state))
    monkeypatch.setenv("FAKE_SSH_LOG", str(state / "ssh.log"))
    monkeypatch.setenv("FAKE_HELPER_ERROR", LOGIN_HINT)
    for var in ("FAKE_SSH_CONFIG", "FAKE_SSH_TERM_PARENT", "FAKE_HELPER_VALID", "FAKE_KEYCTL_FAIL"):
        monkeypatch.delenv(var, raising=False)
    tools["state"] = state
    return tools
