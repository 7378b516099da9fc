# tests/test_utils.py

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

import keyring
import keyring.errors
import pytest
from keyring.backend import KeyringBackend
from rich.logging import RichHandler

from caldav_tasks.core.config import AppConfig, GeneralConfig
from caldav_tasks.utils.colors import TAG_PALETTE, contrast_text_color, generate_tag_color
from caldav_tasks.utils.credentials import SERVICE_NAME, CredentialStore
from caldav_tasks.utils.logging import get_current_log_level, set_logging_level, setup_logging


class MemoryKeyring(KeyringBackend):
    priority = 1

    def __init__(self) -> None:
        super().__init__()
        self.passwords: dict[tuple[str, str], str] = {}

    def get_password(self, service, username):
        return self.passwords.get((service, username))

    def set_password(self, service, username, password):
        self.passwords[(service, username)] = password

    def delete_password(self, service, username):
        if self.passwords.pop((service, username), None) is None:
            raise keyring.errors.PasswordDeleteError(username)


@pytest.fixture()
def memory_keyring():
    previous = keyring.get_keyring()
    backend = MemoryKeyring()
    keyring.set_keyring(backend)
    yield backend
    keyring.set_keyring(previous)


@pytest.fixture()
def restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def test_credentials_round_trip(memory_keyring: MemoryKeyring) -> None:
    credentials = CredentialStore()

    credentials.set_password("acc-1", "s3cret")

    assert memory_keyring.passwords[(SERVICE_NAME, "account:acc-1")] == "s3cret"
    assert credentials.get_password("acc-1") == "s3cret"
    assert credentials.has_password("acc-1")
    assert credentials.delete_password("acc-1") is True
    assert credentials.delete_password("acc-1") is False
    assert not credentials.has_password("acc-1")


def test_setup_logging_installs_console_and_file(tmp_path: Path, restore_root_logging) -> None:
    config = AppConfig(general=GeneralConfig(data_dir=tmp_path, log_level="WARNING"))

    log_file = setup_logging(config, level_name="debug")
    logging.getLogger("caldav_tasks.test").debug("hello file")

    root = logging.getLogger()
    assert any(isinstance(h, RichHandler) for h in root.handlers)
    assert log_file == tmp_path.resolve() / "logs" / "caldav-tasks.log"
    assert get_current_log_level() == "DEBUG"
    assert logging.getLogger("caldav").level == logging.WARNING

    for handler in root.handlers:
        handler.flush()
    assert "hello file" in log_file.read_text(encoding="utf-8")


def test_set_logging_level_leaves_file_handler(tmp_path: Path, restore_root_logging) -> None:
    setup_logging(AppConfig(general=GeneralConfig(data_dir=tmp_path)))

    set_logging_level("error")

    root = logging.getLogger()
    assert root.level == logging.ERROR
    assert get_current_log_level() == "ERROR"
    file_handler = next(h for h in root.handlers if isinstance(h, logging.handlers.RotatingFileHandler))
    assert file_handler.level == logging.DEBUG
    with pytest.raises(ValueError):
        set_logging_level("chatty")


def test_tag_colors() -> None:
    assert generate_tag_color("Work") == generate_tag_color("Work")
    assert generate_tag_color("Work") in TAG_PALETTE
    assert contrast_text_color("#ffffff") == "#000000"
    assert contrast_text_color("#000000") == "#ffffff"
    assert contrast_text_color("not a colour") == "#ffffff"
