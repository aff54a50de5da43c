import json
import stat

import pytest

from larkcli.mailconfig import (
    Credentials,
    MailConfigError,
    cache_file_path,
    clear_credentials,
    credentials_file_path,
    has_credentials,
    load_credentials,
    save_credentials,
)


def _creds():
    password = "password"
    return Credentials(
        host="imap.example.com",
        port=993,
        username="user@example.com",
        password=password,
        use_ssl=True,
    )


def test_paths(tmp_path):
    assert credentials_file_path(tmp_path) == tmp_path / "mail.json"
    assert cache_file_path(tmp_path) == tmp_path / "mail_cache.db"
    assert credentials_file_path(str(tmp_path)) == tmp_path / "mail.json"


def test_save_load_round_trip(tmp_path):
    creds = _creds()
    save_credentials(creds, tmp_path)
    assert has_credentials(tmp_path)
    assert load_credentials(tmp_path) == creds


def test_saved_file_format(tmp_path):
    save_credentials(_creds(), tmp_path)
    text = credentials_file_path(tmp_path).read_text()
    assert json.loads(text) == {
        "host": "imap.example.com",
        "port": 993,
        "username": "user@example.com",
        "password": "password",
        "use_ssl": True,
    }
    assert text.startswith('{\n  "host"')


def test_saved_file_is_private(tmp_path):
    save_credentials(_creds(), tmp_path)
    mode = stat.S_IMODE(credentials_file_path(tmp_path).stat().st_mode)
    assert mode == 0o600


def test_load_missing(tmp_path):
    assert not has_credentials(tmp_path)
    with pytest.raises(MailConfigError, match="mail not configured"):
        load_credentials(tmp_path)


def test_load_invalid_json(tmp_path):
    credentials_file_path(tmp_path).write_text("{not json")
    with pytest.raises(MailConfigError, match="failed to parse mail credentials"):
        load_credentials(tmp_path)


def test_load_wrong_type(tmp_path):
    credentials_file_path(tmp_path).write_text('{"port": "993"}')
    with pytest.raises(MailConfigError, match="failed to parse mail credentials"):
        load_credentials(tmp_path)


def test_load_partial_uses_defaults(tmp_path):
    credentials_file_path(tmp_path).write_text('{"host": "imap.example.com", "extra": 1}')
    assert load_credentials(tmp_path) == Credentials(host="imap.example.com")


def test_load_from_directory_fails(tmp_path):
    credentials_file_path(tmp_path).mkdir()
    with pytest.raises(MailConfigError, match="failed to read mail credentials"):
        load_credentials(tmp_path)


def test_clear_credentials(tmp_path):
    save_credentials(_creds(), tmp_path)
    clear_credentials(tmp_path)
    assert not has_credentials(tmp_path)
    clear_credentials(tmp_path)
    assert not credentials_file_path(tmp_path).exists()


def test_save_into_missing_directory(tmp_path):
    with pytest.raises(MailConfigError, match="failed to write credentials"):
        save_credentials(_creds(), tmp_path / "absent")