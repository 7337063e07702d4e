"""
Tests for the pivseal command line over a fake token backend.
"""

import json
import os
import stat
import sys
from unittest.mock import MagicMock

import pytest
import requests
from conftest import FakeBackend, FakeToken

from pivseal.cli import build_parser, main
from pivseal.core.crypto.envelope import Envelope

SECRETS = {"keys": ["1d2c3b4a"], "root_token": "hvs.rootroot"}


def vault_session(*payloads):
    session = MagicMock(spec=requests.Session)
    responses = []
    for payload in payloads:
        response = MagicMock(spec=requests.Response)
        response.status_code = 200
        response.content = b"{}"
        response.json.return_value = payload
        responses.append(response)
    session.request.side_effect = responses
    return session


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    monkeypatch.delenv("YUBIKEY_PIN", raising=False)
    for key in list(os.environ):
        if key.startswith("PIVSEAL_"):
            monkeypatch.delenv(key)


@pytest.fixture
def sealed_file(tmp_path, backend):
    source = tmp_path / "secrets.json"
    source.write_text(json.dumps(SECRETS))
    target = tmp_path / "vault.enc"

    assert main(["seal", str(source), str(target)], backend=backend) == 0
    return target


class TestParser:
    def test_requires_command(self):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args([])

        assert exc_info.value.code == 2

    def test_repeatable_flags(self):
        args = build_parser().parse_args(
            ["--avoid-serial", "1", "--avoid-serial", "2", "login", "f", "--token-policy", "a"]
        )

        assert args.avoid_serial == [1, 2]
        assert args.token_policy == ["a"]
        assert args.token_ttl == "1h"

    def test_invalid_serial(self):
        with pytest.raises(SystemExit) as exc_info:
            main(["--serial", "abc", "ls"], backend=FakeBackend())

        assert exc_info.value.code == 2


class TestLs:
    def test_lists_devices(self, backend, capsys):
        assert main(["ls"], backend=backend) == 0

        out = capsys.readouterr().out
        assert out.startswith("0: ")
        assert "serial:   1001" in out
        assert "serial:   2002" in out

    def test_warns_when_nothing_selected(self, backend, capsys):
        assert main(["--serial", "9", "ls"], backend=backend) == 0

        assert "No cards match" in capsys.readouterr().err

    def test_reports_device_errors(self, p256_key, capsys):
        backend = FakeBackend(FakeToken(1, None), FakeToken(2, p256_key))

        assert main(["ls"], backend=backend) == 0

        captured = capsys.readouterr()
        assert "not provisioned" in captured.err
        assert "serial:   2" in captured.out

    def test_survives_reader_failure(self, p256_key, capsys):
        backend = FakeBackend(
            FakeToken(1, p256_key, read_error=OSError("card removed")),
            FakeToken(2, p256_key),
        )

        assert main(["ls"], backend=backend) == 0

        captured = capsys.readouterr()
        assert "card removed" in captured.err
        assert "serial:   2" in captured.out


class TestSealUnseal:
    def test_seal_writes_private_envelope(self, sealed_file):
        envelope = Envelope.from_json(sealed_file.read_bytes())

        assert envelope.device == 1001
        if sys.platform != "win32":
            assert stat.S_IMODE(sealed_file.stat().st_mode) == 0o600

    def test_unseal_file_prints_payload(self, sealed_file, backend, capsys):
        capsys.readouterr()

        assert main(["unseal-file", str(sealed_file)], backend=backend) == 0

        assert json.loads(capsys.readouterr().out) == SECRETS

    def test_pin_from_environment(self, sealed_file, two_tokens, monkeypatch):
        ec_token, _ = two_tokens
        ec_token.pin = "777777"
        monkeypatch.setenv("YUBIKEY_PIN", "777777")

        assert main(["unseal-file", str(sealed_file)], backend=FakeBackend(*two_tokens)) == 0

    def test_wrong_pin(self, sealed_file, backend, capsys):
        assert main(["--pin", "000000", "unseal-file", str(sealed_file)], backend=backend) == 1

        assert "PIN verification failed" in capsys.readouterr().err

    def test_seal_invalid_json(self, tmp_path, backend):
        source = tmp_path / "bad.json"
        source.write_text("{not json")

        assert main(["seal", str(source), str(tmp_path / "out")], backend=backend) == 1
        assert not (tmp_path / "out").exists()

    def test_missing_input(self, tmp_path, backend, capsys):
        assert main(["unseal-file", str(tmp_path / "missing")], backend=backend) == 1

    def test_malformed_envelope(self, tmp_path, backend, capsys):
        path = tmp_path / "broken.enc"
        path.write_text('{"dev": 1}')

        assert main(["unseal-file", str(path)], backend=backend) == 1
        assert "missing fields" in capsys.readouterr().err

    def test_no_devices(self, tmp_path, capsys):
        source = tmp_path / "secrets.json"
        source.write_text("{}")

        assert main(["seal", str(source), str(tmp_path / "out")], backend=FakeBackend()) == 1
        assert "No PIV devices detected" in capsys.readouterr().err


class TestShare:
    def test_share_to_other_device(self, sealed_file, backend, tmp_path, capsys):
        target = tmp_path / "shared.enc"

        assert main(["share", str(sealed_file), str(target)], backend=backend) == 0

        assert Envelope.from_json(target.read_bytes()).device == 2002
        capsys.readouterr()
        assert main(["unseal-file", str(target)], backend=backend) == 0
        assert json.loads(capsys.readouterr().out) == SECRETS


class TestVaultCommands:
    def test_init(self, backend, tmp_path):
        session = vault_session(SECRETS)
        target = tmp_path / "vault.enc"

        assert main(["init", str(target)], backend=backend, vault_session=session) == 0

        method, url = session.request.call_args.args
        assert (method, url) == ("PUT", "http://127.0.0.1:8200/v1/sys/init")
        assert Envelope.from_json(target.read_bytes()).device == 1001

    def test_unseal(self, sealed_file, backend):
        session = vault_session({"sealed": False, "t": 1, "n": 1, "progress": 0})

        assert main(
            ["--vault-endpoint", "https://vault.test", "unseal", str(sealed_file)],
            backend=backend, vault_session=session,
        ) == 0

        args, kwargs = session.request.call_args
        assert args[1] == "https://vault.test/v1/sys/unseal"
        assert kwargs["json"] == {"key": "1d2c3b4a"}

    def test_unseal_still_sealed(self, sealed_file, backend, capsys):
        session = vault_session({"sealed": True, "t": 3, "n": 5, "progress": 1})

        assert main(["unseal", str(sealed_file)], backend=backend, vault_session=session) == 1
        assert "has not been unsealed" in capsys.readouterr().err

    def test_login_writes_token(self, sealed_file, backend, tmp_path):
        session = vault_session({"auth": {"client_token": "hvs.child", "lease_duration": 3600}})
        token_path = tmp_path / ".vault-token"

        assert main(
            ["login", str(sealed_file), "--token-path", str(token_path), "--token-role", "ops"],
            backend=backend, vault_session=session,
        ) == 0

        assert token_path.read_text() == "hvs.child"
        args, kwargs = session.request.call_args
        assert args[1].endswith("/v1/auth/token/create/ops")
        assert kwargs["headers"]["X-Vault-Token"] == "hvs.rootroot"
        assert kwargs["json"]["ttl"] == "1h"

    def test_login_without_root_token(self, tmp_path, backend, capsys):
        source = tmp_path / "keys.json"
        source.write_text('{"keys": ["abc"]}')
        sealed = tmp_path / "keys.enc"
        assert main(["seal", str(source), str(sealed)], backend=backend) == 0

        assert main(["login", str(sealed), "--token-path", str(tmp_path / "t")],
                    backend=backend, vault_session=vault_session()) == 1
        assert "root token" in capsys.readouterr().err
