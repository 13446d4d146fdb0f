import os
import ssl
import stat

import pytest
from cryptography import x509

from client import client_main
from client.commands import MediaClient
from common import channel
from server import certs


def test_generated_pair_is_usable(tmp_path):
    cert_file, key_file = certs.generate_self_signed_cert(
        str(tmp_path / "cert.pem"), str(tmp_path / "key.pem"),
    )
    assert certs.cert_files_exist(cert_file, key_file)
    assert stat.S_IMODE(os.stat(key_file).st_mode) == 0o600

    with open(cert_file, "rb") as f:
        cert = x509.load_pem_x509_certificate(f.read())
    san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    assert "localhost" in san.get_values_for_type(x509.DNSName)

    # Loads into a server context without error.
    channel.create_server_context(cert_file, key_file)


def test_cert_files_exist_needs_both(tmp_path):
    cert = tmp_path / "cert.pem"
    cert.write_text("x")
    assert not certs.cert_files_exist(str(cert), str(tmp_path / "key.pem"))


def test_verifying_client_accepts_generated_cert(start_server, served_dir, cert_pair, tmp_path):
    cert_file, _ = cert_pair
    server = start_server(served_dir)
    client = MediaClient(
        "localhost", server.port,
        context=channel.create_client_context(ca_file=cert_file),
        download_dir=str(tmp_path / "dl"), timeout=5,
    )
    assert sorted(client.list_files()) == ["a.mp3", "b.mp3"]


def test_client_with_wrong_ca_fails_handshake(start_server, served_dir, tmp_path):
    other_cert, _ = certs.generate_self_signed_cert(
        str(tmp_path / "other-cert.pem"), str(tmp_path / "other-key.pem"),
    )
    server = start_server(served_dir)
    client = MediaClient(
        "localhost", server.port,
        context=channel.create_client_context(ca_file=other_cert),
        download_dir=str(tmp_path / "dl"), max_retries=1, timeout=5,
    )

    with pytest.raises(ssl.SSLCertVerificationError):
        client.list_files()

    result = client.download("a.mp3")
    assert not result.ok
    assert isinstance(result.error, ssl.SSLError)


def test_cli_takes_ca_file_as_second_argument(cert_pair):
    cert_file, _ = cert_pair
    assert client_main._parse_target(["localhost:9000", cert_file]) == ("localhost", 9000, cert_file)
    assert client_main._parse_target(["localhost"]) == ("localhost", 8080, None)
    assert client_main._select_ca_file(cert_file) == cert_file


def test_cli_rejects_missing_ca_file(tmp_path, capsys):
    assert client_main.main(["localhost", str(tmp_path / "missing.pem")]) == 2
    assert "not found" in capsys.readouterr().out


def test_default_ca_file_used_when_present(monkeypatch, tmp_path, cert_pair):
    cert_file, _ = cert_pair
    monkeypatch.setattr(client_main, "DEFAULT_CA_FILE", str(tmp_path / "ca.pem"))
    assert client_main._select_ca_file() is None

    monkeypatch.setattr(client_main, "DEFAULT_CA_FILE", cert_file)
    assert client_main._select_ca_file() == cert_file
