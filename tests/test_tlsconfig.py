import socket
import ssl

import pytest

from pqkit.tlsconfig import (
    SSLConfigError,
    build_tls,
    get_tls_config,
    load_certificate_authority,
    load_client_certificates,
    register_tls_config,
    use_ssl_negotiation,
)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("APPDATA", str(home))
    return home


def _write(path, text, mode):
    path.write_text(text)
    path.chmod(mode)
    return str(path)


def test_disable_returns_none():
    assert build_tls({"sslmode": "disable"}) is None


def test_require_is_default_and_unverified():
    setup = build_tls({"host": "localhost"})
    assert setup.context.verify_mode == ssl.CERT_NONE
    assert setup.context.check_hostname is False
    assert setup.verify_ca_only is False


@pytest.mark.parametrize(
    "options, expected",
    [
        ({"sslmode": "require", "host": "localhost"}, "localhost"),
        ({"sslmode": "require", "sslsni": "1", "host": "localhost"}, "localhost"),
        ({"sslmode": "require", "sslsni": "0", "host": "localhost"}, None),
        ({"sslmode": "require", "host": "postgres-invalid"}, "postgres-invalid"),
        ({"sslmode": "require", "sslnegotiation": "direct", "host": "localhost"}, "localhost"),
    ],
)
def test_sni_server_hostname(options, expected):
    assert build_tls(options).server_hostname == expected


def test_verify_ca_checks_chain_only():
    setup = build_tls({"sslmode": "verify-ca", "host": "postgres"})
    assert setup.verify_ca_only is True
    assert setup.context.verify_mode == ssl.CERT_REQUIRED
    assert setup.context.check_hostname is False


def test_verify_full_keeps_host_even_without_sni():
    setup = build_tls({"sslmode": "verify-full", "host": "postgres", "sslsni": "0"})
    assert setup.server_hostname == "postgres"
    assert setup.context.check_hostname is True
    assert setup.context.verify_mode == ssl.CERT_REQUIRED


def test_require_with_missing_rootcert_stays_unverified(tmp_path):
    missing = str(tmp_path / "non_existent.crt")
    setup = build_tls({"sslmode": "require", "sslrootcert": missing, "host": "127.0.0.1"})
    assert setup.verify_ca_only is False
    assert setup.context.verify_mode == ssl.CERT_NONE


def test_require_with_bogus_rootcert_fails(tmp_path):
    bogus = _write(tmp_path / "bogus_root.crt", "not a certificate\n", 0o644)
    with pytest.raises(SSLConfigError, match="couldn't parse pem in sslrootcert"):
        build_tls({"sslmode": "require", "sslrootcert": bogus, "host": "postgres"})


def test_verify_ca_with_missing_rootcert_file_fails(tmp_path):
    with pytest.raises(FileNotFoundError):
        build_tls({"sslmode": "verify-ca", "sslrootcert": str(tmp_path / "nope.crt")})


def test_unsupported_mode():
    with pytest.raises(SSLConfigError, match='unsupported sslmode "prefer"'):
        build_tls({"sslmode": "prefer"})


def test_unknown_custom_mode():
    with pytest.raises(SSLConfigError, match='unknown custom sslmode "pqgo-missing"'):
        build_tls({"sslmode": "pqgo-missing"})


def test_registered_custom_context():
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    register_tls_config("mytls", context)
    try:
        assert get_tls_config("mytls") is context
        setup = build_tls({"sslmode": "pqgo-mytls", "host": "db.example.com"})
        assert setup.context is context
        assert setup.server_hostname == "db.example.com"
    finally:
        register_tls_config("mytls", None)
    assert get_tls_config("mytls") is None


@pytest.mark.parametrize("home", ["", "/dev/null"])
def test_unreadable_home_loads_nothing(home, monkeypatch):
    monkeypatch.setenv("HOME", home)
    monkeypatch.setenv("APPDATA", home)
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    assert load_client_certificates(context, {}) is False


def test_missing_client_certificate_is_skipped(tmp_path):
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    options = {"sslcert": str(tmp_path / "filedoesnotexist")}
    assert load_client_certificates(context, options) is False


def test_missing_key_file(tmp_path):
    cert = _write(tmp_path / "client.crt", "cert\n", 0o644)
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    options = {"sslcert": cert, "sslkey": str(tmp_path / "filedoesnotexist")}
    with pytest.raises(FileNotFoundError):
        load_client_certificates(context, options)


def test_key_with_world_access_is_rejected(tmp_path):
    cert = _write(tmp_path / "client.crt", "cert\n", 0o644)
    key = _write(tmp_path / "client.key", "key\n", 0o644)
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    with pytest.raises(SSLConfigError, match="has world access"):
        load_client_certificates(context, {"sslcert": cert, "sslkey": key})


def test_default_key_path_is_used(tmp_path, isolated_home):
    cert = _write(tmp_path / "client.crt", "cert\n", 0o644)
    keydir = isolated_home / ".postgresql"
    keydir.mkdir()
    _write(keydir / "postgresql.key", "key\n", 0o644)
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    with pytest.raises(SSLConfigError, match="postgresql.key"):
        load_client_certificates(context, {"sslcert": cert})


def test_unparsable_client_pair(tmp_path):
    cert = _write(tmp_path / "client.crt", "cert\n", 0o644)
    key = _write(tmp_path / "client.key", "key\n", 0o600)
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    with pytest.raises(SSLConfigError, match="cannot load client certificate"):
        load_client_certificates(context, {"sslcert": cert, "sslkey": key})


def test_unparsable_inline_pair():
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    options = {"sslinline": "true", "sslcert": "cert", "sslkey": "key"}
    with pytest.raises(SSLConfigError):
        load_client_certificates(context, options)


def test_blank_rootcert_loads_nothing():
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    assert load_certificate_authority(context, {"sslrootcert": ""}) is False


def test_inline_bogus_rootcert():
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    options = {"sslinline": "true", "sslrootcert": "garbage"}
    with pytest.raises(SSLConfigError, match="couldn't parse pem"):
        load_certificate_authority(context, options)


@pytest.mark.parametrize(
    "options, expected",
    [
        ({}, True),
        ({"sslnegotiation": "postgres"}, True),
        ({"sslnegotiation": "direct"}, False),
    ],
)
def test_use_ssl_negotiation(options, expected):
    assert use_ssl_negotiation(options) is expected


def test_verify_full_without_host_cannot_wrap():
    setup = build_tls({"sslmode": "verify-full"})
    sock = socket.socket()
    try:
        with pytest.raises(ValueError):
            setup.wrap(sock)
    finally:
        sock.close()


def test_wrap_fails_when_peer_is_gone():
    setup = build_tls({"sslmode": "require", "host": "localhost"})
    left, right = socket.socketpair()
    right.close()
    try:
        with pytest.raises(OSError):
            setup.wrap(left)
    finally:
        left.close()