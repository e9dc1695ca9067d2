"""TLS setup for a connection, driven by the libpq-style ``ssl*`` options."""

from __future__ import annotations

import errno
import os
import ssl
import stat
import tempfile
import threading
from collections.abc import Mapping
from dataclasses import dataclass

_CUSTOM_PREFIX = "pqgo-"

_registry: dict[str, ssl.SSLContext] = {}
_registry_lock = threading.Lock()


class SSLConfigError(Exception):
    """Raised when the TLS options cannot be turned into a working setup."""


@dataclass
class TLSSetup:
    """A configured TLS context and the way to apply it to a socket.

    ``verify_ca_only`` is true when the server certificate chain is checked
    against the trusted roots but its host name is not.
    """

    context: ssl.SSLContext
    server_hostname: str | None = None
    verify_ca_only: bool = False

    def wrap(self, sock):
        """Upgrade a connected socket to TLS and perform the handshake."""
        return self.context.wrap_socket(sock, server_hostname=self.server_hostname)


def register_tls_config(key: str, context: ssl.SSLContext | None) -> None:
    """Register *context* under *key* for use with ``sslmode=pqgo-<key>``.

    Passing None removes the registration.
    """
    with _registry_lock:
        if context is None:
            _registry.pop(key, None)
        else:
            _registry[key] = context


def get_tls_config(key: str) -> ssl.SSLContext | None:
    """Return the context registered under *key*, or None."""
    with _registry_lock:
        return _registry.get(key)


def _unverified_context() -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def _path_exists(path: str) -> bool:
    try:
        os.stat(path)
    except (OSError, ValueError):
        return False
    return True


def build_tls(options: Mapping[str, str]) -> TLSSetup | None:
    """Build the TLS setup for *options*, or return None for ``sslmode=disable``.

    ``require`` (the default) encrypts without checking the certificate
    unless ``sslrootcert`` names an existing file, in which case it behaves
    like ``verify-ca``. ``verify-full`` also checks the host name.
    """
    opts = dict(options)
    mode = opts.get("sslmode", "")
    host = opts.get("host", "")
    verify_ca_only = False
    server_hostname: str | None = None
    custom = False

    if mode in ("", "require"):
        context = _unverified_context()
        if "sslrootcert" in opts:
            if _path_exists(opts["sslrootcert"]):
                verify_ca_only = True
            else:
                del opts["sslrootcert"]
    elif mode == "verify-ca":
        context = _unverified_context()
        verify_ca_only = True
    elif mode == "verify-full":
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        server_hostname = host or None
    elif mode == "disable":
        return None
    elif mode.startswith(_CUSTOM_PREFIX):
        registered = get_tls_config(mode[len(_CUSTOM_PREFIX):])
        if registered is None:
            raise SSLConfigError(f'pq: unknown custom sslmode "{mode}"')
        context = registered
        custom = True
    else:
        raise SSLConfigError(
            f'pq: unsupported sslmode "{mode}"; only "require" (default), '
            '"verify-full", "verify-ca", and "disable" supported'
        )

    if verify_ca_only:
        context.verify_mode = ssl.CERT_REQUIRED

    # SNI is on unless sslsni is set to something not starting with "1".
    # The ssl module itself leaves SNI out for literal IP addresses.
    sni = opts.get("sslsni", "")
    if sni == "" or sni.startswith("1"):
        server_hostname = host or None

    load_client_certificates(context, opts)
    has_roots = load_certificate_authority(context, opts)
    if not custom and not has_roots and context.verify_mode != ssl.CERT_NONE:
        context.load_default_certs()

    return TLSSetup(context, server_hostname, verify_ca_only)


def _home_directory() -> str:
    if os.name == "nt":
        appdata = os.environ.get("APPDATA", "")
        return os.path.join(appdata, "postgresql") if appdata else ""
    return os.environ.get("HOME", "")


def _default_path(home: str, filename: str) -> str:
    if os.name == "nt":
        return os.path.join(home, filename)
    return os.path.join(home, ".postgresql", filename)


def _check_key_permissions(path: str) -> None:
    if os.name == "nt":
        return
    info = os.stat(path)
    if not stat.S_ISREG(info.st_mode):
        raise SSLConfigError(f"pq: private key file {path!r} is not a regular file")
    if info.st_mode & 0o077:
        raise SSLConfigError(
            f"pq: private key file {path!r} has world access; "
            "permissions should be u=rw (0600) or less"
        )


def _load_chain(context: ssl.SSLContext, certfile: str, keyfile: str) -> None:
    try:
        context.load_cert_chain(certfile, keyfile)
    except ssl.SSLError as exc:
        raise SSLConfigError(f"pq: cannot load client certificate: {exc}") from exc


def _load_inline_chain(context: ssl.SSLContext, cert_pem: str, key_pem: str) -> None:
    with tempfile.TemporaryDirectory() as workdir:
        certfile = os.path.join(workdir, "client.crt")
        keyfile = os.path.join(workdir, "client.key")
        for path, text in ((certfile, cert_pem), (keyfile, key_pem)):
            descriptor = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(descriptor, "w") as handle:
                handle.write(text)
        _load_chain(context, certfile, keyfile)


def load_client_certificates(context: ssl.SSLContext, options: Mapping[str, str]) -> bool:
    """Load the client certificate and key named by *options* into *context*.

    Without ``sslcert`` the file ``postgresql.crt`` under the user's
    ``.postgresql`` directory is tried; a missing certificate file is not an
    error. Returns True if a certificate was loaded.
    """
    if options.get("sslinline") == "true":
        _load_inline_chain(context, options.get("sslcert", ""), options.get("sslkey", ""))
        return True

    home = _home_directory()
    certfile = options.get("sslcert", "")
    if not certfile and home:
        certfile = _default_path(home, "postgresql.crt")
    if not certfile:
        return False
    try:
        os.stat(certfile)
    except (FileNotFoundError, NotADirectoryError):
        return False

    keyfile = options.get("sslkey", "")
    if not keyfile and home:
        keyfile = _default_path(home, "postgresql.key")
    if not keyfile:
        raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), keyfile)
    _check_key_permissions(keyfile)

    _load_chain(context, certfile, keyfile)
    return True


def load_certificate_authority(context: ssl.SSLContext, options: Mapping[str, str]) -> bool:
    """Trust the root certificates named by ``sslrootcert``.

    Returns True if roots were loaded, False when the option is blank.
    """
    rootcert = options.get("sslrootcert", "")
    if not rootcert:
        return False
    if options.get("sslinline") == "true":
        pem = rootcert
    else:
        with open(rootcert, "rb") as handle:
            pem = handle.read().decode("latin-1")
    try:
        context.load_verify_locations(cadata=pem)
    except (ssl.SSLError, ValueError) as exc:
        raise SSLConfigError("pq: couldn't parse pem in sslrootcert") from exc
    return True


def use_ssl_negotiation(options: Mapping[str, str]) -> bool:
    """Return False when TLS starts directly instead of after an SSLRequest."""
    return options.get("sslnegotiation") != "direct"