"""Client side of a SCRAM (RFC 5802) SASL authentication exchange."""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import os
import re

_NONCE_LENGTH = 16
_INTEGER = re.compile(rb"[+-]?[0-9]+")


class ScramError(Exception):
    """Raised when the SCRAM exchange fails."""


def _escape_user(user: str) -> str:
    return user.replace("=", "=3D").replace(",", "=2C")


class ScramClient:
    """A SCRAM client for one authentication exchange.

    Call :meth:`step` with each message from the server (nothing for the
    first step); it returns the bytes to send back. After the third step the
    exchange is complete and :attr:`done` is true.
    """

    def __init__(self, user: str, password: str, hash_name: str = "sha256") -> None:
        hashlib.new(hash_name)
        self._hash_name = hash_name
        self._user = user
        self._password = password.encode()
        self._step = 0
        self._error: ScramError | None = None
        self._client_nonce = b""
        self._server_nonce = b""
        self._salted_password = b""
        self._auth_message = b""

    @property
    def done(self) -> bool:
        """True once the server's final message has been verified."""
        return self._step > 2 and self._error is None

    def set_nonce(self, nonce: bytes | str) -> None:
        """Use *nonce* as the client nonce instead of a random one."""
        self._client_nonce = nonce.encode() if isinstance(nonce, str) else bytes(nonce)

    def step(self, data: bytes = b"") -> bytes:
        """Process a server message and return the next message to send."""
        if self._step > 2 or self._error is not None:
            raise ScramError("SCRAM exchange is already over")
        self._step += 1
        handler = (self._client_first, self._client_final, self._verify_server)[self._step - 1]
        try:
            return handler(bytes(data))
        except ScramError as exc:
            self._error = exc
            raise

    def _hmac(self, key: bytes, message: bytes) -> bytes:
        return hmac.new(key, message, self._hash_name).digest()

    def _client_first(self, data: bytes) -> bytes:
        if not self._client_nonce:
            self._client_nonce = base64.b64encode(os.urandom(_NONCE_LENGTH))
        self._auth_message = (
            b"n=" + _escape_user(self._user).encode() + b",r=" + self._client_nonce
        )
        return b"n,," + self._auth_message

    def _client_final(self, data: bytes) -> bytes:
        self._auth_message += b"," + data
        fields = data.split(b",")
        if len(fields) != 3:
            raise ScramError(
                f"expected 3 fields in first SCRAM server message, got {len(fields)}: {data!r}"
            )
        nonce_field, salt_field, iter_field = fields
        if not nonce_field.startswith(b"r="):
            raise ScramError(f"server sent an invalid SCRAM nonce: {nonce_field!r}")
        if not salt_field.startswith(b"s=") or len(salt_field) < 6:
            raise ScramError(f"server sent an invalid SCRAM salt: {salt_field!r}")
        if not iter_field.startswith(b"i=") or len(iter_field) < 6:
            raise ScramError(f"server sent an invalid SCRAM iteration count: {iter_field!r}")

        self._server_nonce = nonce_field[2:]
        if not self._server_nonce.startswith(self._client_nonce):
            raise ScramError(
                "server SCRAM nonce is not prefixed by client nonce: "
                f"got {self._server_nonce!r}, want {self._client_nonce!r}+\"...\""
            )
        try:
            salt = base64.b64decode(salt_field[2:], validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ScramError(f"cannot decode SCRAM salt sent by server: {salt_field!r}") from exc
        if not _INTEGER.fullmatch(iter_field[2:]):
            raise ScramError(f"server sent an invalid SCRAM iteration count: {iter_field!r}")
        iterations = int(iter_field[2:])

        self._salted_password = hashlib.pbkdf2_hmac(
            self._hash_name, self._password, salt, max(iterations, 1)
        )
        self._auth_message += b",c=biws,r=" + self._server_nonce
        return b"c=biws,r=" + self._server_nonce + b",p=" + self._client_proof()

    def _verify_server(self, data: bytes) -> bytes:
        fields = data.split(b",")
        first = fields[0]
        if len(fields) == 1 and first.startswith(b"e="):
            raise ScramError(f"SCRAM authentication error: {first[2:].decode(errors='replace')}")
        if len(fields) != 1 or not first.startswith(b"v="):
            raise ScramError(f"unsupported SCRAM final message from server: {data!r}")
        if not hmac.compare_digest(self._server_signature(), first[2:]):
            raise ScramError(f"cannot authenticate SCRAM server signature: {first[2:]!r}")
        return b""

    def _client_proof(self) -> bytes:
        client_key = self._hmac(self._salted_password, b"Client Key")
        stored_key = hashlib.new(self._hash_name, client_key).digest()
        signature = self._hmac(stored_key, self._auth_message)
        proof = bytes(a ^ b for a, b in zip(signature, client_key))
        return base64.b64encode(proof)

    def _server_signature(self) -> bytes:
        server_key = self._hmac(self._salted_password, b"Server Key")
        return base64.b64encode(self._hmac(server_key, self._auth_message))