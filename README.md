# pqkit

Building blocks for talking to a PostgreSQL server from Python, using only
the standard library:

- `pqkit.quote` – quoting of identifiers and literals for SQL text.
- `pqkit.oid` – the built-in type OIDs and their names.
- `pqkit.fields` – column metadata (`FieldDesc`).
- `pqkit.scram` – a SCRAM client (`ScramClient`) for SASL authentication.
- `pqkit.tlsconfig` – a TLS setup built from `sslmode`, `sslrootcert`,
  `sslcert`, `sslkey`, `sslinline`, `sslsni` and `sslnegotiation` options.
- `pqkit.notify` – notification and error messages, listener events and
  errors, and the LISTEN/UNLISTEN statements.
- `pqkit.listener` – a low-level `ListenerConn` and a reconnecting
  `Listener` for LISTEN/NOTIFY.

## What pqkit does not do

pqkit is not a complete driver. It does not open connections to a server,
send the startup message, run the authentication exchange over the wire,
prepare or execute ordinary queries, or decode result rows. `ListenerConn`
expects a socket-like object that is already connected and authenticated,
and `Listener` obtains such objects from a function you supply.

## Installation

```
pip install pqkit
```

## Quoting

```python
from pqkit.quote import quote_identifier, quote_literal

quote_identifier("my_table")       # '"my_table"'
quote_identifier('foo"bar')        # '"foo""bar"'
quote_identifier("foo\x00bar")     # '"foo"'
quote_literal("it's")              # "'it''s'"
quote_literal("foo\\bar")          # " E'foo\\\\bar'"
```

Identifiers are cut at the first NUL character and their double quotes are
doubled. In literals single quotes are doubled; a literal containing a
backslash has its backslashes doubled and is written in escape-string form,
preceded by a space (` E'...'`).

`write_quoted_identifier(name, stream)` writes the quoted identifier to a
text stream such as an `io.StringIO`.

## Type OIDs

```python
from pqkit.oid import Oid, type_name

type_name(25)                # 'TEXT'
type_name(Oid.NUMERIC)       # 'NUMERIC'
type_name(Oid.INT4_ARRAY)    # '_INT4'
type_name(99999)             # ''
```

`Oid` is an `IntEnum` of the built-in types; array types carry an `_ARRAY`
suffix in Python and are named with a leading underscore by `type_name`.

## Column metadata

`FieldDesc(oid, size=0, modifier=0)` describes one result column:

- `scan_type()` – the Python type a value is read as (`int`, `float`, `str`,
  `bool`, `bytes`, `datetime.datetime`), or `object` for other types;
- `type_name()` – the database type name, such as `"VARCHAR"`;
- `length()` – the length of `text`/`bytea` (`2**63 - 1`),
  `varchar`/`bpchar` (modifier minus 4) and `bit`/`varbit` (the modifier),
  or `None` for other types;
- `precision_scale()` – `(precision, scale)` for `numeric` columns, or
  `None`.

```python
from pqkit.fields import FieldDesc
from pqkit.oid import Oid

FieldDesc(Oid.VARCHAR, modifier=9).length()            # 5
FieldDesc(Oid.NUMERIC, modifier=589830).precision_scale()  # (9, 2)
```

## SCRAM authentication

```python
from pqkit.scram import ScramClient, ScramError

password = "password"
client = ScramClient("alice", password, "sha256")

client_first = client.step()                  # send to the server
client_final = client.step(server_first)      # send to the server
client.step(server_final)                     # verifies the server signature
assert client.done
```

`hash_name` is any name `hashlib` accepts and defaults to `"sha256"`. A
malformed server message, an authentication error from the server, a bad
server signature, or calling `step` after the exchange is over raises
`ScramError`. `set_nonce` fixes the client nonce, which is otherwise 16
random bytes, base64-encoded.

## TLS

`build_tls(options)` turns a mapping of connection options into a
`TLSSetup`, or returns `None` for `sslmode=disable`. Its `wrap(sock)` wraps a
connected socket and performs the handshake.

- `require` (the default) encrypts without checking the certificate, unless
  `sslrootcert` names an existing file, in which case the chain is checked
  as with `verify-ca`;
- `verify-ca` checks the certificate chain but not the host name;
- `verify-full` checks the chain and the host name;
- `pqgo-<key>` uses a context registered with
  `register_tls_config(key, context)` (pass `None` to remove it;
  `get_tls_config(key)` looks one up).

Server name indication is sent unless `sslsni` is set to a value not
starting with `1`. Unknown modes, an unregistered custom mode, an unreadable
root certificate or a client certificate that cannot be loaded raise
`SSLConfigError`.

`load_client_certificates(context, options)` loads `sslcert`/`sslkey`
(inline PEM text with `sslinline=true`), defaulting to `postgresql.crt` and
`postgresql.key` under `~/.postgresql`; a missing certificate file is
skipped, and a key file readable by group or others is refused.
`load_certificate_authority(context, options)` trusts the roots in
`sslrootcert`. `use_ssl_negotiation(options)` is `False` when
`sslnegotiation=direct`.

## LISTEN / NOTIFY

`pqkit.notify` holds the `Notification` dataclass (`be_pid`, `channel`,
`extra`), `ListenerEventType` (`CONNECTED`, `DISCONNECTED`, `RECONNECTED`,
`CONNECTION_ATTEMPT_FAILED`), `ServerError` for error responses from the
server, and the errors `ListenerError`, `ListenerClosedError`,
`ChannelAlreadyOpenError` and `ChannelNotOpenError`. It also parses
notification and error messages (`parse_notification`,
`parse_server_error`) and frames simple queries (`simple_query_message`).

`ListenerConn(connection, notifications)` reads from an authenticated
connection in a background thread and puts each `Notification` on the
`notifications` queue, followed by `None` once the connection is gone
(`err()` then tells why). `listen`, `unlisten`, `unlisten_all`, `ping` and
`exec_simple_query` raise `ServerError` when the server rejects the query
and other errors when it could not be run.

`Listener(dial, min_reconnect_interval, max_reconnect_interval,
event_callback)` keeps such a connection open, calling `dial()` for each new
one. After a lost connection it waits `min_reconnect_interval` seconds,
doubling the wait after each failed attempt up to `max_reconnect_interval`,
and listens again on all its channels.

```python
from pqkit.listener import Listener

listener = Listener(dial, 0.5, 30.0, None)
listener.listen("jobs")
for notification in listener.notifications():
    if notification is None:
        continue  # reconnected; some notifications may have been missed
    print(notification.channel, notification.extra)
```

`listen` waits until a connection exists. It raises
`ChannelAlreadyOpenError` for a channel already listened on, `unlisten`
raises `ChannelNotOpenError` for one that is not, and every method raises
`ListenerClosedError` after `close()`. Both classes can be used as context
managers.

## Running the tests

```
pip install pqkit[test]
pytest
```