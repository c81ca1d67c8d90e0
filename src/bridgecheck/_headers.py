# Copyright 2022 Akamai Technologies, Inc
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

from __future__ import annotations

from typing import AnyStr, Iterable

from ._typing import HeaderType

_FIELD_NAME_CASE = {
    b"dnt": b"DNT",
    b"etag": b"ETag",
    b"http2": b"HTTP2",
    b"id": b"ID",
    b"md5": b"MD5",
    b"te": b"TE",
    b"www": b"WWW",
    b"websocket": b"WebSocket",
    b"xss": b"XSS",
}


def _to_bytes(value: str | bytes) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("latin-1")


def pair(name: str | bytes, value: str | bytes) -> HeaderType:
    """
    Build one header field as a name/value pair.

    The case of the name is preserved, so tests can send fields
    exactly as a client would.
    """
    return _to_bytes(name), _to_bytes(value)


def _capitalize_word(part: bytes) -> bytes:
    if part in _FIELD_NAME_CASE:
        return _FIELD_NAME_CASE[part]
    return part.capitalize()


def capitalize_field_name(name: bytes) -> bytes:
    """
    Convert field (header) name to its canonical form.

    Header names are case-insensitive, but it is common to send
    capitalized in HTTP/1.1.
    """
    parts = name.lower().split(b"-")
    return b"-".join(_capitalize_word(part) for part in parts)


def get_header(
    headers: Iterable[tuple[AnyStr, AnyStr]], name: AnyStr
) -> AnyStr | None:
    """
    Return a combined value of all fields with the given name.

    Multiple Cookie fields are joined with a semicolon (RFC 9113, 8.2.3),
    other fields with a comma (RFC 9110, 5.3).

    :return: the combined value or ``None`` if there is no such field
    """
    wanted = name.lower()
    values = [v for n, v in headers if n.lower() == wanted]
    if not values:
        return None
    if isinstance(wanted, bytes):
        return (b"; " if wanted == b"cookie" else b", ").join(values)
    return ("; " if wanted == "cookie" else ", ").join(values)


def connection_tokens(headers: Iterable[HeaderType]) -> set[bytes]:
    """
    Return lower-cased tokens from all Connection fields.
    """
    tokens = set()
    for name, value in headers:
        if name.lower() == b"connection":
            tokens.update(t.strip().lower() for t in value.split(b","))
    tokens.discard(b"")
    return tokens
