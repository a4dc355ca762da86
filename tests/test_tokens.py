"""
Unit tests — token generation, keyed hashing and QR rendering (qr_service.py).
"""
from __future__ import annotations

from gatebot.services.qr_service import (
    TOKEN_LENGTH,
    extract_token,
    generate_qr_buffered,
    generate_qr_png,
    hash_token,
    make_qr_token,
    normalize_token,
    validate_token_format,
)


class TestMakeToken:

    def test_shape(self) -> None:
        token = make_qr_token(42)
        assert len(token) == TOKEN_LENGTH
        assert validate_token_format(token)

    def test_unique_for_same_registration(self) -> None:
        tokens = {make_qr_token(7) for _ in range(2000)}
        assert len(tokens) == 2000

    def test_unique_across_registrations(self) -> None:
        tokens = {make_qr_token(rid) for rid in range(500)}
        assert len(tokens) == 500


class TestHashToken:

    def test_deterministic(self) -> None:
        token = make_qr_token(1)
        assert hash_token(token) == hash_token(token)

    def test_not_the_token(self) -> None:
        token = make_qr_token(1)
        assert hash_token(token) != token
        assert len(hash_token(token)) == 64

    def test_depends_on_pepper(self) -> None:
        token = make_qr_token(1)
        assert hash_token(token, pepper="a") != hash_token(token, pepper="b")


class TestFormat:

    def test_rejects_short(self) -> None:
        assert not validate_token_format("ab" * 31)

    def test_rejects_non_hex(self) -> None:
        assert not validate_token_format("g" * 64)

    def test_rejects_uppercase_before_normalisation(self) -> None:
        assert not validate_token_format("A" * 64)

    def test_normalize_strips_and_lowercases(self) -> None:
        assert normalize_token("  " + "AB" * 32 + "\n") == "ab" * 32

    def test_rejects_non_string(self) -> None:
        assert not validate_token_format(None)  # type: ignore[arg-type]


class TestExtractToken:

    def test_finds_token_in_text(self) -> None:
        token = make_qr_token(3)
        assert extract_token(f"ticket: {token.upper()} (scan)") == token

    def test_nothing_found(self) -> None:
        assert extract_token("hello") is None
        assert extract_token("") is None


class TestRendering:

    def test_png_signature(self) -> None:
        png = generate_qr_png(make_qr_token(1))
        assert png[:8] == b"\x89PNG\r\n\x1a\n"

    def test_buffer_is_rewound(self) -> None:
        buf = generate_qr_buffered(make_qr_token(1))
        assert buf.tell() == 0
        assert buf.read(4) == b"\x89PNG"
