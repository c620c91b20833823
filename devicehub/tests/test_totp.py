"""Tests for the TOTP primitives (codec, generation, derivation, verification)."""

from __future__ import annotations

import re
from unittest.mock import patch
from urllib.parse import parse_qs, urlsplit

import pytest

from services.totp import (
    BASE32_ALPHABET,
    base32_decode,
    base32_encode,
    build_otpauth_uri,
    compute_code,
    generate_backup_codes,
    generate_secret,
    is_code_format,
    verify_code,
)

# RFC 4226 / RFC 6238 reference key "12345678901234567890"
RFC_SECRET = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"


# ---------------------------------------------------------------------------
# Base32 codec
# ---------------------------------------------------------------------------


class TestBase32:
    def test_encode_reference_key(self):
        assert base32_encode(b"12345678901234567890") == RFC_SECRET

    def test_encode_has_no_padding(self):
        assert base32_encode(b"f") == "MY"
        assert base32_encode(b"foobar") == "MZXW6YTBOI"

    def test_decode_reference_key(self):
        assert base32_decode(RFC_SECRET) == b"12345678901234567890"

    def test_decode_is_lenient(self):
        messy = "gezd gnbv-gy3t qojq gezd gnbv gy3t qojq===="
        assert base32_decode(messy) == b"12345678901234567890"

    def test_decode_drops_incomplete_trailing_bits(self):
        # "MZXW6YTBOI" is "foobar"; one extra character cannot complete a byte
        assert base32_decode("MZXW6YTBOIA") == b"foobar"

    @pytest.mark.parametrize("junk", ["", "!!!", "0189", "A", "=" * 8])
    def test_decode_never_raises(self, junk):
        assert isinstance(base32_decode(junk), bytes)


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


class TestGeneration:
    def test_secret_alphabet_and_length(self):
        secret = generate_secret()
        assert len(secret) == 32
        assert set(secret) <= set(BASE32_ALPHABET)
        assert len(base32_decode(secret)) == 20

    def test_secrets_differ(self):
        assert generate_secret() != generate_secret()

    def test_backup_codes_shape(self):
        codes = generate_backup_codes()
        assert len(codes) == 10
        for code in codes:
            assert len(code) == 8
            assert re.fullmatch(r"[0-9A-F]{8}", code)

    def test_backup_codes_unique_within_batch(self):
        # force a collision on the first draw
        draws = iter([b"\xaa\xbb\xcc\xdd", b"\xaa\xbb\xcc\xdd", b"\x01\x02\x03\x04"])
        with patch("services.totp.secrets.token_bytes", side_effect=lambda n: next(draws)):
            codes = generate_backup_codes(count=2)
        assert codes == ["AABBCCDD", "01020304"]


# ---------------------------------------------------------------------------
# Code derivation
# ---------------------------------------------------------------------------


class TestComputeCode:
    @pytest.mark.parametrize(
        "for_time,expected",
        [
            (59, "287082"),
            (1111111109, "081804"),
            (1111111111, "050471"),
            (1234567890, "005924"),
            (2000000000, "279037"),
            (20000000000, "353130"),
        ],
    )
    def test_rfc6238_vectors(self, for_time, expected):
        assert compute_code(RFC_SECRET, for_time=for_time) == expected

    @pytest.mark.parametrize("counter,expected", [(0, "755224"), (1, "287082"), (2, "359152"), (3, "969429")])
    def test_step_offset_moves_counter(self, counter, expected):
        assert compute_code(RFC_SECRET, step_offset=counter, for_time=0) == expected

    def test_stable_within_a_step(self):
        with patch("services.totp._time.time", return_value=1_700_000_010.0):
            first = compute_code(RFC_SECRET)
        with patch("services.totp._time.time", return_value=1_700_000_019.9):
            second = compute_code(RFC_SECRET)
        assert first == second

    def test_secret_formatting_does_not_matter(self):
        spaced = " ".join(RFC_SECRET[i:i + 4] for i in range(0, len(RFC_SECRET), 4)).lower()
        assert compute_code(spaced, for_time=59) == "287082"

    def test_code_is_six_digits(self):
        code = compute_code(generate_secret())
        assert len(code) == 6
        assert code.isdigit()

    def test_negative_counter_rejected(self):
        with pytest.raises(ValueError):
            compute_code(RFC_SECRET, step_offset=-1, for_time=10)


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class TestVerifyCode:
    def test_current_code_verifies(self):
        secret = generate_secret()
        assert verify_code(secret, compute_code(secret)) is True

    def test_window_accepts_adjacent_steps(self):
        t = 59  # counter 1
        assert verify_code(RFC_SECRET, compute_code(RFC_SECRET, step_offset=1, for_time=t), window=1, for_time=t)
        assert verify_code(RFC_SECRET, compute_code(RFC_SECRET, step_offset=-1, for_time=t), window=1, for_time=t)

    def test_window_rejects_two_steps_away(self):
        t = 59
        code = compute_code(RFC_SECRET, step_offset=2, for_time=t)
        assert verify_code(RFC_SECRET, code, window=1, for_time=t) is False

    def test_zero_window_is_exact(self):
        t = 59
        assert verify_code(RFC_SECRET, "287082", window=0, for_time=t) is True
        assert verify_code(RFC_SECRET, "359152", window=0, for_time=t) is False

    def test_first_step_after_epoch(self):
        # counter 0 has no previous step; must not blow up
        assert verify_code(RFC_SECRET, "755224", window=1, for_time=5) is True

    @pytest.mark.parametrize(
        "bad",
        ["", "12345", "1234567", "12a456", " 287082", "287082\n", "２８７０８２", None, 287082],
    )
    def test_malformed_codes_rejected(self, bad):
        assert verify_code(RFC_SECRET, bad, for_time=59) is False

    def test_is_code_format(self):
        assert is_code_format("000000")
        assert not is_code_format("00000a")
        assert not is_code_format(None)


# ---------------------------------------------------------------------------
# otpauth URI
# ---------------------------------------------------------------------------


class TestOtpauthUri:
    def test_exact_format(self):
        uri = build_otpauth_uri("JBSWY3DPEHPK3PXP", "alice@example.com", "DeviceHub")
        assert uri == (
            "otpauth://totp/DeviceHub:alice%40example.com"
            "?secret=JBSWY3DPEHPK3PXP&issuer=DeviceHub&algorithm=SHA1&digits=6&period=30"
        )

    def test_issuer_and_account_are_component_encoded(self):
        uri = build_otpauth_uri("JBSWY3DPEHPK3PXP", "a b/c(1)", "Device Hub & Co")
        assert uri.startswith("otpauth://totp/Device%20Hub%20%26%20Co:a%20b%2Fc(1)?")
        query = parse_qs(urlsplit(uri).query)
        assert query["issuer"] == ["Device Hub & Co"]
        assert query["algorithm"] == ["SHA1"]
        assert query["digits"] == ["6"]
        assert query["period"] == ["30"]
