"""Unit tests for the legacy record format."""

import base64
import binascii

import pytest

from newsunfurl.services.legacy_format import (
    AMP_URL_TAG,
    CANONICAL_URL_TAG,
    RECORD_HEADER,
    RecordTruncated,
    build_legacy_token,
    decode_base64,
    encode_record,
    extract_first_url,
    is_absolute_url,
    iter_string_fields,
)


class TestDecodeBase64:
    """Tests for decode_base64."""

    def test_urlsafe_without_padding(self) -> None:
        """Should accept the URL-safe alphabet without padding."""
        raw = b"\xfb\xff\xfe"
        encoded = base64.urlsafe_b64encode(raw).decode().rstrip("=")
        assert decode_base64(encoded) == raw

    def test_standard_with_padding(self) -> None:
        """Should accept the standard alphabet with padding."""
        assert decode_base64("aGk=") == b"hi"

    def test_invalid_characters(self) -> None:
        """Should raise on characters outside both alphabets."""
        with pytest.raises(binascii.Error):
            decode_base64("!!!not base64!!!")


class TestRecordParsing:
    """Tests for record field scanning."""

    def test_canonical_url_is_first(self) -> None:
        """The canonical field wins over the AMP field."""
        record = encode_record(["https://example.com/a", "https://amp.example.com/a"])
        assert extract_first_url(record) == "https://example.com/a"

    def test_record_layout(self) -> None:
        """Records start with the header and use the expected tags."""
        record = encode_record(["https://a.io/", "https://b.io/"])
        assert record.startswith(RECORD_HEADER + CANONICAL_URL_TAG + bytes([13]))
        assert AMP_URL_TAG + bytes([13]) + b"https://b.io/" in record

    def test_long_url_uses_multi_byte_length(self) -> None:
        """Lengths of 128 bytes and more are varints."""
        url = "https://example.com/" + "x" * 200
        record = encode_record([url])
        assert record[3:5] == bytes([0xDC, 0x01])
        assert extract_first_url(record) == url

    def test_non_url_fields_are_skipped(self) -> None:
        """String fields that are not absolute URLs are ignored."""
        record = RECORD_HEADER + b"\x1a\x05hello" + CANONICAL_URL_TAG + b"\x0ehttps://x.org/"
        assert extract_first_url(record) == "https://x.org/"

    def test_no_url(self) -> None:
        """Should return None when no field holds a URL."""
        assert extract_first_url(RECORD_HEADER + b"\x1a\x03abc") is None

    def test_truncated_length(self) -> None:
        """Should raise when a length runs past the end of the record."""
        record = RECORD_HEADER + CANONICAL_URL_TAG + bytes([50]) + b"https://short"
        with pytest.raises(RecordTruncated):
            extract_first_url(record)

    def test_truncated_varint(self) -> None:
        """Should raise when a varint is cut short."""
        with pytest.raises(RecordTruncated):
            list(iter_string_fields(RECORD_HEADER + b"\xd2"))

    def test_field_zero_stops_scanning(self) -> None:
        """Trailing garbage starting with field 0 is not part of the record."""
        record = encode_record(["https://example.com/"]) + b"\x00\xff\xff"
        assert [number for number, _ in iter_string_fields(record)] == [4]

    def test_fixed_width_fields_are_skipped(self) -> None:
        """Fixed32 and fixed64 fields are stepped over."""
        record = b"\x0d\x01\x02\x03\x04" + b"\x11" + bytes(8) + CANONICAL_URL_TAG + b"\x0ehttps://x.org/"
        assert extract_first_url(record) == "https://x.org/"


class TestIsAbsoluteUrl:
    """Tests for is_absolute_url."""

    @pytest.mark.parametrize(
        "value",
        ["https://example.com", "http://a.b/c?d=e", "ftp://host/file", "javascript:alert(1)", "mailto:a@example.com"],
    )
    def test_absolute(self, value: str) -> None:
        """Scheme-prefixed strings are absolute URLs."""
        assert is_absolute_url(value) is True

    @pytest.mark.parametrize("value", ["example.com", "/path", "https://exa mple.com", "https:", ""])
    def test_not_absolute(self, value: str) -> None:
        """Relative paths and strings with spaces are not."""
        assert is_absolute_url(value) is False


class TestBuildLegacyToken:
    """Tests for build_legacy_token."""

    def test_token_shape(self) -> None:
        """Tokens carry the marker and unpadded URL-safe base64."""
        token = build_legacy_token(["https://example.com/article"])
        assert token.startswith("CBM")
        assert "=" not in token
        assert extract_first_url(decode_base64(token[3:])) == "https://example.com/article"

    def test_unknown_marker(self) -> None:
        """Only known markers are accepted."""
        with pytest.raises(ValueError):
            build_legacy_token(["https://example.com/"], marker="XYZ")

    def test_empty_urls(self) -> None:
        """A record needs a URL."""
        with pytest.raises(ValueError):
            encode_record([])
