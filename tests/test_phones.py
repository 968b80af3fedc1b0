"""Tests for phone normalisation."""

import pytest

from clinicbridge.errors import MalformedPayload
from clinicbridge.phones import digits_only, normalize_phone


class TestNormalizePhone:
    def test_formatted_international(self):
        assert normalize_phone("+55 (11) 99999-8888") == "5511999998888"

    def test_national_mobile_gets_country_code(self):
        assert normalize_phone("11 99999 8888") == "5511999998888"

    def test_national_landline_gets_country_code(self):
        assert normalize_phone("(11) 3333-4444") == "551133334444"

    def test_already_prefixed_is_unchanged(self):
        assert normalize_phone("5511999998888") == "5511999998888"

    def test_idempotent(self):
        once = normalize_phone("(21) 98888-7777")
        assert normalize_phone(once) == once

    def test_jid_suffix_stripped(self):
        assert normalize_phone("5511999998888@s.whatsapp.net") == "5511999998888"

    def test_area_code_equal_to_country_code(self):
        """Area code 55 (RS) is still a national number without '+'."""
        assert normalize_phone("55 99999 8888") == "5555999998888"

    def test_custom_country_code(self):
        assert normalize_phone("2015550123", "1") == "12015550123"

    def test_none_rejected(self):
        with pytest.raises(MalformedPayload, match="missing"):
            normalize_phone(None)

    @pytest.mark.parametrize("raw", ["", "123", "abc", "1234567890123456789"])
    def test_invalid_length_rejected(self, raw):
        with pytest.raises(MalformedPayload):
            normalize_phone(raw)


def test_digits_only():
    assert digits_only("+55 (11) 9-8") == "551198"
