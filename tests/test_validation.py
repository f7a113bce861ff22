"""
Tests for Input Validation Utilities
"""
import pytest

from mobility_hub.core.validation import (
    AmountValidator,
    MomoCodeValidator,
    PhoneNumberValidator,
    TextSanitizer,
)


class TestPhoneNumberValidator:
    """Tests for phone number validation"""

    @pytest.mark.unit
    @pytest.mark.parametrize("phone,expected", [
        # Rwandan MoMo numbers
        ("0788123456", True),
        ("078 812 3456", True),
        ("078-812-3456", True),
        ("+250788123456", True),
        ("250788123456", True),
        ("00250788123456", True),
        # Invalid numbers
        ("", False),
        ("12345", False),
        ("078812345", False),
        ("abcdefghij", False),
    ])
    def test_validate_rwandan_phone(self, phone: str, expected: bool):
        assert PhoneNumberValidator.validate(phone, allow_international=False) == expected

    @pytest.mark.unit
    def test_international_numbers_optional(self):
        assert PhoneNumberValidator.validate("+254712345678") is True
        assert PhoneNumberValidator.validate("+254712345678", allow_international=False) is False

    @pytest.mark.unit
    def test_normalize_phone(self):
        assert PhoneNumberValidator.normalize("0788123456") == "+250788123456"
        assert PhoneNumberValidator.normalize("250788123456") == "+250788123456"
        assert PhoneNumberValidator.normalize("+250 788 123 456") == "+250788123456"

    @pytest.mark.unit
    def test_to_local_and_wa_id(self):
        assert PhoneNumberValidator.to_local("+250788123456") == "0788123456"
        assert PhoneNumberValidator.to_local("788123456") == "0788123456"
        assert PhoneNumberValidator.to_wa_id("0788123456") == "250788123456"

    @pytest.mark.unit
    @pytest.mark.parametrize("value,expected", [
        ("0788123456", True),
        ("+250788123456", True),
        ("250788123456", True),
        ("7881234560", True),
        ("788123456", False),
        ("12345", False),
    ])
    def test_has_phone_shape(self, value, expected):
        assert PhoneNumberValidator.has_phone_shape(value) is expected

    @pytest.mark.unit
    def test_mask_phone(self):
        assert PhoneNumberValidator.mask("250788123456") == "25078812****"
        assert PhoneNumberValidator.mask("123") == "****"
        assert PhoneNumberValidator.mask("") == "****"


class TestMomoCodeValidator:

    @pytest.mark.unit
    @pytest.mark.parametrize("code,valid", [
        ("123456", True),
        ("12 34 56", True),
        ("1234-56", True),
        ("123", False),
        ("1234567890", False),
        ("12A456", False),
        ("", False),
    ])
    def test_validate_code(self, code: str, valid: bool):
        assert MomoCodeValidator.validate(code) == valid


class TestAmountValidator:
    """Tests for amount parsing"""

    @pytest.mark.unit
    @pytest.mark.parametrize("value,amount", [
        ("1500", 1500),
        ("5,000", 5000),
        ("5 000", 5000),
        ("2500 RWF", 2500),
        ("frw 700", 700),
        ("1,000,000", 1_000_000),
    ])
    def test_parse_valid(self, value: str, amount: int):
        assert AmountValidator.parse(value) == (amount, None)

    @pytest.mark.unit
    @pytest.mark.parametrize("value", ["", "   ", "12.50", "-100", "abc", "0", "20,000,000"])
    def test_parse_invalid(self, value: str):
        amount, error = AmountValidator.parse(value)
        assert amount is None
        assert error

    @pytest.mark.unit
    def test_parse_respects_max(self):
        amount, error = AmountValidator.parse("60000", max_amount=50000)
        assert amount is None
        assert "50,000" in error


class TestTextSanitizer:
    """Tests for free text typed into chat"""

    @pytest.mark.unit
    def test_sanitize_collapses_spaces(self):
        assert TextSanitizer.sanitize("  Kigali   to\tHuye  ") == "Kigali to Huye"

    @pytest.mark.unit
    def test_sanitize_keeps_special_chars(self):
        assert TextSanitizer.sanitize("Nyabugogo <bus park> & Co") == "Nyabugogo <bus park> & Co"

    @pytest.mark.unit
    def test_sanitize_enforces_max_length(self):
        assert len(TextSanitizer.sanitize("a" * 300, max_length=200)) == 200

    @pytest.mark.unit
    def test_sanitize_drops_null_bytes(self):
        assert TextSanitizer.sanitize("Remera\x00") == "Remera"

    @pytest.mark.unit
    def test_sanitize_empty(self):
        assert TextSanitizer.sanitize("") == ""
