"""
Input Validation Utilities

Phone numbers (Rwanda, local 07X format and +250 international), MoMo
merchant codes, amounts and free text typed into chat.
"""
import re


class ValidationPatterns:
    """Regex patterns for validation"""

    # Local format after normalization: 0 followed by nine digits (0788123456)
    PHONE_LOCAL = re.compile(r"^0\d{9}$")

    # International format for Rwanda: +250 7X XXX XXXX
    PHONE_RWANDA_INTERNATIONAL = re.compile(r"^\+2507\d{8}$")

    # International phone (E.164 format)
    PHONE_INTERNATIONAL = re.compile(r"^\+[1-9]\d{6,14}$")

    MOMO_CODE = re.compile(r"^\d{4,9}$")

    # Digits with optional thousands separators: 5000, 5,000, 5 000
    AMOUNT = re.compile(r"^\d{1,3}(?:[,\s]?\d{3})*$")


class PhoneNumberValidator:
    """Phone number validation and normalization"""

    @staticmethod
    def clean(phone: str) -> str:
        """Strip everything except digits and a leading plus."""
        if not phone:
            return ""
        cleaned = re.sub(r"[^\d+]", "", phone.strip())
        if cleaned.startswith("00"):
            cleaned = "+" + cleaned[2:]
        return cleaned

    @staticmethod
    def to_local(phone: str) -> str:
        """
        Convert to the local 0XXXXXXXXX form used inside USSD strings.

        250788123456 / +250788123456 / 0788123456 all become 0788123456.
        Anything else is returned cleaned but otherwise untouched.
        """
        cleaned = PhoneNumberValidator.clean(phone).lstrip("+")
        if cleaned.startswith("250") and len(cleaned) == 12:
            return "0" + cleaned[3:]
        if len(cleaned) == 9 and cleaned.startswith("7"):
            return "0" + cleaned
        return cleaned

    @staticmethod
    def is_valid_local(phone: str) -> bool:
        """True when the number is a valid local-format MoMo number."""
        return bool(ValidationPatterns.PHONE_LOCAL.match(PhoneNumberValidator.to_local(phone)))

    @staticmethod
    def has_phone_shape(value: str) -> bool:
        """
        True when typed input can only be meant as a phone number: a 0, 250
        or +250 prefix, or ten digits and more. A bare 7XXXXXXXX is also a
        valid MoMo pay code.
        """
        cleaned = PhoneNumberValidator.clean(value).lstrip("+")
        return cleaned.startswith(("0", "250")) or len(cleaned) >= 10

    @staticmethod
    def validate(phone: str, allow_international: bool = True) -> bool:
        """
        Validate phone number format.

        Args:
            phone: Phone number to validate
            allow_international: Accept any E.164 number, not only Rwandan ones
        """
        if not phone:
            return False

        if PhoneNumberValidator.is_valid_local(phone):
            return True

        normalized = PhoneNumberValidator.normalize(phone)
        if ValidationPatterns.PHONE_RWANDA_INTERNATIONAL.match(normalized):
            return True

        if allow_international and ValidationPatterns.PHONE_INTERNATIONAL.match(normalized):
            return True

        return False

    @staticmethod
    def normalize(phone: str) -> str:
        """
        Normalize to +250 international format.

        0788123456 -> +250788123456, 250788123456 -> +250788123456.
        """
        cleaned = PhoneNumberValidator.clean(phone)

        if cleaned.startswith("0") and len(cleaned) == 10:
            return "+250" + cleaned[1:]
        if cleaned.startswith("250") and not cleaned.startswith("+"):
            return "+" + cleaned
        if cleaned and not cleaned.startswith("+") and len(cleaned) > 10:
            return "+" + cleaned
        return cleaned

    @staticmethod
    def to_wa_id(phone: str) -> str:
        """Cloud API recipients are digits only: 250788123456."""
        return PhoneNumberValidator.normalize(phone).lstrip("+")

    @staticmethod
    def mask(phone: str) -> str:
        """
        Mask phone number for logging (privacy).

        Returns:
            Masked phone number (e.g., 25078812****)
        """
        if not phone:
            return "****"
        if len(phone) < 4:
            return "****"
        return phone[:-4] + "****"


class MomoCodeValidator:
    """MoMo merchant (pay) codes"""

    @staticmethod
    def clean(code: str) -> str:
        return re.sub(r"[\s\-]", "", code or "")

    @staticmethod
    def validate(code: str) -> bool:
        return bool(ValidationPatterns.MOMO_CODE.match(MomoCodeValidator.clean(code)))


class AmountValidator:
    """Whole-number RWF amounts typed into chat"""

    @staticmethod
    def parse(value: str, max_amount: int = 10_000_000) -> tuple[int | None, str | None]:
        """
        Parse a positive integer amount.

        Returns:
            (amount, None) when valid, (None, error message) otherwise
        """
        if value is None:
            return None, "Please type an amount"

        text = value.strip().upper().replace("RWF", "").replace("FRW", "").strip()
        if not text:
            return None, "Please type an amount"

        if not ValidationPatterns.AMOUNT.match(text):
            return None, "The amount must be a whole number, e.g. 1500"

        amount = int(re.sub(r"[,\s]", "", text))
        if amount <= 0:
            return None, "The amount must be greater than zero"
        if amount > max_amount:
            return None, f"The amount cannot exceed {max_amount:,} RWF"

        return amount, None


class TextSanitizer:
    """Text sanitization for free-form chat input"""

    @staticmethod
    def sanitize(text: str, max_length: int = 500) -> str:
        """
        Trim, cap the length, drop null bytes and collapse runs of spaces.

        Does not HTML escape: WhatsApp renders plain text.
        """
        if not text:
            return ""

        sanitized = text.strip()[:max_length]
        sanitized = sanitized.replace("\x00", "")
        sanitized = re.sub(r"[ \t]+", " ", sanitized)

        return sanitized
