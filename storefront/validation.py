"""Form validation for addresses, Mastercard payment fields, email, and names.

Every validator is pure and returns a ValidationResult. Callers collect the
failure reasons per field; nothing here raises.
"""
import calendar
import re
from dataclasses import dataclass
from datetime import date

# Letters allowed in names and address text fields
_LETTERS = "A-Za-zÁÉÍÓÚáéíóúÑñ"

_LETTERS_AND_SPACES = re.compile(rf"[{_LETTERS}\s]+")
_NOT_LETTER_OR_SPACE = re.compile(rf"[^{_LETTERS}\s]")
_POSTAL_CODE = re.compile(r"[0-9]{5}")
_PHONE = re.compile(r"[0-9]{10}")
_CVV = re.compile(r"[0-9]{3}")
_EXPIRY = re.compile(r"(0[1-9]|1[0-2])/([0-9]{2})")

_EMAIL_DISALLOWED = re.compile(r"[^A-Za-z0-9@._]")
_EMAIL = re.compile(r"[A-Za-z0-9._]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")

EMAIL_MAX_LENGTH = 255
NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 100
CARDHOLDER_MIN_LENGTH = 5
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 255

ADDRESS_FIELDS = ("street_and_number", "neighborhood", "city", "state", "postal_code", "phone")
PAYMENT_FIELDS = ("card_number", "cardholder_name", "expiry", "cvv")


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a single validator: pass, or fail with a reason."""
    ok: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.ok


PASS = ValidationResult(True)


def fail(reason: str) -> ValidationResult:
    return ValidationResult(False, reason)


def _ascii_digits(s: str) -> bool:
    return s.isascii() and s.isdigit()


# ---------------------------------------------------------------------------
# Address
# ---------------------------------------------------------------------------

def validate_postal_code(s: str) -> ValidationResult:
    if not _POSTAL_CODE.fullmatch(s or ""):
        return fail("Postal code must be 5 digits")
    return PASS


def validate_phone(s: str) -> ValidationResult:
    if not _PHONE.fullmatch(s or ""):
        return fail("Phone must be 10 digits")
    return PASS


def validate_required_text(s: str, letters_only: bool = False) -> ValidationResult:
    """Non-empty after trimming; optionally letters and spaces only."""
    if not (s or "").strip():
        return fail("Required")
    if letters_only and not _LETTERS_AND_SPACES.fullmatch(s):
        return fail("Only letters and spaces are allowed")
    return PASS


def validate_address_fields(fields: dict) -> dict[str, str]:
    """Validate a new-address form. Returns {field: reason} for every failure."""
    checks = {
        "street_and_number": validate_required_text(fields.get("street_and_number", "")),
        "neighborhood": validate_required_text(fields.get("neighborhood", ""), letters_only=True),
        "city": validate_required_text(fields.get("city", ""), letters_only=True),
        "state": validate_required_text(fields.get("state", ""), letters_only=True),
        "postal_code": validate_postal_code(fields.get("postal_code", "")),
        "phone": validate_phone(fields.get("phone", "")),
    }
    return {name: result.reason for name, result in checks.items() if not result.ok}


# ---------------------------------------------------------------------------
# Payment card
# ---------------------------------------------------------------------------

def format_card_number(raw: str) -> str:
    """Digits only, grouped by 4 with single spaces, at most 16 digits."""
    digits = re.sub(r"\D", "", raw or "")
    groups = [digits[i:i + 4] for i in range(0, len(digits), 4)]
    return " ".join(groups)[:19]


def is_valid_bin(card_number_digits: str) -> ValidationResult:
    """Mastercard BIN ranges: 51-55 or 2221-2720, 16 digits total."""
    if len(card_number_digits) != 16 or not _ascii_digits(card_number_digits):
        return fail("Invalid Mastercard number")
    first_two = int(card_number_digits[:2])
    first_four = int(card_number_digits[:4])
    if 51 <= first_two <= 55 or 2221 <= first_four <= 2720:
        return PASS
    return fail("Invalid Mastercard number")


def luhn_checksum(digits: str) -> ValidationResult:
    if not digits or not _ascii_digits(digits):
        return fail("Invalid card number")
    total = 0
    for position, char in enumerate(reversed(digits)):
        digit = int(char)
        if position % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    if total % 10 != 0:
        return fail("Invalid card number")
    return PASS


def validate_expiry(mm_yy: str, today: date | None = None) -> ValidationResult:
    """MM/YY, valid through the last day of that month in 20YY."""
    match = _EXPIRY.fullmatch(mm_yy or "")
    if not match:
        return fail("Invalid date or expired card")
    month = int(match.group(1))
    year = 2000 + int(match.group(2))
    last_day = calendar.monthrange(year, month)[1]
    if date(year, month, last_day) < (today or date.today()):
        return fail("Invalid date or expired card")
    return PASS


def validate_cardholder_name(s: str) -> ValidationResult:
    name = (s or "").strip()
    if not _LETTERS_AND_SPACES.fullmatch(name):
        return fail("Only letters and spaces are allowed")
    if len(name) < CARDHOLDER_MIN_LENGTH:
        return fail("Name is too short")
    return PASS


def validate_cvv(s: str) -> ValidationResult:
    if not _CVV.fullmatch(s or ""):
        return fail("CVV must be 3 digits")
    return PASS


def validate_card_number(card_number: str) -> ValidationResult:
    """BIN range first, then the Luhn checksum. Spaces are ignored."""
    digits = (card_number or "").replace(" ", "")
    bin_result = is_valid_bin(digits)
    if not bin_result:
        return bin_result
    return luhn_checksum(digits)


def validate_payment_fields(
    card_number: str,
    cardholder_name: str,
    expiry: str,
    cvv: str,
    today: date | None = None,
) -> dict[str, str]:
    """Validate the payment form. Returns {field: reason} for every failure."""
    checks = {
        "card_number": validate_card_number(card_number),
        "cardholder_name": validate_cardholder_name(cardholder_name),
        "expiry": validate_expiry(expiry, today=today),
        "cvv": validate_cvv(cvv),
    }
    return {name: result.reason for name, result in checks.items() if not result.ok}


# ---------------------------------------------------------------------------
# Account: email, person name, password
# ---------------------------------------------------------------------------

def validate_email(s: str) -> ValidationResult:
    """Checked in the order a user typing the address would hit each rule."""
    value = s or ""
    if not value:
        return fail("Email is required")
    if _EMAIL_DISALLOWED.search(value):
        return fail("Only letters, digits, '@', '.' and '_' are allowed")
    if value[0] in "._-":
        return fail("Email cannot start with a dot or symbol")
    if value.endswith("."):
        return fail("Email cannot end with a dot")
    if value.count("@") > 1:
        return fail("Email cannot contain more than one '@'")
    if ".." in value:
        return fail("Email cannot contain '..'")
    if len(value) > EMAIL_MAX_LENGTH:
        return fail(f"Email is limited to {EMAIL_MAX_LENGTH} characters")
    if not _EMAIL.fullmatch(value):
        return fail("Invalid format. Example: user@mail.com")
    return PASS


def validate_person_name(s: str) -> ValidationResult:
    value = s or ""
    if not value.strip():
        return fail("Name is required")
    if not _LETTERS_AND_SPACES.fullmatch(value):
        return fail("Only letters and spaces are allowed")
    if len(value) < NAME_MIN_LENGTH:
        return fail(f"Name must have at least {NAME_MIN_LENGTH} letters")
    if len(value) > NAME_MAX_LENGTH:
        return fail(f"Name is limited to {NAME_MAX_LENGTH} characters")
    return PASS


def validate_password(s: str) -> ValidationResult:
    value = s or ""
    if len(value) < PASSWORD_MIN_LENGTH:
        return fail(f"Password must have at least {PASSWORD_MIN_LENGTH} characters")
    if len(value) > PASSWORD_MAX_LENGTH:
        return fail(f"Password is limited to {PASSWORD_MAX_LENGTH} characters")
    return PASS


# ---------------------------------------------------------------------------
# Input cleaners (truncate, don't reject)
# ---------------------------------------------------------------------------

def clean_email_input(raw: str) -> str:
    return _EMAIL_DISALLOWED.sub("", raw or "")[:EMAIL_MAX_LENGTH]


def clean_person_name_input(raw: str) -> str:
    return _NOT_LETTER_OR_SPACE.sub("", raw or "")[:NAME_MAX_LENGTH]


def format_expiry_input(raw: str) -> str:
    """'1228' -> '12/28'."""
    digits = re.sub(r"\D", "", raw or "")
    if len(digits) < 2:
        return digits
    return f"{digits[:2]}/{digits[2:4]}"


def clean_cvv_input(raw: str) -> str:
    return re.sub(r"\D", "", raw or "")[:3]
