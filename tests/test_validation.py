"""Tests for address, payment card, email, and name validation."""
from datetime import date

import pytest

from storefront.validation import (
    clean_cvv_input,
    clean_email_input,
    clean_person_name_input,
    format_card_number,
    format_expiry_input,
    is_valid_bin,
    luhn_checksum,
    validate_address_fields,
    validate_cardholder_name,
    validate_card_number,
    validate_cvv,
    validate_email,
    validate_expiry,
    validate_password,
    validate_payment_fields,
    validate_person_name,
    validate_phone,
    validate_postal_code,
    validate_required_text,
)

TODAY = date(2024, 6, 1)


class TestAddressFields:
    def test_postal_code(self):
        assert validate_postal_code("06600")
        assert not validate_postal_code("0660")
        assert not validate_postal_code("066000")
        assert not validate_postal_code("06a00")

    def test_postal_code_rejects_non_ascii_digits(self):
        assert not validate_postal_code("٠٦٦٠٠")

    def test_phone(self):
        assert validate_phone("5512345678")
        assert not validate_phone("551234567")
        assert not validate_phone("55-1234-5678")

    def test_required_text(self):
        assert validate_required_text("Av. Reforma 123")
        result = validate_required_text("   ")
        assert not result
        assert result.reason == "Required"

    def test_letters_only(self):
        assert validate_required_text("Ciudad de México", letters_only=True)
        assert validate_required_text("Peñón", letters_only=True)
        result = validate_required_text("Zona 5", letters_only=True)
        assert not result
        assert result.reason == "Only letters and spaces are allowed"

    def test_address_form_collects_every_failure(self):
        errors = validate_address_fields({
            "street_and_number": "",
            "neighborhood": "Centro",
            "city": "Monterrey 2",
            "state": "Nuevo León",
            "postal_code": "123",
            "phone": "81",
        })
        assert set(errors) == {"street_and_number", "city", "postal_code", "phone"}

    def test_address_form_passes(self, sample_address_fields):
        assert validate_address_fields(sample_address_fields.model_dump()) == {}


class TestCardNumber:
    def test_format_groups_by_four(self):
        assert format_card_number("5500005555555559") == "5500 0055 5555 5559"

    def test_format_strips_non_digits_and_truncates(self):
        assert format_card_number("5500-0055-5555-5559-9999") == "5500 0055 5555 5559"

    def test_format_partial(self):
        assert format_card_number("550000") == "5500 00"

    @pytest.mark.parametrize("number", ["5500005555555559", "5105105105105100", "2221000000000009", "2720990000000000"])
    def test_mastercard_bins_pass(self, number):
        assert is_valid_bin(number)

    @pytest.mark.parametrize("number", ["4111111111111111", "5000000000000000", "5600000000000000", "2220990000000000", "2721000000000000"])
    def test_other_bins_fail(self, number):
        assert not is_valid_bin(number)

    def test_bin_requires_sixteen_digits(self):
        assert not is_valid_bin("550000555555555")
        assert not is_valid_bin("55000055555555590")

    def test_luhn(self):
        assert luhn_checksum("5500005555555559")
        assert not luhn_checksum("5500005555555558")

    def test_luhn_rejects_empty_and_non_digits(self):
        assert not luhn_checksum("")
        assert not luhn_checksum("5500x05555555559")

    def test_card_number_checks_bin_before_luhn(self):
        assert validate_card_number("5500 0055 5555 5559")
        assert validate_card_number("4111111111111111").reason == "Invalid Mastercard number"
        assert validate_card_number("5500005555555558").reason == "Invalid card number"


class TestExpiry:
    def test_expired(self):
        assert not validate_expiry("01/20", today=TODAY)

    def test_future(self):
        assert validate_expiry("12/30", today=TODAY)

    def test_invalid_month(self):
        assert not validate_expiry("13/25", today=TODAY)
        assert not validate_expiry("00/25", today=TODAY)

    def test_current_month_is_valid_through_last_day(self):
        assert validate_expiry("06/24", today=date(2024, 6, 30))
        assert not validate_expiry("06/24", today=date(2024, 7, 1))

    def test_february_leap_year(self):
        assert validate_expiry("02/28", today=date(2028, 2, 29))

    def test_bad_shape(self):
        assert not validate_expiry("1/30", today=TODAY)
        assert not validate_expiry("12-30", today=TODAY)
        assert not validate_expiry("", today=TODAY)


class TestCardholderAndCvv:
    def test_cardholder_name(self):
        assert validate_cardholder_name("  José Ángel  ")
        assert validate_cardholder_name("Jose1 Perez").reason == "Only letters and spaces are allowed"
        assert validate_cardholder_name("Ana").reason == "Name is too short"

    def test_cvv(self):
        assert validate_cvv("123")
        assert not validate_cvv("12")
        assert not validate_cvv("1234")
        assert not validate_cvv("12a")

    def test_payment_form(self):
        assert validate_payment_fields("5500 0055 5555 5559", "Jane Doe", "12/30", "123", today=TODAY) == {}
        errors = validate_payment_fields("4111111111111111", "J", "01/20", "1", today=TODAY)
        assert set(errors) == {"card_number", "cardholder_name", "expiry", "cvv"}


class TestEmail:
    def test_accepts_simple_address(self):
        assert validate_email("a@b.com")
        assert validate_email("jane.doe_1@mail.example.mx")

    def test_rejects_consecutive_dots(self):
        assert validate_email("a..b@x.com").reason == "Email cannot contain '..'"

    def test_rejects_double_at(self):
        assert validate_email("a@b@c.com").reason == "Email cannot contain more than one '@'"

    def test_rejects_disallowed_characters(self):
        assert not validate_email("a+b@x.com")
        assert not validate_email("a@x-y.com")

    def test_rejects_leading_symbol_and_trailing_dot(self):
        assert validate_email(".a@b.com").reason == "Email cannot start with a dot or symbol"
        assert validate_email("_a@b.com").reason == "Email cannot start with a dot or symbol"
        assert validate_email("a@b.com.").reason == "Email cannot end with a dot"

    def test_rejects_missing_tld(self):
        assert not validate_email("a@b")
        assert not validate_email("a@b.c")

    def test_clean_input_truncates_instead_of_rejecting(self):
        raw = "a" * 300 + "@b.com"
        cleaned = clean_email_input(raw)
        assert len(cleaned) == 255
        assert clean_email_input("jane+doe@mail.com") == "janedoe@mail.com"


class TestPersonName:
    def test_accented_name(self):
        assert validate_person_name("José Ángel")

    def test_rejects_digits(self):
        assert not validate_person_name("Jose123")

    def test_rejects_empty(self):
        assert not validate_person_name("")

    def test_length_bounds(self):
        assert validate_person_name("J").reason == "Name must have at least 2 letters"
        assert not validate_person_name("a" * 101)
        assert validate_person_name("a" * 100)

    def test_clean_input(self):
        assert clean_person_name_input("Jo3sé!") == "José"
        assert len(clean_person_name_input("a" * 150)) == 100


class TestInputHelpers:
    def test_format_expiry_input(self):
        assert format_expiry_input("1228") == "12/28"
        assert format_expiry_input("1") == "1"
        assert format_expiry_input("12/2899") == "12/28"

    def test_clean_cvv_input(self):
        assert clean_cvv_input("12a34") == "123"

    def test_password(self):
        assert validate_password("12345678")
        assert not validate_password("1234567")
        assert not validate_password("x" * 256)


class TestTrailingNewline:
    def test_postal_code_and_phone(self):
        assert not validate_postal_code("06600\n")
        assert not validate_phone("5512345678\n")

    def test_cvv_and_expiry(self):
        assert not validate_cvv("123\n")
        assert not validate_expiry("12/30\n", today=TODAY)

    def test_email(self):
        assert not validate_email("a@b.com\n")

    def test_address_form_rejects_newline_suffix(self, sample_address_fields):
        fields = sample_address_fields.model_dump()
        fields["postal_code"] = "06600\n"
        assert set(validate_address_fields(fields)) == {"postal_code"}
