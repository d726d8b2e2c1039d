import pytest

from callrelay.signaling.address import (
    CountryPrefixNormalizer,
    is_group_address,
    user_part,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("11987654321", "5511987654321@s.whatsapp.net"),
        ("(11) 98765-4321", "5511987654321@s.whatsapp.net"),
        ("1187654321", "551187654321@s.whatsapp.net"),
        ("5511987654321", "5511987654321@s.whatsapp.net"),
        ("+1 415 555 0100 22", "1415555010022@s.whatsapp.net"),
        ("123", "123@s.whatsapp.net"),
    ],
)
def test_default_normalizer(raw, expected):
    assert CountryPrefixNormalizer()(raw) == expected


def test_address_passes_through():
    normalize = CountryPrefixNormalizer()
    assert normalize("123@g.us") == "123@g.us"
    assert normalize("abc@s.whatsapp.net") == "abc@s.whatsapp.net"


def test_local_number_starting_with_country_code_left_alone():
    # 55 is both the country code and a valid area code
    assert CountryPrefixNormalizer()("5587654321") == "5587654321@s.whatsapp.net"


def test_other_country_code():
    normalize = CountryPrefixNormalizer("1")
    assert normalize("4155550100") == "14155550100@s.whatsapp.net"


def test_known_prefixes():
    normalize = CountryPrefixNormalizer("55", known_prefixes=["351"])
    assert normalize("3519123456") == "3519123456@s.whatsapp.net"
    assert normalize("2199998888") == "552199998888@s.whatsapp.net"


def test_no_digits():
    with pytest.raises(ValueError):
        CountryPrefixNormalizer()("call me")


def test_user_part_and_group():
    assert user_part("5511999@s.whatsapp.net") == "5511999"
    assert user_part("5511999") == "5511999"
    assert is_group_address("120363000000@g.us") is True
    assert is_group_address("5511999@s.whatsapp.net") is False
