"""Network address helpers and destination normalization."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable

USER_DOMAIN = "s.whatsapp.net"
GROUP_DOMAIN = "g.us"

AddressNormalizer = Callable[[str], str]

_NON_DIGITS = re.compile(r"\D")


def user_part(address: str) -> str:
    """Short identifier: everything before the ``@``."""
    return address.split("@", 1)[0]


def is_group_address(address: str) -> bool:
    return f"@{GROUP_DOMAIN}" in address


class CountryPrefixNormalizer:
    """Turn a raw phone number into a user address.

    Non-digits are stripped.  A 10-11 digit number that does not start with
    a known prefix gets ``country_code`` prepended.  This is a heuristic, not
    an E.164 validator: a local number that happens to begin with the
    country code digits is left alone.
    """

    def __init__(
        self,
        country_code: str = "55",
        *,
        domain: str = USER_DOMAIN,
        known_prefixes: Iterable[str] | None = None,
    ) -> None:
        self.country_code = country_code
        self.domain = domain
        prefixes = tuple(known_prefixes) if known_prefixes is not None else ()
        if country_code and country_code not in prefixes:
            prefixes = (country_code, *prefixes)
        self.known_prefixes = prefixes

    def __call__(self, phone_number: str) -> str:
        if "@" in phone_number:
            return phone_number
        digits = _NON_DIGITS.sub("", phone_number)
        if not digits:
            raise ValueError(f"No digits in phone number {phone_number!r}")
        if (
            self.country_code
            and not digits.startswith(self.known_prefixes)
            and 10 <= len(digits) <= 11
        ):
            digits = self.country_code + digits
        return f"{digits}@{self.domain}"
