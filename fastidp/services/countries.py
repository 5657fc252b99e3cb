"""Resolve a destination country from free-text international addresses."""

from __future__ import annotations

import re
from typing import Dict, List, Optional, Tuple

from fastidp.core.normalize import normalize_country_code

# Lower-cased names and common aliases -> ISO 3166-1 alpha-2.
COUNTRY_ALIASES: Dict[str, str] = {
    "united states": "US",
    "united states of america": "US",
    "usa": "US",
    "u.s.a.": "US",
    "america": "US",
    "canada": "CA",
    "united kingdom": "GB",
    "great britain": "GB",
    "england": "GB",
    "scotland": "GB",
    "wales": "GB",
    "northern ireland": "GB",
    "uk": "GB",
    "u.k.": "GB",
    "australia": "AU",
    "germany": "DE",
    "deutschland": "DE",
    "france": "FR",
    "italy": "IT",
    "italia": "IT",
    "spain": "ES",
    "espana": "ES",
    "españa": "ES",
    "netherlands": "NL",
    "the netherlands": "NL",
    "holland": "NL",
    "belgium": "BE",
    "switzerland": "CH",
    "schweiz": "CH",
    "suisse": "CH",
    "austria": "AT",
    "österreich": "AT",
    "sweden": "SE",
    "sverige": "SE",
    "norway": "NO",
    "norge": "NO",
    "denmark": "DK",
    "danmark": "DK",
    "finland": "FI",
    "suomi": "FI",
    "ireland": "IE",
    "republic of ireland": "IE",
    "portugal": "PT",
    "greece": "GR",
    "hellas": "GR",
    "japan": "JP",
    "nippon": "JP",
    "south korea": "KR",
    "korea": "KR",
    "north korea": "KP",
    "republic of korea": "KR",
    "china": "CN",
    "people's republic of china": "CN",
    "india": "IN",
    "brazil": "BR",
    "brasil": "BR",
    "mexico": "MX",
    "méxico": "MX",
    "argentina": "AR",
    "chile": "CL",
    "colombia": "CO",
    "peru": "PE",
    "perú": "PE",
    "south africa": "ZA",
    "egypt": "EG",
    "nigeria": "NG",
    "kenya": "KE",
    "russia": "RU",
    "russian federation": "RU",
    "turkey": "TR",
    "türkiye": "TR",
    "turkiye": "TR",
    "united arab emirates": "AE",
    "uae": "AE",
    "saudi arabia": "SA",
    "israel": "IL",
    "thailand": "TH",
    "vietnam": "VN",
    "viet nam": "VN",
    "new zealand": "NZ",
}

_TWO_LETTERS = re.compile(r"^[A-Za-z]{2}$")

# Longest alias first so "south korea" wins over "korea" and
# "united states of america" over "america".
_ALIASES_BY_LENGTH: List[Tuple[str, str]] = sorted(COUNTRY_ALIASES.items(), key=lambda kv: -len(kv[0]))


def _lines(text: str) -> List[str]:
    return [line.strip() for line in text.splitlines() if line.strip()]


def _alias_in(line: str) -> Optional[str]:
    lowered = line.lower()
    for alias, code in _ALIASES_BY_LENGTH:
        if re.search(rf"(?<!\w){re.escape(alias)}(?!\w)", lowered):
            return code
    return None


def resolve_country_code(address: Optional[str]) -> Optional[str]:
    """Return the alpha-2 code named by ``address``, or ``None`` when unresolved.

    The last non-empty line is tried first, as an exact country name (which
    covers colloquial codes such as "UK") and then as a bare two-letter code.
    Failing that every line is scanned bottom-up for an alias or a two-letter
    code.
    """
    if not address:
        return None
    lines = _lines(address)
    if not lines:
        return None

    last = lines[-1]
    exact = COUNTRY_ALIASES.get(last.lower())
    if exact:
        return exact
    if _TWO_LETTERS.match(last):
        return last.upper()

    for line in reversed(lines):
        code = _alias_in(line)
        if code:
            return code
        if _TWO_LETTERS.match(line):
            return line.upper()
    return None


def resolve_destination(explicit_code: Optional[str], address: Optional[str]) -> Optional[str]:
    code = COUNTRY_ALIASES.get(str(explicit_code or "").strip().lower()) or normalize_country_code(explicit_code)
    if code:
        return code
    return resolve_country_code(address)
