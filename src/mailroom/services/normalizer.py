"""Country and US state normalization.

Pure lookups, no I/O. Unknown values are passed through rather than rejected
so a bad country or state never stops a validation run.
"""

import re

_COUNTRY_ALIASES: dict[str, str] = {
    "united states": "US",
    "united states of america": "US",
    "usa": "US",
    "u.s.a.": "US",
    "u.s.": "US",
    "america": "US",
    "germany": "DE",
    "deutschland": "DE",
    "united kingdom": "GB",
    "uk": "GB",
    "great britain": "GB",
    "england": "GB",
    "scotland": "GB",
    "wales": "GB",
    "northern ireland": "GB",
    "canada": "CA",
    "france": "FR",
    "australia": "AU",
    "japan": "JP",
    "mexico": "MX",
    "méxico": "MX",
    "spain": "ES",
    "españa": "ES",
    "italy": "IT",
    "italia": "IT",
    "netherlands": "NL",
    "the netherlands": "NL",
    "holland": "NL",
    "belgium": "BE",
    "switzerland": "CH",
    "austria": "AT",
    "sweden": "SE",
    "norway": "NO",
    "denmark": "DK",
    "finland": "FI",
    "poland": "PL",
    "portugal": "PT",
    "greece": "GR",
    "ireland": "IE",
    "new zealand": "NZ",
    "brazil": "BR",
    "brasil": "BR",
    "india": "IN",
    "china": "CN",
    "south korea": "KR",
    "korea": "KR",
    "israel": "IL",
    "south africa": "ZA",
    "singapore": "SG",
    "argentina": "AR",
    "czech republic": "CZ",
    "czechia": "CZ",
    "hungary": "HU",
    "iceland": "IS",
    "luxembourg": "LU",
}

_COUNTRY_NAMES: dict[str, str] = {
    "US": "United States",
    "GB": "United Kingdom",
    "CA": "Canada",
    "DE": "Germany",
    "FR": "France",
    "ES": "Spain",
    "IT": "Italy",
    "NL": "Netherlands",
    "BE": "Belgium",
    "CH": "Switzerland",
    "AT": "Austria",
    "SE": "Sweden",
    "NO": "Norway",
    "DK": "Denmark",
    "FI": "Finland",
    "PL": "Poland",
    "PT": "Portugal",
    "GR": "Greece",
    "IE": "Ireland",
    "AU": "Australia",
    "NZ": "New Zealand",
    "JP": "Japan",
    "MX": "Mexico",
    "BR": "Brazil",
    "IN": "India",
    "CN": "China",
    "KR": "South Korea",
    "IL": "Israel",
    "ZA": "South Africa",
    "SG": "Singapore",
    "AR": "Argentina",
    "CZ": "Czechia",
    "HU": "Hungary",
    "IS": "Iceland",
    "LU": "Luxembourg",
}

_STATES: dict[str, str] = {
    "alabama": "AL",
    "alaska": "AK",
    "arizona": "AZ",
    "arkansas": "AR",
    "california": "CA",
    "colorado": "CO",
    "connecticut": "CT",
    "delaware": "DE",
    "florida": "FL",
    "georgia": "GA",
    "hawaii": "HI",
    "idaho": "ID",
    "illinois": "IL",
    "indiana": "IN",
    "iowa": "IA",
    "kansas": "KS",
    "kentucky": "KY",
    "louisiana": "LA",
    "maine": "ME",
    "maryland": "MD",
    "massachusetts": "MA",
    "michigan": "MI",
    "minnesota": "MN",
    "mississippi": "MS",
    "missouri": "MO",
    "montana": "MT",
    "nebraska": "NE",
    "nevada": "NV",
    "new hampshire": "NH",
    "new jersey": "NJ",
    "new mexico": "NM",
    "new york": "NY",
    "north carolina": "NC",
    "north dakota": "ND",
    "ohio": "OH",
    "oklahoma": "OK",
    "oregon": "OR",
    "pennsylvania": "PA",
    "rhode island": "RI",
    "south carolina": "SC",
    "south dakota": "SD",
    "tennessee": "TN",
    "texas": "TX",
    "utah": "UT",
    "vermont": "VT",
    "virginia": "VA",
    "washington": "WA",
    "west virginia": "WV",
    "wisconsin": "WI",
    "wyoming": "WY",
    "district of columbia": "DC",
    "washington dc": "DC",
    "washington d.c.": "DC",
    "puerto rico": "PR",
    "guam": "GU",
    "american samoa": "AS",
    "virgin islands": "VI",
    "u.s. virgin islands": "VI",
    "us virgin islands": "VI",
    "northern mariana islands": "MP",
}

_TWO_LETTERS = re.compile(r"^[A-Za-z]{2}$")
_WHITESPACE = re.compile(r"\s+")


def _key(value: str) -> str:
    return _WHITESPACE.sub(" ", value.strip().lower())


def map_country_to_code(name: str | None) -> str | None:
    if not name:
        return None

    key = _key(name)
    if not key:
        return None

    code = _COUNTRY_ALIASES.get(key)
    if code:
        return code

    if _TWO_LETTERS.match(key):
        return key.upper()

    return None


def code_to_country_name(code: str | None) -> str | None:
    if not code:
        return None
    return _COUNTRY_NAMES.get(code.strip().upper())


def state_name_to_abbreviation(name: str | None) -> str:
    if not name:
        return ""

    stripped = name.strip()
    if _TWO_LETTERS.match(stripped):
        return stripped.upper()

    return _STATES.get(_key(stripped), stripped.upper())


def is_home_country(country: str | None, home: str = "US") -> bool:
    """Blank countries count as home; unrecognized free text does not."""
    if not country or not country.strip():
        return True
    return map_country_to_code(country) == home.upper()
