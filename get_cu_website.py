"""
Credit Union Website Lookup
===========================
Looks up the website address of a federally insured credit union from the
NCUA "Research a Credit Union" tool, using its JSON API:

    https://mapping.ncua.gov/api/CreditUnionDetails/GetCreditUnionDetails/{charter}

Usage:
    python get_cu_website.py 7
    python get_cu_website.py 971
    get-cu-website 971            # console script

Output:
    The website (lowercased, DNS is case-insensitive) on stdout, or UNKNOWN
    when NCUA has no website on file. UNKNOWN is a successful result so the
    batch scraper records it and never retries that charter.

    On failure (bad input, network error, API-reported error) an error is
    printed on stderr and the exit code is non-zero.
"""

import argparse
import os
import sys

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_BASE = "https://mapping.ncua.gov/api/CreditUnionDetails/GetCreditUnionDetails"
REQUEST_TIMEOUT = (10, 30)  # (connect_timeout, read_timeout) in seconds
HEADERS = {
    "User-Agent": "cu-website-scraper/0.1 (batch lookup of credit union websites)",
    "Accept": "application/json",
}

UNKNOWN = "UNKNOWN"
INVALID_CHARTER_MSG = "Charter number must be a positive integer"
FETCH_FAILED_MSG = "Failed to fetch data from NCUA API"


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class FetchError(RuntimeError):
    """The lookup failed: network error, empty body or malformed response."""


class ApiError(FetchError):
    """NCUA answered with isError=true. The message is NCUA's errorMessage."""


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class CharterInput(BaseModel):
    """Validates a charter number given as an int or a string of digits."""

    charter_number: int

    @field_validator("charter_number", mode="before")
    @classmethod
    def validate_charter_number(cls, v):
        # bool is an int subclass; True must not become charter 1
        if isinstance(v, bool):
            raise ValueError(INVALID_CHARTER_MSG)
        if isinstance(v, str):
            v = v.strip()
            if not v.isascii() or not v.isdigit():
                raise ValueError(INVALID_CHARTER_MSG)
            v = int(v)
        if not isinstance(v, int) or v < 1:
            raise ValueError(INVALID_CHARTER_MSG)
        return v


class CreditUnionDetails(BaseModel):
    """The subset of the GetCreditUnionDetails response we care about."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    is_error: bool = Field(default=False, alias="isError")
    error_message: str | None = Field(default=None, alias="errorMessage")
    website: str | None = Field(default=None, alias="creditUnionWebsite")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def api_base() -> str:
    """API base URL; NCUA_API_BASE overrides it (e.g. for a local mirror)."""
    return os.environ.get("NCUA_API_BASE", DEFAULT_API_BASE)


def validate_charter_number(value) -> int:
    """Return the charter number as an int, or raise ValueError."""
    return CharterInput(charter_number=value).charter_number


def normalize_website(value: str | None) -> str:
    """Lowercase a website value, or return UNKNOWN when there is none.

    NCUA returns null, an empty string or (rarely) the literal "null" for
    credit unions without a website on file.
    """
    if value is None:
        return UNKNOWN
    value = value.strip()
    if not value or value.lower() == "null":
        return UNKNOWN
    return value.lower()


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


def get_cu_website(charter_number, session=None, base_url: str | None = None) -> str:
    """Fetch the website for one charter number.

    Makes exactly one GET request. Returns the lowercased website, or UNKNOWN
    when the credit union has none on file.

    Raises:
        ValueError: charter_number is not a positive integer (no request made).
        ApiError: NCUA reported an error (isError=true).
        FetchError: no response body, malformed JSON, or HTTP failure.
    """
    charter = validate_charter_number(charter_number)
    http = session or requests
    base_url = base_url or api_base()
    url = f"{base_url.rstrip('/')}/{charter}"

    try:
        resp = http.get(
            url, headers=HEADERS, timeout=REQUEST_TIMEOUT, allow_redirects=True
        )
    except requests.exceptions.RequestException as e:
        raise FetchError(FETCH_FAILED_MSG) from e

    body = resp.text
    if not body or not body.strip():
        raise FetchError(FETCH_FAILED_MSG)

    try:
        payload = resp.json()
    except ValueError as e:
        raise FetchError(
            f"Malformed response from NCUA API (HTTP {resp.status_code})"
        ) from e

    if not isinstance(payload, dict):
        raise FetchError(
            f"Malformed response from NCUA API: expected an object, "
            f"got {type(payload).__name__}"
        )

    try:
        details = CreditUnionDetails.model_validate(payload)
    except ValidationError as e:
        raise FetchError(f"Malformed response from NCUA API: {e}") from e

    if details.is_error:
        raise ApiError(details.error_message or "Unknown API error")

    if resp.status_code >= 400:
        raise FetchError(f"NCUA API returned HTTP {resp.status_code}")

    return normalize_website(details.website)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Print the website of a credit union from its NCUA charter number.",
        epilog=(
            "Examples:\n"
            "  python get_cu_website.py 7\n"
            "  python get_cu_website.py 971\n"
            "\n"
            "Prints UNKNOWN (exit 0) when NCUA has no website on file.\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("charter_number", help="NCUA charter number (positive integer)")
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)

    try:
        website = get_cu_website(args.charter_number)
    except FetchError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except ValueError:
        print(f"Error: {INVALID_CHARTER_MSG}", file=sys.stderr)
        sys.exit(1)

    print(website)


if __name__ == "__main__":
    main()
