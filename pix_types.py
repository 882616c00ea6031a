"""
PIX Types & Constants — BR Code (EMV MPM) payload
==================================================

Foundational type definitions, constants, error classes and the pure
helper functions (checksum, sanitizers) shared by the encoder and the
decoder. This module has ZERO external dependencies beyond the Python
standard library.

Field layout authority:
  - EMV QRCPS Merchant-Presented Mode (tag/length/value structure)
  - BR Code / PIX manual (GUI "br.gov.bcb.pix", currency 986, country BR)
"""

import re
import logging
import unicodedata
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Tuple, Union

__version__ = "1.0.0"

logger = logging.getLogger(__name__)

# ═══════════════════════════════════════════════════════════════
# FIELD TAGS (EMV MPM, locked)
# ═══════════════════════════════════════════════════════════════

TAG_PAYLOAD_FORMAT      = "00"
TAG_MERCHANT_ACCOUNT    = "26"
TAG_CATEGORY_CODE       = "52"
TAG_CURRENCY            = "53"
TAG_AMOUNT              = "54"
TAG_COUNTRY             = "58"
TAG_MERCHANT_NAME       = "59"
TAG_MERCHANT_CITY       = "60"
TAG_ADDITIONAL_DATA     = "62"
TAG_CRC                 = "63"

# Sub-tags inside the merchant account information template (26)
SUBTAG_GUI              = "00"
SUBTAG_KEY              = "01"

# Sub-tag inside the additional data field template (62)
SUBTAG_REFERENCE        = "05"

# ═══════════════════════════════════════════════════════════════
# FIXED VALUES
# ═══════════════════════════════════════════════════════════════

PAYLOAD_FORMAT_INDICATOR = "01"
PIX_GUI                  = "br.gov.bcb.pix"
MERCHANT_CATEGORY_CODE   = "0000"
CURRENCY_BRL             = "986"
COUNTRY_CODE             = "BR"

# The checksum field is always "63" + "04" + 4 hex digits
CRC_LENGTH      = 4
CRC_ANCHOR      = TAG_CRC + f"{CRC_LENGTH:02d}"   # "6304"

MAX_VALUE_BYTES = 99    # two decimal length digits
MAX_NAME_LEN    = 25
MAX_CITY_LEN    = 15
MAX_TXID_LEN    = 25

NAME_PLACEHOLDER = "N"
CITY_PLACEHOLDER = "C"
TXID_PLACEHOLDER = "***"

# Tags whose value is itself a sequence of TLV fields
TEMPLATE_TAGS = frozenset(
    [f"{t:02d}" for t in range(26, 52)]
    + [TAG_ADDITIONAL_DATA]
    + [f"{t:02d}" for t in range(80, 100)]
)

_TAG_RE          = re.compile(r"^[0-9]{2}$")
_ASCII_LETTER_RE = re.compile(r"[A-Za-z]")
_NON_DIGIT_RE    = re.compile(r"[^0-9]")
_COMBINING_RE    = re.compile(r"[\u0300-\u036f]")
_NON_ASCII_RE    = re.compile(r"[^\x00-\x7f]")
_TEXT_REJECT_RE  = re.compile(r"[^A-Za-z0-9 .\-_/]")
_TXID_REJECT_RE  = re.compile(r"[^A-Z0-9\-._*]")
_WHITESPACE_RE   = re.compile(r"\s+")


# ═══════════════════════════════════════════════════════════════
# ERROR CLASSES
# ═══════════════════════════════════════════════════════════════

class PixError(Exception):
    """Base error for all payload operations."""
    pass

class PixFormatError(PixError):
    """TLV structural or parsing error."""
    pass

class PixIntegrityError(PixError):
    """Checksum verification failure."""
    pass

class InvalidKeyError(PixError):
    """Recipient key is empty after sanitization (or cannot fit its field)."""
    pass

class RenderUnavailableError(PixError):
    """The QR image could not be produced."""
    pass


# ═══════════════════════════════════════════════════════════════
# DATA STRUCTURES
# ═══════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PaymentRequest:
    """
    Input of a single payload build.

    Only ``key`` is required. ``amount`` may be a Decimal, int, float or
    numeric string; None means an open-value payment and the amount field
    is left out of the payload entirely.
    """
    key: str
    amount: Optional[Union[Decimal, int, float, str]] = None
    name: str = NAME_PLACEHOLDER
    city: str = CITY_PLACEHOLDER
    txid: str = TXID_PLACEHOLDER


@dataclass(frozen=True)
class EncodedField:
    """
    One tag-length-value triplet.

    Wire format (ASCII):
        tag    : 2 decimal digits
        length : 2 decimal digits, UTF-8 byte length of value
        value  : variable (nested templates hold packed child fields)
    """
    tag: str
    value: str

    def pack(self) -> str:
        """Serialize to wire format."""
        if not _TAG_RE.match(self.tag):
            raise PixFormatError(f"Tag must be two decimal digits, got {self.tag!r}")
        size = byte_length(self.value)
        if size > MAX_VALUE_BYTES:
            raise PixFormatError(
                f"Field {self.tag} value is {size} bytes, limit is {MAX_VALUE_BYTES}"
            )
        return f"{self.tag}{size:02d}{self.value}"

    @classmethod
    def template(cls, tag: str, *children: 'EncodedField') -> 'EncodedField':
        """Build a field whose value is the concatenation of packed children."""
        return cls(tag=tag, value="".join(child.pack() for child in children))

    @classmethod
    def unpack(cls, data: str, pos: int = 0) -> Tuple['EncodedField', int]:
        """Deserialize one field starting at ``pos``. Returns (field, next_pos)."""
        header = data[pos:pos + 4]
        if len(header) < 4:
            raise PixFormatError(f"Field header truncated at offset {pos}")
        tag, length = header[:2], header[2:]
        if not _TAG_RE.match(tag):
            raise PixFormatError(f"Invalid tag {tag!r} at offset {pos}")
        if not _TAG_RE.match(length):
            raise PixFormatError(f"Invalid length {length!r} for tag {tag} at offset {pos}")

        # Length counts bytes; walk characters until that many bytes are consumed
        want = int(length)
        start = end = pos + 4
        used = 0
        while used < want and end < len(data):
            used += byte_length(data[end])
            end += 1
        if used != want:
            raise PixFormatError(
                f"Field {tag} declares {want} bytes, only {used} available"
            )
        return cls(tag=tag, value=data[start:end]), end


# ═══════════════════════════════════════════════════════════════
# CHECKSUM
# ═══════════════════════════════════════════════════════════════

def crc16(data: Union[str, bytes]) -> str:
    """
    CRC-16/CCITT-FALSE as 4 uppercase hex digits.

    poly 0x1021, init 0xFFFF, MSB first, no reflection, no final XOR.
    Strings are fed as UTF-8, which is one byte per character for the
    ASCII payloads produced by the encoder.
    """
    if isinstance(data, str):
        data = data.encode('utf-8')
    crc = 0xFFFF
    for byte in data:
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ 0x1021) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return f"{crc:04X}"


# ═══════════════════════════════════════════════════════════════
# SANITIZERS
# ═══════════════════════════════════════════════════════════════

def byte_length(value: str) -> int:
    return len(value.encode('utf-8'))


def to_ascii(value: str) -> str:
    """Strip diacritics (NFKD + combining marks), then drop anything non-ASCII."""
    decomposed = unicodedata.normalize("NFKD", value or "")
    return _NON_ASCII_RE.sub("", _COMBINING_RE.sub("", decomposed))


def sanitize_key(value: str) -> str:
    """
    Normalize a recipient key.

    Keys with an ASCII letter or an "@" (e-mail, random UUID) are only
    trimmed. Anything else is treated as a phone/document number and
    reduced to its digits, so "123.456.789-00" becomes "12345678900".
    Returns "" when nothing is left; the caller decides whether that fails.
    """
    cleaned = (value or "").strip()
    if not cleaned:
        return ""
    if "@" in cleaned or _ASCII_LETTER_RE.search(cleaned):
        return cleaned
    return _NON_DIGIT_RE.sub("", cleaned)


def _sanitize_text(value: str, max_len: int, placeholder: str) -> str:
    cleaned = _TEXT_REJECT_RE.sub("", to_ascii(value)).strip()
    return cleaned[:max_len] or placeholder


def sanitize_name(value: str) -> str:
    return _sanitize_text(value, MAX_NAME_LEN, NAME_PLACEHOLDER)


def sanitize_city(value: str) -> str:
    return _sanitize_text(value, MAX_CITY_LEN, CITY_PLACEHOLDER)


def sanitize_txid(value: str) -> str:
    """Uppercase reference id; whitespace runs become "_", "*" is allowed."""
    cleaned = _WHITESPACE_RE.sub("_", to_ascii(value).strip().upper())
    cleaned = _TXID_REJECT_RE.sub("", cleaned)
    return cleaned[:MAX_TXID_LEN] or TXID_PLACEHOLDER


def format_amount(amount: Optional[Union[Decimal, int, float, str]]) -> Optional[str]:
    """
    Render an amount as "<digits>.<2 digits>", or None when it must be omitted.

    Missing, unparsable, non-finite and negative amounts are all omitted;
    an amount is optional data and never fails the build.
    """
    if amount is None or isinstance(amount, bool):
        return None
    try:
        # Floats round from their exact binary value: 1.005 is 1.00499... -> "1.00"
        if isinstance(amount, float):
            value = Decimal(amount)
        else:
            value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError, TypeError):
        logger.warning("Ignoring unparsable amount %r", amount)
        return None
    if not value.is_finite() or value < 0:
        logger.warning("Ignoring out-of-range amount %r", amount)
        return None
    try:
        quantized = value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        logger.warning("Ignoring out-of-range amount %r", amount)
        return None
    # abs() folds Decimal("-0") into "0.00"
    return f"{abs(quantized):f}"
