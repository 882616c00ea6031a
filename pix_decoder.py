"""
PIX Decoder — BR Code payload parser and verifier
==================================================

Parses a payload string back into its TLV fields and checks it:

  - Structure: every tag/length is two decimal digits, every declared
    length matches the bytes that follow, nested templates parse fully,
    and the payload ends with a single "63" checksum field.
  - Integrity: the CRC-16 over everything up to and including "6304"
    equals the 4 hex digits in the checksum field.

Structural problems raise PixFormatError. A checksum mismatch is recorded
in ``validation_errors`` (or raised as PixIntegrityError in strict mode).
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from pix_types import (
    TAG_MERCHANT_ACCOUNT, TAG_AMOUNT, TAG_MERCHANT_NAME, TAG_MERCHANT_CITY,
    TAG_ADDITIONAL_DATA, TAG_CRC, SUBTAG_GUI, SUBTAG_KEY, SUBTAG_REFERENCE,
    CRC_ANCHOR, CRC_LENGTH, PIX_GUI, TEMPLATE_TAGS,
    EncodedField, PixFormatError, PixIntegrityError,
    crc16,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════
# DECODER
# ═══════════════════════════════════════════════════════════════

class PixDecoder:
    """
    PIX payload decoder.

    Usage:
        decoder = PixDecoder()
        result = decoder.decode(payload)
        result['key'], result['amount'], result['valid']
    """

    def __init__(self, strict: bool = False):
        self.strict = strict

    def decode(self, payload: str) -> dict:
        """
        Decode a payload string.

        Returns:
            dict with 'fields', 'key', 'gui', 'amount', 'name', 'city',
            'txid', 'crc', 'crc_expected', 'validation_errors', 'valid'.
        """
        if not isinstance(payload, str) or not payload:
            raise PixFormatError("Payload must be a non-empty string")

        # ── Step 1: Top-level fields ──
        fields = self.parse_fields(payload)
        if not fields or fields[-1].tag != TAG_CRC:
            raise PixFormatError("Payload does not end with a checksum field")
        if any(f.tag == TAG_CRC for f in fields[:-1]):
            raise PixFormatError("Checksum field appears before the end of the payload")

        crc_field = fields[-1]
        if len(crc_field.value) != CRC_LENGTH:
            raise PixFormatError(
                f"Checksum field must hold {CRC_LENGTH} characters, got {len(crc_field.value)}"
            )

        # ── Step 2: Checksum ──
        validation_errors = []
        crc_expected = crc16(payload[:-CRC_LENGTH])
        if not payload[:-CRC_LENGTH].endswith(CRC_ANCHOR):
            raise PixFormatError(f"Checksum field must be declared as {CRC_ANCHOR!r}")
        if crc_field.value.upper() != crc_expected:
            message = (f"CRC mismatch (expected {crc_expected}, "
                       f"got {crc_field.value})")
            if self.strict:
                raise PixIntegrityError(message)
            validation_errors.append(message)

        # ── Step 3: Nested templates ──
        tree = {}
        for f in fields:
            if f.tag in tree:
                validation_errors.append(f"Duplicate tag {f.tag}")
            tree[f.tag] = self._expand(f, validation_errors)

        merchant = tree.get(TAG_MERCHANT_ACCOUNT)
        if not isinstance(merchant, dict):
            validation_errors.append("Missing merchant account information (tag 26)")
            merchant = {}
        elif merchant.get(SUBTAG_GUI, '').lower() != PIX_GUI:
            validation_errors.append(f"Unexpected GUI {merchant.get(SUBTAG_GUI)!r}")

        additional = tree.get(TAG_ADDITIONAL_DATA)
        if not isinstance(additional, dict):
            additional = {}

        return {
            'fields': tree,
            'gui': merchant.get(SUBTAG_GUI),
            'key': merchant.get(SUBTAG_KEY),
            'amount': self._parse_amount(tree.get(TAG_AMOUNT), validation_errors),
            'name': tree.get(TAG_MERCHANT_NAME),
            'city': tree.get(TAG_MERCHANT_CITY),
            'txid': additional.get(SUBTAG_REFERENCE),
            'crc': crc_field.value,
            'crc_expected': crc_expected,
            'validation_errors': validation_errors,
            'valid': len(validation_errors) == 0,
        }

    # ─── Field Parsing ────────────────────────────────────────

    @staticmethod
    def parse_fields(data: str) -> List[EncodedField]:
        """Split a TLV sequence into fields. Raises PixFormatError on any gap."""
        fields = []
        pos = 0
        while pos < len(data):
            field, pos = EncodedField.unpack(data, pos)
            fields.append(field)
        return fields

    def _expand(self, field: EncodedField, errors: List[str]) -> Any:
        if field.tag not in TEMPLATE_TAGS:
            return field.value
        try:
            children = self.parse_fields(field.value)
        except PixFormatError as e:
            raise PixFormatError(f"Template {field.tag}: {e}") from e
        expanded = {}
        for child in children:
            if child.tag in expanded:
                errors.append(f"Duplicate tag {field.tag}/{child.tag}")
            expanded[child.tag] = child.value
        return expanded

    @staticmethod
    def _parse_amount(value: Optional[str], errors: List[str]) -> Optional[Decimal]:
        if value is None:
            return None
        try:
            return Decimal(value)
        except InvalidOperation:
            errors.append(f"Amount {value!r} is not a decimal number")
            return None


# ═══════════════════════════════════════════════════════════════
# CONVENIENCE FUNCTIONS
# ═══════════════════════════════════════════════════════════════

def decode_payload(payload: str, strict: bool = False) -> dict:
    """Convenience: decode a payload in one call."""
    return PixDecoder(strict=strict).decode(payload)

def verify_payload(payload: str) -> bool:
    """True when the payload parses and its checksum matches."""
    try:
        return PixDecoder().decode(payload)['valid']
    except PixFormatError as e:
        logger.debug("Payload rejected: %s", e)
        return False
