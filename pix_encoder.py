"""
PIX Encoder — BR Code payload builder and QR renderer
======================================================

Builds the "copy and pay" PIX payload:

  00 payload format indicator
  26 merchant account information  (00 GUI, 01 key)
  52 merchant category code
  53 transaction currency
  54 transaction amount           (only when an amount is given)
  58 country code
  59 merchant name
  60 merchant city
  62 additional data field        (05 reference id)
  63 CRC-16 over everything before it, including "6304"

and renders a finished payload to a PNG QR code (qrcode + Pillow).

The builder is a pure function of its input. Rendering is the only part
that touches a third-party library or a worker thread.
"""

import io
import base64
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import qrcode
import qrcode.constants
import qrcode.exceptions
from qrcode.image.pil import PilImage
from PIL import Image

from pix_types import (
    TAG_PAYLOAD_FORMAT, TAG_MERCHANT_ACCOUNT, TAG_CATEGORY_CODE,
    TAG_CURRENCY, TAG_AMOUNT, TAG_COUNTRY, TAG_MERCHANT_NAME,
    TAG_MERCHANT_CITY, TAG_ADDITIONAL_DATA,
    SUBTAG_GUI, SUBTAG_KEY, SUBTAG_REFERENCE,
    PAYLOAD_FORMAT_INDICATOR, PIX_GUI, MERCHANT_CATEGORY_CODE,
    CURRENCY_BRL, COUNTRY_CODE, CRC_ANCHOR,
    NAME_PLACEHOLDER, CITY_PLACEHOLDER, TXID_PLACEHOLDER,
    EncodedField, PaymentRequest,
    PixFormatError, InvalidKeyError, RenderUnavailableError,
    crc16, sanitize_key, sanitize_name, sanitize_city, sanitize_txid,
    format_amount,
)

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════
# PAYLOAD BUILDER
# ═══════════════════════════════════════════════════════════════

class PixEncoder:
    """
    PIX payload encoder.

    Usage:
        encoder = PixEncoder()
        payload = encoder.build_payload(PaymentRequest(
            key="person@example.com", amount="10", name="IEADSM",
            city="SANTA MARIA", txid="DOADOPELOSITE",
        ))
    """

    def build_payload(self, request: PaymentRequest) -> str:
        """
        Encode a PaymentRequest into a checksummed payload string.

        Raises:
            InvalidKeyError: the key is empty after sanitization, or too
                long to fit the merchant account template.
        """
        # ── 1. Key ──
        key = sanitize_key(request.key)
        if not key:
            raise InvalidKeyError("PIX key is empty after sanitization")

        # ── 2. Merchant account information ──
        try:
            merchant_account = EncodedField.template(
                TAG_MERCHANT_ACCOUNT,
                EncodedField(SUBTAG_GUI, PIX_GUI),
                EncodedField(SUBTAG_KEY, key),
            ).pack()
        except PixFormatError as e:
            raise InvalidKeyError(f"PIX key does not fit the payload: {e}") from e

        # ── 3. Fixed header fields + optional amount ──
        parts = [
            EncodedField(TAG_PAYLOAD_FORMAT, PAYLOAD_FORMAT_INDICATOR).pack(),
            merchant_account,
            EncodedField(TAG_CATEGORY_CODE, MERCHANT_CATEGORY_CODE).pack(),
            EncodedField(TAG_CURRENCY, CURRENCY_BRL).pack(),
        ]
        amount = format_amount(request.amount)
        if amount is not None:
            parts.append(EncodedField(TAG_AMOUNT, amount).pack())

        # ── 4. Country, payee ──
        parts.append(EncodedField(TAG_COUNTRY, COUNTRY_CODE).pack())
        parts.append(EncodedField(TAG_MERCHANT_NAME, sanitize_name(request.name)).pack())
        parts.append(EncodedField(TAG_MERCHANT_CITY, sanitize_city(request.city)).pack())

        # ── 5. Additional data (reference id) ──
        parts.append(EncodedField.template(
            TAG_ADDITIONAL_DATA,
            EncodedField(SUBTAG_REFERENCE, sanitize_txid(request.txid)),
        ).pack())

        # ── 6-7. CRC anchor, then the checksum over everything so far ──
        without_crc = "".join(parts) + CRC_ANCHOR
        payload = without_crc + crc16(without_crc)

        logger.debug("Built PIX payload (%d chars, amount=%s)", len(payload), amount)
        return payload

    def build(self, key: str, amount=None, name: str = NAME_PLACEHOLDER,
              city: str = CITY_PLACEHOLDER, txid: str = TXID_PLACEHOLDER) -> str:
        """Keyword shortcut for build_payload(PaymentRequest(...))."""
        return self.build_payload(PaymentRequest(
            key=key, amount=amount, name=name, city=city, txid=txid,
        ))


# ═══════════════════════════════════════════════════════════════
# RENDERER
# ═══════════════════════════════════════════════════════════════

ERROR_CORRECTION_LEVELS = {
    'L': qrcode.constants.ERROR_CORRECT_L,
    'M': qrcode.constants.ERROR_CORRECT_M,
    'Q': qrcode.constants.ERROR_CORRECT_Q,
    'H': qrcode.constants.ERROR_CORRECT_H,
}


@dataclass(frozen=True)
class RenderOptions:
    """
    Presentation settings passed through to qrcode/Pillow.

    ``width`` is the final square size in pixels; None keeps the size
    qrcode produces from ``box_size`` and ``border``.
    """
    error_correction: str = 'M'
    box_size: int = 10
    border: int = 1
    width: Optional[int] = 192
    fill_color: str = "#000000"
    back_color: str = "#ffffff"


class PixRenderer:
    """
    Turns a finished payload into a scannable PNG.

    Every failure is surfaced as RenderUnavailableError; there is no
    fallback image.
    """

    def __init__(self, options: Optional[RenderOptions] = None):
        self.options = options or RenderOptions()

    def render_png(self, payload: str, options: Optional[RenderOptions] = None) -> bytes:
        """Render ``payload`` to PNG bytes."""
        if not payload:
            raise RenderUnavailableError("Nothing to render: payload is empty")
        opts = options or self.options
        level = ERROR_CORRECTION_LEVELS.get(str(opts.error_correction).upper())
        if level is None:
            raise RenderUnavailableError(
                f"Unknown error correction level {opts.error_correction!r}"
            )

        try:
            qr = qrcode.QRCode(
                version=None,
                error_correction=level,
                box_size=opts.box_size,
                border=opts.border,
                image_factory=PilImage,
            )
            qr.add_data(payload)
            qr.make(fit=True)
            img = qr.make_image(
                fill_color=opts.fill_color, back_color=opts.back_color
            ).get_image().convert("RGB")
            if opts.width:
                img = img.resize((opts.width, opts.width), Image.Resampling.NEAREST)

            buf = io.BytesIO()
            img.save(buf, format='PNG')
        except (ValueError, TypeError, OSError, qrcode.exceptions.DataOverflowError) as e:
            raise RenderUnavailableError(f"QR rendering failed: {e}") from e

        data = buf.getvalue()
        logger.debug("Rendered QR PNG (%d bytes, %sx%s px)", len(data), img.width, img.height)
        return data

    def render_data_uri(self, payload: str, options: Optional[RenderOptions] = None) -> str:
        """Render ``payload`` to a ``data:image/png;base64,...`` string."""
        return png_data_uri(self.render_png(payload, options))

    async def render_png_async(self, payload: str,
                               options: Optional[RenderOptions] = None,
                               timeout: Optional[float] = None) -> bytes:
        """Awaitable render_png; same timeout rules as render_data_uri_async."""
        return await self._in_thread(self.render_png, payload, options, timeout)

    async def render_data_uri_async(self, payload: str,
                                    options: Optional[RenderOptions] = None,
                                    timeout: Optional[float] = None) -> str:
        """
        Awaitable render. Runs in a worker thread; cancelling the awaiting
        task abandons the result. ``timeout`` (seconds) turns a slow render
        into RenderUnavailableError. No retries.
        """
        return await self._in_thread(self.render_data_uri, payload, options, timeout)

    @staticmethod
    async def _in_thread(func, payload, options, timeout):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, payload, options),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise RenderUnavailableError(
                f"QR rendering did not finish within {timeout}s"
            ) from e


# ═══════════════════════════════════════════════════════════════
# CONVENIENCE FUNCTIONS
# ═══════════════════════════════════════════════════════════════

def png_data_uri(png: bytes) -> str:
    """Wrap PNG bytes as a ``data:image/png;base64,...`` string."""
    return "data:image/png;base64," + base64.b64encode(png).decode('ascii')

def build_payload(request: PaymentRequest) -> str:
    """Convenience: encode one request."""
    return PixEncoder().build_payload(request)

def render_data_uri(payload: str, options: Optional[RenderOptions] = None) -> str:
    """Convenience: render one payload to a data URI."""
    return PixRenderer(options).render_data_uri(payload)
