"""
PIX Settings — process-wide configuration
==========================================

Built once at start-up with PixSettings.from_env() and handed to whatever
needs it (the CLI, a web handler). The encoder itself never reads
configuration; it only sees the PaymentRequest built from these values.

Environment (a local .env file is loaded first):
  PIX_KEY                  recipient key
  PIX_NAME                 payee name
  PIX_CITY                 payee city
  PIX_TXID                 reference id
  PIX_QR_WIDTH             image size in px
  PIX_QR_MARGIN            quiet zone in modules
  PIX_QR_ERROR_CORRECTION  L, M, Q or H
  PIX_RENDER_TIMEOUT       seconds, empty for none
"""

import os
import logging
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

from pix_types import PaymentRequest
from pix_encoder import ERROR_CORRECTION_LEVELS, RenderOptions

logger = logging.getLogger(__name__)

DEFAULT_KEY  = "95629689/0001-24"
DEFAULT_NAME = "IEADSM"
DEFAULT_CITY = "SANTA MARIA"
DEFAULT_TXID = "DOADOPELOSITE"


def _get_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Bad value for %s (%r), using %s", name, raw, default)
        return default
    if value < 0:
        logger.warning("Negative value for %s (%r), using %s", name, raw, default)
        return default
    return value


def _get_float(env: Mapping[str, str], name: str) -> Optional[float]:
    raw = (env.get(name) or "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Bad value for %s (%r), ignoring it", name, raw)
        return None
    return value if value > 0 else None


@dataclass(frozen=True)
class PixSettings:
    key: str = DEFAULT_KEY
    name: str = DEFAULT_NAME
    city: str = DEFAULT_CITY
    txid: str = DEFAULT_TXID
    qr_width: int = 192
    qr_margin: int = 1
    qr_error_correction: str = 'M'
    render_timeout: Optional[float] = None

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None,
                 dotenv: bool = True) -> 'PixSettings':
        """
        Read settings from ``env`` (default: os.environ after loading .env).
        Blank or malformed values fall back to the defaults.
        """
        if env is None:
            if dotenv:
                load_dotenv()
            env = os.environ

        level = (env.get("PIX_QR_ERROR_CORRECTION") or "M").strip().upper()
        if level not in ERROR_CORRECTION_LEVELS:
            logger.warning("Bad value for PIX_QR_ERROR_CORRECTION (%r), using M", level)
            level = 'M'

        return cls(
            key=(env.get("PIX_KEY") or "").strip() or DEFAULT_KEY,
            name=(env.get("PIX_NAME") or "").strip() or DEFAULT_NAME,
            city=(env.get("PIX_CITY") or "").strip() or DEFAULT_CITY,
            txid=(env.get("PIX_TXID") or "").strip() or DEFAULT_TXID,
            qr_width=_get_int(env, "PIX_QR_WIDTH", 192),
            qr_margin=_get_int(env, "PIX_QR_MARGIN", 1),
            qr_error_correction=level,
            render_timeout=_get_float(env, "PIX_RENDER_TIMEOUT"),
        )

    def request(self, amount=None, key: Optional[str] = None,
                name: Optional[str] = None, city: Optional[str] = None,
                txid: Optional[str] = None) -> PaymentRequest:
        """Build a PaymentRequest; blank overrides fall back to the configured values."""
        return PaymentRequest(
            key=(key or "").strip() or self.key,
            amount=amount,
            name=name or self.name,
            city=city or self.city,
            txid=txid or self.txid,
        )

    def render_options(self) -> RenderOptions:
        return RenderOptions(
            error_correction=self.qr_error_correction,
            border=self.qr_margin,
            width=self.qr_width or None,
        )
