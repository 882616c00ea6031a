"""
pix-code — print a PIX "copy and pay" payload, optionally as a QR image.

    pix-code --amount 25.50
    pix-code --key person@example.com --png donation.png
    pix-code --data-uri
"""

import sys
import asyncio
import logging
import argparse
from pathlib import Path

from pix_types import PixError
from pix_encoder import PixEncoder, PixRenderer, png_data_uri
from pix_config import PixSettings

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="pix-code",
        description="Build a PIX BR Code payload and render it as a QR code.",
    )
    parser.add_argument("--key", help="recipient key (default: PIX_KEY)")
    parser.add_argument("--amount", help="amount, e.g. 10 or 25.50 (default: open value)")
    parser.add_argument("--name", help="payee name (default: PIX_NAME)")
    parser.add_argument("--city", help="payee city (default: PIX_CITY)")
    parser.add_argument("--txid", help="reference id (default: PIX_TXID)")
    parser.add_argument("--png", type=Path, help="write the QR code to this PNG file")
    parser.add_argument("--data-uri", action="store_true",
                        help="also print the QR code as a data URI")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    settings = PixSettings.from_env()
    request = settings.request(
        amount=args.amount, key=args.key,
        name=args.name, city=args.city, txid=args.txid,
    )

    try:
        payload = PixEncoder().build_payload(request)
        print(payload)

        if args.png or args.data_uri:
            renderer = PixRenderer(settings.render_options())
            png = asyncio.run(
                renderer.render_png_async(payload, timeout=settings.render_timeout)
            )
            if args.png:
                args.png.parent.mkdir(parents=True, exist_ok=True)
                args.png.write_bytes(png)
                logger.info("QR code written to %s", args.png)
            if args.data_uri:
                print(png_data_uri(png))
    except PixError as e:
        logger.error("%s: %s", type(e).__name__, e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
