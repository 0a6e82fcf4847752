#!/usr/bin/env python3
"""
Issue check-in QR codes from the command line.

Mints one code per event, caches it in Redis and writes the QR image to
disk, for events run without the admin UI (printed badges, kiosk screens).

Run:  python scripts/issue_qr_codes.py EVENT_ID [EVENT_ID ...] [--ttl 300] [--format svg] [--out qr_codes]

Exit codes:
  0 - All codes issued and cached
  1 - Codes issued but at least one could not be cached (it will not validate)
  2 - Fatal error (Redis or encryption key not configured, imports)
"""

import argparse
import base64
import sys
from datetime import datetime, timezone
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

try:
    from app import redis_client
    from app.config import settings
    from app.services.monitoring.circuit_breakers import get_redis_breaker
    from app.services.token_cache import TokenCache
    from app.services.token_service import GenerationError, TokenService
except ImportError as e:
    print(f"ERROR: Failed to import required modules: {e}")
    print("Make sure you're running from the project root and dependencies are installed.")
    sys.exit(2)

PNG_PREFIX = "data:image/png;base64,"


def write_image(record, out_dir: Path) -> Path:
    """Write the record's QR image (SVG if rendered, else PNG) and return its path."""
    stem = f"{record.event_id}_{record.issued_at}"
    if record.qr_code_svg:
        path = out_dir / f"{stem}.svg"
        path.write_text(record.qr_code_svg, encoding="utf-8")
    else:
        path = out_dir / f"{stem}.png"
        path.write_bytes(base64.b64decode(record.qr_code_image[len(PNG_PREFIX):]))
    return path


def main():
    parser = argparse.ArgumentParser(
        description="Issue encrypted, single-use check-in QR codes"
    )
    parser.add_argument(
        "event_ids",
        nargs="+",
        help="Events to issue a code for"
    )
    parser.add_argument(
        "--ttl",
        type=int,
        default=None,
        help=f"Code lifetime in seconds (default: {settings.qr_expiration_seconds})"
    )
    parser.add_argument(
        "--format",
        choices=["png", "svg"],
        default="png",
        help="Image format written to disk"
    )
    parser.add_argument(
        "--out",
        default="qr_codes",
        help="Output directory for QR images"
    )
    args = parser.parse_args()

    if not settings.qr_encryption_key:
        print("ERROR: QR_ENCRYPTION_KEY not configured.")
        sys.exit(2)

    print("Connecting to Redis...")
    client = redis_client.init_redis()
    if client is None:
        print("ERROR: Redis not configured (REDIS_URL missing).")
        sys.exit(2)

    cache = TokenCache(client, breaker=get_redis_breaker())
    if not cache.is_healthy():
        print("ERROR: Redis unreachable.")
        sys.exit(2)

    service = TokenService(
        cache=cache,
        encryption_key=settings.qr_encryption_key,
        base_url=settings.base_url,
        default_expiration_seconds=settings.qr_expiration_seconds,
        key_salt=settings.qr_key_salt,
    )

    out_dir = Path(args.out)
    out_dir.mkdir(parents=True, exist_ok=True)

    not_cached = 0
    try:
        for event_id in args.event_ids:
            if args.format == "svg":
                record = service.generate_svg(event_id, args.ttl)
            else:
                record = service.generate(event_id, args.ttl)

            path = write_image(record, out_dir)
            expires = datetime.fromtimestamp(record.expires_at / 1000, tz=timezone.utc)
            print(f"  [{event_id}] {path}")
            print(f"      URL:     {record.checkin_url}")
            print(f"      Expires: {expires.isoformat()} ({record.expiration_seconds}s)")
            if not record.cached:
                print("      WARNING: not cached - this code will not validate")
                not_cached += 1
    except (GenerationError, ValueError) as e:
        print(f"ERROR: {e}")
        sys.exit(2)
    finally:
        redis_client.close_redis()

    # Summary
    print(f"\n{'=' * 50}")
    print(f"Issued:      {len(args.event_ids)}")
    print(f"Not cached:  {not_cached}")
    print(f"{'=' * 50}")

    if not_cached > 0:
        sys.exit(1)


if __name__ == "__main__":
    main()
