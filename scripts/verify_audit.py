#!/usr/bin/env python
"""Replay an audit trail and check every recorded digest.

Usage:
    python scripts/verify_audit.py audits/run.msgpack.gz
    python scripts/verify_audit.py audits/run.msgpack.gz --expect-hash <hex>

Exits 0 when the replay reproduces every step and digest, 1 otherwise.
"""

import argparse
import sys

from detfield.audit.trail import AuditTrail, replay_trail
from detfield.utils.logging import setup_logging


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Verify a detfield audit trail by replay")
    parser.add_argument("trail", help="Path to a .msgpack.gz audit trail")
    parser.add_argument(
        "--expect-hash", type=str, default=None,
        help="Also require the final digest to equal this hex string",
    )
    parser.add_argument(
        "--log-level", type=str, default="WARNING",
        help="Logging level (default: WARNING)",
    )
    args = parser.parse_args(argv)

    setup_logging(args.log_level)

    trail = AuditTrail.load(args.trail)
    print(f"Loaded {len(trail)} entries from {args.trail}")

    report = replay_trail(trail)
    if report.mismatch is not None:
        print(f"MISMATCH at {report.mismatch.describe()}")
        return 1

    final_hex = report.final_digest.hex() if report.final_digest is not None else ""
    if args.expect_hash is not None and final_hex != args.expect_hash.lower():
        print(f"MISMATCH final digest {final_hex} != expected {args.expect_hash}")
        return 1

    print(f"OK: {report.checked}/{report.total} entries verified, final hash {final_hex}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
