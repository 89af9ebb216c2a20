#!/usr/bin/env python3
"""
Verify and replay sealed detection event logs. Validates AEAD and hash-chain integrity.
"""
from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Dict, List, Optional, Tuple

from event_log import LogIntegrityError, iter_records


def verify_log(log_path: str, log_key: bytes) -> Tuple[bool, List[Dict[str, Any]], Optional[str]]:
    """Return (ok, verified records, failure reason)."""
    records: List[Dict[str, Any]] = []
    try:
        for record, _chain in iter_records(log_path, log_key):
            records.append(record)
    except LogIntegrityError as e:
        return False, records, str(e)
    return True, records, None


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser()
    ap.add_argument("--log", required=True, help="path to the sealed event log")
    ap.add_argument("--log-key-hex", required=True, help="hex-encoded 32-byte log key")
    ap.add_argument("--limit", type=int, default=0, help="max records to print (0 = all)")
    ap.add_argument("--alerts-only", action="store_true", help="print only suspicious/anomalous windows")
    args = ap.parse_args(argv)

    ok, records, reason = verify_log(args.log, bytes.fromhex(args.log_key_hex))

    printed = 0
    for record in records:
        event = record.get("event", {})
        if args.alerts_only and event.get("classification") == "normal":
            continue
        if args.limit and printed >= args.limit:
            break
        print(json.dumps(record, indent=2, sort_keys=True))
        printed += 1

    if not ok:
        print(f"[FAIL] {reason}")
        return 1
    print(f"[OK] verified {len(records)} records")
    return 0


if __name__ == "__main__":
    sys.exit(main())
