"""
verifier_backend/audit.py

Tamper-evident log of session transitions (issued / verified / failed /
rejected). One canonical JSON object per line, hash-chained:

  H_0 = "0"*64
  H_n = SHA3-256( bytes.fromhex(H_{n-1}) || canonical_json(event) )

Each stored line carries prev_hash and hash; the chain head is kept in
session_audit.state. Writers serialize on an flock'd lock file, so several
worker processes can share one directory.

Wallet tokens are never written: only their length and SHA3-256.

Verify a log from the command line:

  python -m verifier_backend.audit verify [path/to/session_audit.jsonl]
"""

from __future__ import annotations

import argparse
import fcntl
import hashlib
import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional

log = logging.getLogger("verifier_backend.audit")

GENESIS_HASH = "0" * 64

LOG_NAME = "session_audit.jsonl"
STATE_NAME = "session_audit.state"
LOCK_NAME = "session_audit.lock"


def canonical_json_bytes(obj: Dict[str, Any]) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sha3_256_hex(data: bytes) -> str:
    return hashlib.sha3_256(data).hexdigest()


def build_event(
    result: str,
    *,
    session_id: str,
    reason: Optional[str] = None,
    token: Optional[str] = None,
    request_ip: Optional[str] = None,
    user_agent: Optional[str] = None,
    **fields: Any,
) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "ts": int(time.time()),
        "session_id": str(session_id),
        "result": result,
    }
    if reason:
        out["reason"] = reason
    if request_ip:
        out["request_ip"] = request_ip
    if user_agent:
        out["user_agent"] = user_agent[:200]
    if token is not None:
        raw = token.encode("utf-8")
        out["token_len"] = len(raw)
        out["token_sha3_256"] = sha3_256_hex(raw)

    out.update({k: v for k, v in fields.items() if v is not None})
    return out


class AuditLog:
    def __init__(self, directory):
        self.directory = Path(directory)
        self.log_path = self.directory / LOG_NAME
        self.state_path = self.directory / STATE_NAME
        self.lock_path = self.directory / LOCK_NAME

    def _read_head_unlocked(self) -> str:
        if not self.state_path.exists():
            return GENESIS_HASH
        s = self.state_path.read_text(encoding="utf-8").strip().lower()
        if len(s) != 64:
            return GENESIS_HASH
        try:
            bytes.fromhex(s)
        except ValueError:
            return GENESIS_HASH
        return s

    def append(self, event: Dict[str, Any]) -> str:
        """Append one event and return its chain hash."""
        self.directory.mkdir(parents=True, exist_ok=True)

        with open(self.lock_path, "a+", encoding="utf-8") as lockf:
            fcntl.flock(lockf.fileno(), fcntl.LOCK_EX)
            try:
                prev_hash = self._read_head_unlocked()

                e = dict(event)
                e.pop("prev_hash", None)
                e.pop("hash", None)

                next_hash = sha3_256_hex(bytes.fromhex(prev_hash) + canonical_json_bytes(e))
                stored = dict(e, prev_hash=prev_hash, hash=next_hash)

                with open(self.log_path, "ab") as f:
                    f.write(canonical_json_bytes(stored) + b"\n")
                    f.flush()
                    os.fsync(f.fileno())

                self.state_path.write_text(next_hash + "\n", encoding="utf-8")
            finally:
                fcntl.flock(lockf.fileno(), fcntl.LOCK_UN)

        return next_hash

    def record(self, result: str, **kwargs: Any) -> None:
        # the audit trail must never take a request down with it
        try:
            self.append(build_event(result, **kwargs))
        except OSError:
            log.exception("audit_append_failed", extra={"event_name": "audit_append_failed"})

    def verify_chain(self) -> bool:
        return verify_log_chain(self.log_path)


def verify_log_chain(path: Path) -> bool:
    """True if every line chains onto the previous one (a missing log is valid)."""
    path = Path(path)
    if not path.exists():
        return True

    prev = GENESIS_HASH
    with open(path, "rb") as f:
        for raw_line in f:
            raw_line = raw_line.strip()
            if not raw_line:
                continue
            try:
                obj = json.loads(raw_line.decode("utf-8"))
            except ValueError:
                return False
            if not isinstance(obj, dict) or obj.get("prev_hash") != prev:
                return False

            line_hash = obj.pop("hash", None)
            obj.pop("prev_hash", None)
            if sha3_256_hex(bytes.fromhex(prev) + canonical_json_bytes(obj)) != line_hash:
                return False
            prev = line_hash

    return True


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(prog="python -m verifier_backend.audit")
    sub = ap.add_subparsers(dest="cmd", required=True)
    p_verify = sub.add_parser("verify", help="check the hash chain of an audit log")
    p_verify.add_argument("path", nargs="?", default=str(Path("audit") / LOG_NAME))
    args = ap.parse_args(argv)

    ok = verify_log_chain(Path(args.path))
    print(f"{args.path}: {'OK' if ok else 'BROKEN'}")
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
