"""Verify the hash-chain integrity of the event log exported from /events/export."""
import json, sys, hashlib

def sha256_hex(b: bytes) -> str:
    return hashlib.sha256(b).hexdigest()

def chain(prev, payload_hash):
    data = (prev or "").encode("utf-8") + payload_hash.encode("utf-8")
    return sha256_hex(data)

def main(path):
    with open(path, "r", encoding="utf-8") as f:
        log = json.load(f)
    prev = None
    for entry in log:
        if sha256_hex(entry["event_json"].encode("utf-8")) != entry["payload_hash"]:
            print("FAIL: payload hash mismatch at seq", entry["seq"])
            sys.exit(1)
        expected = chain(prev, entry["payload_hash"])
        if entry["entry_hash"] != expected:
            print("FAIL: chain mismatch at seq", entry["seq"])
            sys.exit(1)
        prev = entry["entry_hash"]
    print(f"PASS: event log chain valid ({len(log)} entries)")

if __name__ == "__main__":
    if len(sys.argv) != 2:
        print("Usage: python tools/verify_event_log_chain.py <event_log_export.json>")
        raise SystemExit(2)
    main(sys.argv[1])
