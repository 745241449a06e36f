#!/usr/bin/env python3
"""
FHE Boot Attestation Command Line Interface

Usage:
    fheboot keygen [--output <file>] [--key-id <id>]
    fheboot sign-result --key <file> --request-id <id> --score <n>
    fheboot verify-proof --public-key <b64> --request-id <id> --cleartext <hex> --proof <b64>
    fheboot demo
"""

import argparse
import base64
import json
import sys


def load_json(path: str) -> dict:
    """Load JSON from file."""
    with open(path, 'r') as f:
        return json.load(f)


def save_json(data: dict, path: str):
    """Save JSON to file."""
    with open(path, 'w') as f:
        json.dump(data, f, indent=2)


def cmd_keygen(args):
    """Generate an oracle Ed25519 key pair."""
    from fheboot import generate_oracle_key

    key_pair = generate_oracle_key(args.key_id or "oracle-01")
    key_file = {
        "kid": key_pair.key_id,
        "private_key_b64": base64.b64encode(key_pair.signing_key).decode('utf-8'),
        "public_key": key_pair.verify_key_b64,
    }

    if args.output:
        save_json(key_file, args.output)
        print(f"Oracle key saved to: {args.output}")
    else:
        print(json.dumps(key_file, indent=2))

    print(f"\nTrust store entry:\n{json.dumps(key_pair.to_trust_store_entry(), indent=2)}", file=sys.stderr)
    return 0


def cmd_sign_result(args):
    """Sign a decryption result the way the oracle does."""
    from fheboot import OracleSigner

    key_file = load_json(args.key)
    signer = OracleSigner.from_private_key_b64(key_file["private_key_b64"], key_file.get("kid", "oracle-01"))
    cleartext, proof = signer.sign_score(args.request_id, args.score)

    print(json.dumps({
        "request_id": args.request_id,
        "cleartext": cleartext.hex(),
        "proof": proof,
    }, indent=2))
    return 0


def cmd_verify_proof(args):
    """Check an oracle proof."""
    from fheboot import verify_proof

    try:
        cleartext = bytes.fromhex(args.cleartext)
    except ValueError:
        print("✗ INVALID: cleartext is not hex")
        return 1

    if verify_proof(args.request_id, cleartext, args.proof, args.public_key):
        print("✓ VALID")
        return 0
    print("✗ INVALID: proof does not authenticate (request_id, cleartext)")
    return 1


def cmd_demo(args):
    """Run a demonstration of encrypted boot attestation."""
    from fheboot import (
        AttestationEngine,
        EngineConfig,
        InMemoryEncryptedValueService,
    )

    print("=" * 60)
    print("FHE Boot Attestation Demonstration")
    print("=" * 60)

    evs = InMemoryEncryptedValueService()
    engine = AttestationEngine(evs, EngineConfig(admin_identity="admin", initial_threshold=7))
    device = "device-001"

    engine.register_trusted_firmware(
        "admin", device, evs.encrypt(42), evs.encrypt(1024), evs.encrypt(3)
    )
    print(f"\nRegistered trusted firmware for {device}")
    print(f"Threshold: {engine.threshold}")

    def evidence(bootloader_checksum):
        def component(checksum):
            return {"checksum": evs.encrypt(checksum), "size": evs.encrypt(1024), "version": evs.encrypt(3)}
        return {"bootloader": component(bootloader_checksum), "kernel": component(42), "rootfs": component(42)}

    scenarios = [
        ("Matching firmware", 42),
        ("Tampered bootloader", 41),
    ]
    for title, checksum in scenarios:
        print("\n" + "-" * 60)
        print(f"Scenario: {title}")
        print("-" * 60)

        index = engine.verify_boot_stage(device, device, evidence(checksum))
        print(f"Stage {index} submitted (pending)")

        request_id = engine.request_boot_status_decryption(device, device, index)
        print(f"Decryption requested: {request_id}")
        evs.deliver_pending()

        status = engine.get_stage_status(device, index)
        print(f"Decision: {status.decision.value}")
        print(f"  bootloader={status.bootloader_verified} kernel={status.kernel_verified} rootfs={status.rootfs_verified}")

    # Raising the threshold only affects stages submitted afterwards
    engine.update_verification_threshold("admin", 8)
    index = engine.verify_boot_stage(device, device, evidence(41))
    engine.request_boot_status_decryption(device, device, index)
    evs.deliver_pending()
    print("\n" + "-" * 60)
    print(f"Tampered bootloader at threshold 8: {engine.get_stage_status(device, index).decision.value}")

    summary = engine.get_device_summary(device)
    print("\n" + "=" * 60)
    print(f"Stages: {summary.stage_count}  passed: {summary.passed}  failed: {summary.failed}  pending: {summary.pending}")
    print("=" * 60)
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="FHE Boot Attestation CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  fheboot demo                                  Run demonstration
  fheboot keygen -o oracle_key.json
  fheboot sign-result -k oracle_key.json -r req-1 -s 9
  fheboot verify-proof -p <b64> -r req-1 -c <hex> -P <b64>
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # keygen
    keygen_parser = subparsers.add_parser("keygen", help="Generate oracle signing key pair")
    keygen_parser.add_argument("-o", "--output", help="Output file for key pair")
    keygen_parser.add_argument("-k", "--key-id", help="Key identifier")

    # sign-result
    sign_parser = subparsers.add_parser("sign-result", help="Sign a decryption result")
    sign_parser.add_argument("-k", "--key", required=True, help="Oracle key JSON file")
    sign_parser.add_argument("-r", "--request-id", required=True, help="Decryption request id")
    sign_parser.add_argument("-s", "--score", required=True, type=int, help="Plaintext score")

    # verify-proof
    verify_parser = subparsers.add_parser("verify-proof", help="Verify an oracle proof")
    verify_parser.add_argument("-p", "--public-key", required=True, help="Oracle verify key (base64)")
    verify_parser.add_argument("-r", "--request-id", required=True, help="Decryption request id")
    verify_parser.add_argument("-c", "--cleartext", required=True, help="Cleartext (hex)")
    verify_parser.add_argument("-P", "--proof", required=True, help="Proof (base64)")

    # demo
    subparsers.add_parser("demo", help="Run demonstration")

    args = parser.parse_args(argv)

    if args.command == "keygen":
        return cmd_keygen(args)
    elif args.command == "sign-result":
        return cmd_sign_result(args)
    elif args.command == "verify-proof":
        return cmd_verify_proof(args)
    elif args.command == "demo":
        return cmd_demo(args)
    else:
        parser.print_help()
        return 2


if __name__ == "__main__":
    sys.exit(main())
