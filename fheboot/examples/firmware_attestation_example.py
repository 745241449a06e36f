#!/usr/bin/env python3
"""
FHE Boot Attestation Example - Fleet Rollout

This example attests a small fleet after a firmware rollout. One device
boots a tampered kernel; one callback arrives twice; one forged callback is
rejected.

Run with: python fheboot/examples/firmware_attestation_example.py
"""

import json
from typing import Dict

from fheboot import (
    AttestationEngine,
    AttestationError,
    EngineConfig,
    EventType,
    InMemoryEncryptedValueService,
    OracleSigner,
)

ADMIN = "fleet-admin"

# Plaintext firmware facts. In production only the device and the admin's
# provisioning system hold these; the engine sees ciphertext handles.
RELEASE = {"checksum": 0x5EC0B007, "size": 786432, "version": 12}
TAMPERED_KERNEL = {"checksum": 0xBADC0DE5, "size": 786432, "version": 12}


def encrypt_component(evs: InMemoryEncryptedValueService, facts: Dict[str, int]) -> Dict:
    """What the device-side agent does before submission."""
    return {name: evs.encrypt(value) for name, value in facts.items()}


def main():
    print("=" * 70)
    print("FHE BOOT ATTESTATION - FLEET ROLLOUT")
    print("=" * 70)

    evs = InMemoryEncryptedValueService()
    engine = AttestationEngine(evs, EngineConfig(admin_identity=ADMIN, initial_threshold=8))
    engine.subscribe(lambda e: print(f"  [event] {json.dumps(e.to_dict())}"))

    fleet = ["gw-001", "gw-002", "gw-003"]

    print("\n[1] Registering trusted firmware")
    for device in fleet:
        engine.register_trusted_firmware(
            ADMIN, device,
            evs.encrypt(RELEASE["checksum"]), evs.encrypt(RELEASE["size"]), evs.encrypt(RELEASE["version"]),
        )

    print("\n[2] Devices submit encrypted boot evidence")
    requests_by_device = {}
    for device in fleet:
        kernel = TAMPERED_KERNEL if device == "gw-002" else RELEASE
        index = engine.verify_boot_stage(device, device, {
            "bootloader": encrypt_component(evs, RELEASE),
            "kernel": encrypt_component(evs, kernel),
            "rootfs": encrypt_component(evs, RELEASE),
        })
        requests_by_device[device] = engine.request_boot_status_decryption(device, device, index)

    print("\n[3] A forged callback arrives first")
    forged_request = requests_by_device["gw-002"]
    try:
        engine.deliver_decryption(forged_request, *OracleSigner().sign_score(forged_request, 9))
    except AttestationError as e:
        print(f"  rejected: {e}")

    print("\n[4] Oracle delivers decryption results")
    for outcome in evs.deliver_pending():
        print(f"  {outcome.request_id[:12]}... delivered={outcome.delivered}")

    print("\n[5] A duplicate delivery is refused")
    replay = requests_by_device["gw-001"]
    try:
        engine.deliver_decryption(replay, *evs.signer.sign_score(replay, 9))
    except AttestationError as e:
        print(f"  rejected: {e}")

    print("\n[6] Fleet status")
    for device in fleet:
        status = engine.get_stage_status(device, 0)
        print(f"  {device}: {status.decision.value:7} "
              f"bootloader={status.bootloader_verified} kernel={status.kernel_verified} "
              f"rootfs={status.rootfs_verified}")

    failed = engine.event_sink.query(EventType.VERIFICATION_FAILED)
    print(f"\nQuarantine: {[e.device for e in failed]}")


if __name__ == "__main__":
    main()
