"""
FHE Boot Attestation Core Types

Ciphertext handles and the encrypted boot evidence a device submits for one
boot stage.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from .errors import InvalidCiphertext


@dataclass(frozen=True, eq=False)
class CiphertextHandle:
    """
    Opaque reference to a value held encrypted by the Encrypted Value Service.

    Equality is identity only. Whether two handles encrypt the same value can
    only be learned through the service's eq/gt operations, and only as
    another ciphertext.
    """
    handle_id: str

    def __repr__(self) -> str:
        return f"CiphertextHandle({self.handle_id[:12]}...)"

    def __str__(self) -> str:
        return self.handle_id


HandleLike = Union[CiphertextHandle, str, None]


def coerce_handle(value: HandleLike, field_name: str) -> CiphertextHandle:
    """
    Turn a handle or its wire id into a CiphertextHandle.

    Raises:
        InvalidCiphertext: if the value is absent, empty or of the wrong type
    """
    if isinstance(value, CiphertextHandle):
        if not value.handle_id:
            raise InvalidCiphertext(field_name)
        return value
    if isinstance(value, str) and value.strip():
        return CiphertextHandle(value.strip())
    if value is None or isinstance(value, str):
        raise InvalidCiphertext(field_name)
    raise InvalidCiphertext(field_name, f"{field_name} must be a ciphertext handle, got {type(value).__name__}")


class ComponentName(str, Enum):
    """Firmware components attested in every boot stage, in scoring order."""
    BOOTLOADER = "bootloader"
    KERNEL = "kernel"
    ROOTFS = "rootfs"


@dataclass
class ComponentEvidence:
    """Encrypted checksum, size and version of one firmware component."""
    checksum: CiphertextHandle
    size: CiphertextHandle
    version: CiphertextHandle

    @classmethod
    def from_value(cls, value: Any, prefix: str) -> "ComponentEvidence":
        if isinstance(value, ComponentEvidence):
            return cls(
                checksum=coerce_handle(value.checksum, f"{prefix}.checksum"),
                size=coerce_handle(value.size, f"{prefix}.size"),
                version=coerce_handle(value.version, f"{prefix}.version"),
            )
        if not isinstance(value, dict):
            raise InvalidCiphertext(prefix, f"{prefix} evidence is missing")
        return cls(
            checksum=coerce_handle(value.get("checksum"), f"{prefix}.checksum"),
            size=coerce_handle(value.get("size"), f"{prefix}.size"),
            version=coerce_handle(value.get("version"), f"{prefix}.version"),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "checksum": self.checksum.handle_id,
            "size": self.size.handle_id,
            "version": self.version.handle_id,
        }


@dataclass
class BootEvidence:
    """
    Encrypted evidence for one boot stage: nine handles covering checksum,
    size and version of the bootloader, kernel and root filesystem.
    """
    bootloader: ComponentEvidence
    kernel: ComponentEvidence
    rootfs: ComponentEvidence

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "BootEvidence":
        """
        Build evidence from a mapping of component name to handles.

        Raises:
            InvalidCiphertext: if any of the nine handles is missing
        """
        data = data or {}
        return cls(
            bootloader=ComponentEvidence.from_value(data.get("bootloader"), "bootloader"),
            kernel=ComponentEvidence.from_value(data.get("kernel"), "kernel"),
            rootfs=ComponentEvidence.from_value(data.get("rootfs"), "rootfs"),
        )

    @classmethod
    def coerce(cls, value: Any) -> "BootEvidence":
        """Validate evidence given either as BootEvidence or as a mapping."""
        if isinstance(value, BootEvidence):
            return cls(
                bootloader=ComponentEvidence.from_value(value.bootloader, "bootloader"),
                kernel=ComponentEvidence.from_value(value.kernel, "kernel"),
                rootfs=ComponentEvidence.from_value(value.rootfs, "rootfs"),
            )
        return cls.from_dict(value)

    def component(self, name: ComponentName) -> ComponentEvidence:
        return getattr(self, name.value)

    def to_dict(self) -> Dict[str, Dict[str, str]]:
        return {name.value: self.component(name).to_dict() for name in ComponentName}
