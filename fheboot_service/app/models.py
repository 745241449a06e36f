from pydantic import BaseModel, Field
from typing import Optional


class ComponentHandles(BaseModel):
    checksum: Optional[str] = None
    size: Optional[str] = None
    version: Optional[str] = None


class ReferenceRequest(BaseModel):
    checksum: Optional[str] = None
    size: Optional[str] = None
    version: Optional[str] = None


class BootStageRequest(BaseModel):
    bootloader: Optional[ComponentHandles] = None
    kernel: Optional[ComponentHandles] = None
    rootfs: Optional[ComponentHandles] = None


class ThresholdRequest(BaseModel):
    value: int


class OracleCallbackRequest(BaseModel):
    request_id: str
    cleartext: str
    proof: str


class EncryptRequest(BaseModel):
    plaintext: int = Field(ge=0, lt=2 ** 32)


class DeliverRequest(BaseModel):
    request_id: Optional[str] = None
