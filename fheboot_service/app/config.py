"""
Configuration for the FHE boot attestation service.

All settings come from environment variables and are read once at import.
"""

import json
import os
from pathlib import Path
from typing import Dict

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("FHEBOOT_ENV", "dev")  # dev|test|stage|prod

# Engine
ADMIN_IDENTITY = os.getenv("FHEBOOT_ADMIN_IDENTITY", "admin")
THRESHOLD = int(os.getenv("FHEBOOT_THRESHOLD", "8"))

# Encrypted Value Service backend
EVS_BACKEND = os.getenv("FHEBOOT_EVS", "memory")  # memory|http
EVS_URL = os.getenv("FHEBOOT_EVS_URL", "")
EVS_TIMEOUT = float(os.getenv("FHEBOOT_EVS_TIMEOUT", "5"))
# where the remote service posts decryption results
CALLBACK_URL = os.getenv("FHEBOOT_CALLBACK_URL", "http://localhost:8000/oracle/callback")

# Rate limits (requests per minute, per client)
SUBMIT_RPM = int(os.getenv("SUBMIT_RPM", "120"))
CALLBACK_RPM = int(os.getenv("CALLBACK_RPM", "600"))

# Paths
ORACLE_KEY_PATH = os.getenv("ORACLE_KEY_PATH", "secrets/oracle_signing_key.json")
TRUST_STORE_PATH = os.getenv("TRUST_STORE_PATH", "trust/trust_store.json")
DB_PATH = os.getenv("FHEBOOT_DB_PATH", "data/fheboot.db")


# ============================================================
# Validation
# ============================================================

def _trust_store_has_oracle_key() -> bool:
    try:
        with open(TRUST_STORE_PATH, "r", encoding="utf-8") as f:
            return bool(json.load(f).get("oracle_keys"))
    except (OSError, ValueError):
        return False


def validate_config() -> Dict[str, bool]:
    """
    Check that everything the configured backend needs is present.
    Returns dict of check name -> ok.
    """
    checks = {
        "admin_identity": bool(ADMIN_IDENTITY),
        "threshold": THRESHOLD >= 0,
        "evs_backend": EVS_BACKEND in ("memory", "http"),
        "oracle_trust": _trust_store_has_oracle_key(),
    }

    if EVS_BACKEND == "http":
        checks["evs_url"] = bool(EVS_URL)
        checks["callback_url"] = bool(CALLBACK_URL)
    else:
        # the in-process oracle signs with the local key
        checks["oracle_signing_key"] = Path(ORACLE_KEY_PATH).exists()

    return checks


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("FHEBOOT_DEBUG", "").lower() in ("1", "true", "yes")


def dev_endpoints_enabled() -> bool:
    """Development helpers exist only for the in-process backend outside prod."""
    return EVS_BACKEND == "memory" and not is_production()
