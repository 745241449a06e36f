"""Generate a local oracle signing key and a trust store naming its public key."""
import sys

from app import config
from app.keys import generate_oracle_key_files

kid = sys.argv[1] if len(sys.argv) > 1 else "oracle-01"
public_key = generate_oracle_key_files(config.ORACLE_KEY_PATH, config.TRUST_STORE_PATH, kid=kid)

print(f"Generated oracle key {kid} -> {config.ORACLE_KEY_PATH}")
print(f"Trust store -> {config.TRUST_STORE_PATH} (public key {public_key})")
