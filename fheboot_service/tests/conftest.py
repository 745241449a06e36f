import pytest, os, sys, tempfile

# Ensure the app module is in path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Point configuration at throwaway paths before app.config is imported
_tmp = tempfile.mkdtemp(prefix="fheboot-service-")
os.environ["FHEBOOT_ENV"] = "test"
os.environ["FHEBOOT_EVS"] = "memory"
os.environ["FHEBOOT_ADMIN_IDENTITY"] = "admin"
os.environ["FHEBOOT_THRESHOLD"] = "8"
os.environ["ORACLE_KEY_PATH"] = os.path.join(_tmp, "secrets", "oracle_signing_key.json")
os.environ["TRUST_STORE_PATH"] = os.path.join(_tmp, "trust", "trust_store.json")
os.environ["FHEBOOT_DB_PATH"] = os.path.join(_tmp, "data", "fheboot.db")

# Generate keys once at module load time
from app.keys import generate_oracle_key_files
generate_oracle_key_files(os.environ["ORACLE_KEY_PATH"], os.environ["TRUST_STORE_PATH"])

# Initialize app at module load time
from app import main
from app.main import app, _startup
from app.db import init_db, reset_db

init_db()
_startup()


# Fresh engine, empty event log and rate limits before each test
@pytest.fixture(autouse=True)
def _reset_state():
    reset_db()
    main.submit_limiter.reset()
    main.callback_limiter.reset()
    _startup()
    yield
