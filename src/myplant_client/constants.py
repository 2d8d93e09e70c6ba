from pathlib import Path

# Configuration
CONFIG_DIR = Path.home() / ".config" / "myplant"
CREDENTIAL_FILE = CONFIG_DIR / "session"
DATABASE_FILE = CONFIG_DIR / "store.db"

# Storage keys
PB_AUTH_KEY = "pb_auth_cookie"
USER_DATA_KEY = "pb_user_data"

# Environment
ENV_API_URL = "MYPLANT_API_URL"
ENV_USERNAME = "MYPLANT_USERNAME"
ENV_PASSWORD = "MYPLANT_PASSWORD"
ENV_NO_FILESYSTEM = "MYPLANT_NO_FILESYSTEM"

# API
BASE_URL = "https://semper-florens.nl/api"
LOGIN_PATH = "/login"
