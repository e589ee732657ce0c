import os
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.dirname(os.path.dirname(__file__))


class Config:
    # Database (defaults allow a local run with a sqlite file next to the package)
    DATABASE_URL = os.environ.get(
        "LEDGER_DATABASE_URL", f"sqlite:///{os.path.join(BASE_DIR, 'db.sqlite')}"
    )
    SQL_ECHO = os.environ.get("LEDGER_SQL_ECHO", "").lower() in ("1", "true", "yes")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

config = Config()
