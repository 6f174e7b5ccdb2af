"""Application settings and validation."""

import os


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Settings:
    ENV: str
    DATABASE_URL: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    ALLOW_ADMIN_SIGNUP: bool
    BOOTSTRAP_ADMIN_EMAILS: frozenset
    IDENTITY_RETRY_ATTEMPTS: int
    IDENTITY_RETRY_DELAY_SECONDS: float
    LOG_LEVEL: str
    MAX_UPLOAD_BYTES: int

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        # empty means the sqlite file next to the package (see database.py)
        self.DATABASE_URL = os.getenv("DATABASE_URL", "")
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.ALLOW_INSECURE_JWT = _flag("ALLOW_INSECURE_JWT", "false")
        self.ALLOW_DEV_CORS = _flag("ALLOW_DEV_CORS", "true")
        # Role claims of "admin" at signup are ignored unless one of these allows it.
        self.ALLOW_ADMIN_SIGNUP = _flag("ALLOW_ADMIN_SIGNUP", "false")
        self.BOOTSTRAP_ADMIN_EMAILS = frozenset(
            e.strip().lower() for e in os.getenv("BOOTSTRAP_ADMIN_EMAILS", "").split(",") if e.strip()
        )
        self.IDENTITY_RETRY_ATTEMPTS = int(os.getenv("IDENTITY_RETRY_ATTEMPTS", "3"))
        self.IDENTITY_RETRY_DELAY_SECONDS = float(os.getenv("IDENTITY_RETRY_DELAY_SECONDS", "0.5"))
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(2 * 1024 * 1024)))
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.JWT_EXPIRE_HOURS <= 0:
            raise RuntimeError("JWT_EXPIRE_HOURS must be positive")
        if self.IDENTITY_RETRY_ATTEMPTS < 1:
            raise RuntimeError("IDENTITY_RETRY_ATTEMPTS must be at least 1")


settings = Settings()
