# app/core/security_logger.py
"""
Dedicated security logger for fail2ban integration.

Writes authentication events to a file in a format that fail2ban can parse.
Includes log injection safeguards and proper timestamp formatting.
"""

import logging
import re
from logging.handlers import RotatingFileHandler
from pathlib import Path

from app.core.config import settings
from app.core.log_utils import sanitize_for_log


def sanitize(value: str | None, max_length: int = 255) -> str:
    """
    Sanitize user input to prevent log injection attacks.

    Line breaks and brackets are dropped so a value can never start a fake
    log entry; escape sequences, control and bidi characters go through
    ``sanitize_for_log``.
    """
    if not value:
        return "unknown"

    value = re.sub(r"[\n\r]", "", str(value).strip())
    value = re.sub(r"[\[\]<>]", "", sanitize_for_log(value, max_length=None))
    return value[:max_length]


def _hash_email(email: str) -> str:
    """Mask the local part of an email, keeping the domain for debugging."""
    if not email or "@" not in email:
        return sanitize(email)

    local, domain = email.rsplit("@", 1)
    if len(local) > 3:
        masked_local = local[:3] + "***"
    else:
        masked_local = local[0] + "***" if local else "***"

    return f"{masked_local}@{sanitize(domain)}"


class SecurityLogger:
    """
    Security event logger for fail2ban integration.

    Log format compatible with fail2ban datepattern:
        2026-01-05 10:15:30 SECURITY [EVENT_TYPE] ip=x.x.x.x field=value ...
    """

    _instance = None
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if SecurityLogger._initialized:
            return

        self.logger = logging.getLogger("security")
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False

        log_path = Path(settings.SECURITY_LOG_PATH)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # 50MB per file, 10 backups
        handler = RotatingFileHandler(
            str(log_path),
            maxBytes=50 * 1024 * 1024,
            backupCount=10,
        )
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s SECURITY [%(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

        self.logger.addHandler(handler)
        SecurityLogger._initialized = True

    def failed_login(self, ip: str, email: str, reason: str) -> None:
        """
        Log a rejected federated login.

        Args:
            ip: Client IP address
            email: Email that was attempted
            reason: NOT_APPROVED, BAD_IDENTITY_TOKEN, ...
        """
        self.logger.info(
            f"FAILED_LOGIN] ip={sanitize(ip)} email={_hash_email(email)} reason={sanitize(reason)}"
        )

    def login_success(self, ip: str, user_id: str, method: str = "federated") -> None:
        """Audit trail only, never used for banning."""
        self.logger.info(
            f"LOGIN_SUCCESS] ip={sanitize(ip)} user_id={sanitize(user_id)} method={sanitize(method)}"
        )

    def passkey_failed(self, ip: str, reason: str) -> None:
        """
        Log a rejected passkey ceremony.

        Args:
            ip: Client IP address
            reason: Machine code of the rejection (challenge_invalid, verification_failed, ...)
        """
        self.logger.info(f"PASSKEY_FAILED] ip={sanitize(ip)} reason={sanitize(reason)}")

    def possible_clone(self, ip: str) -> None:
        self.logger.info(f"POSSIBLE_CLONE] ip={sanitize(ip)}")

    def rate_limited(self, ip: str, endpoint: str) -> None:
        self.logger.info(
            f"RATE_LIMIT] ip={sanitize(ip)} endpoint={sanitize(endpoint, max_length=100)}"
        )

    def bad_token(self, ip: str, reason: str) -> None:
        """
        Log a suspicious token (malformed, bad signature).

        Expired tokens are normal behaviour and are not logged here.
        """
        self.logger.info(f"BAD_TOKEN] ip={sanitize(ip)} reason={sanitize(reason)}")


security_log = SecurityLogger()
