# app/crud/__init__.py
"""
Repositories for accounts and enrolled credentials.
"""

from .crud_passkey import passkey
from .crud_user import user

__all__ = ["passkey", "user"]
