# tests/factories/__init__.py

from .passkey_factory import PasskeyFactory
from .user_factory import UserFactory

__all__ = ["PasskeyFactory", "UserFactory"]
