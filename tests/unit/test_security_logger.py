# tests/unit/test_security_logger.py
"""
Unit tests for security_logger event methods.
"""

from unittest.mock import patch

from app.core.security_logger import _hash_email, sanitize, security_log


def test_passkey_failed_logs_correctly():
    """Test that passkey_failed logs the correct format for fail2ban."""
    with patch.object(security_log.logger, "info") as mock_info:
        security_log.passkey_failed("192.168.1.100", reason="challenge_invalid")

        mock_info.assert_called_once()
        call_args = mock_info.call_args[0][0]

        assert "PASSKEY_FAILED]" in call_args
        assert "ip=192.168.1.100" in call_args
        assert "reason=challenge_invalid" in call_args


def test_passkey_failed_sanitizes_ip():
    """Test that passkey_failed sanitizes malicious IP input."""
    with patch.object(security_log.logger, "info") as mock_info:
        security_log.passkey_failed("192.168.1.100\n<script>alert(1)</script>", reason="x")

        call_args = mock_info.call_args[0][0]
        assert "\n" not in call_args
        assert "<script>" not in call_args


def test_possible_clone_logs_ip():
    with patch.object(security_log.logger, "info") as mock_info:
        security_log.possible_clone("10.0.0.7")

        assert mock_info.call_args[0][0] == "POSSIBLE_CLONE] ip=10.0.0.7"


def test_login_success_logs_correctly():
    """Test that login_success logs the correct format."""
    with patch.object(security_log.logger, "info") as mock_info:
        security_log.login_success(ip="192.168.1.100", user_id="user-123", method="passkey")

        mock_info.assert_called_once()
        call_args = mock_info.call_args[0][0]

        assert "LOGIN_SUCCESS]" in call_args
        assert "ip=192.168.1.100" in call_args
        assert "user_id=user-123" in call_args
        assert "method=passkey" in call_args


def test_login_success_default_method():
    """Test that login_success defaults to the federated method."""
    with patch.object(security_log.logger, "info") as mock_info:
        security_log.login_success(ip="192.168.1.100", user_id="user-123")

        call_args = mock_info.call_args[0][0]
        assert "method=federated" in call_args


def test_login_success_sanitizes_inputs():
    """Test that login_success sanitizes all inputs."""
    with patch.object(security_log.logger, "info") as mock_info:
        security_log.login_success(ip="192.168.1.100\n", user_id="user-123\r\n", method="passkey\0")

        call_args = mock_info.call_args[0][0]
        assert "\n" not in call_args
        assert "\r" not in call_args
        assert "\0" not in call_args


def test_failed_login_masks_email():
    with patch.object(security_log.logger, "info") as mock_info:
        security_log.failed_login("1.2.3.4", "jonathan@example.com", "NOT_APPROVED")

        call_args = mock_info.call_args[0][0]
        assert "FAILED_LOGIN]" in call_args
        assert "email=jon***@example.com" in call_args
        assert "jonathan" not in call_args
        assert "reason=NOT_APPROVED" in call_args


def test_rate_limited_and_bad_token():
    with patch.object(security_log.logger, "info") as mock_info:
        security_log.rate_limited("1.2.3.4", "/api/v1/auth/passkey/authentication-verify")
        security_log.bad_token("1.2.3.4", "invalid_session_token")

        first, second = (c[0][0] for c in mock_info.call_args_list)
        assert first.startswith("RATE_LIMIT] ip=1.2.3.4 endpoint=/api/v1/auth/passkey/")
        assert second == "BAD_TOKEN] ip=1.2.3.4 reason=invalid_session_token"


def test_sanitize_and_hash_helpers():
    assert sanitize(None) == "unknown"
    assert sanitize("[FAKE] entry") == "FAKE entry"
    assert _hash_email("ab@example.com") == "a***@example.com"
    assert _hash_email("no-at-sign") == "no-at-sign"


def test_sanitize_strips_terminal_escapes_and_bidi():
    assert sanitize("\x1b]0;owned\x07\x1b[31m10.0.0.1\x1b[0m") == "10.0.0.1"
    assert sanitize("user\u202eevil") == "userevil"
