# tests/unit/services/test_credential_verifier.py
"""
Unit tests for WebAuthn response verification.

Most tests patch py_webauthn's cryptographic checks; the client data checks and
the counter rule run for real. ``TestSignedAssertion`` patches nothing.
"""

import os
from unittest.mock import patch

import pytest
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.exceptions import InvalidAuthenticationResponse

from app.exceptions import (
    ChallengeNotFoundOrExpired,
    ChallengeTypeMismatch,
    CounterNotIncrementing,
    MalformedCredential,
    OriginMismatch,
    SignatureInvalid,
)
from app.services import credential_verifier
from app.services.credential_verifier import counter_advanced
from tests.factories.webauthn_responses import (
    authentication_response,
    cose_public_key,
    generate_es256_key,
    registration_response,
    signed_authentication_response,
    verified_authentication,
    verified_registration,
)

CHALLENGE = os.urandom(32)
CHALLENGE_B64 = bytes_to_base64url(CHALLENGE)
CREDENTIAL_ID = os.urandom(16)


class TestCounterAdvanced:
    def test_strictly_greater_is_accepted(self) -> None:
        assert counter_advanced(6, 5)

    def test_equal_is_rejected(self) -> None:
        assert not counter_advanced(5, 5)

    def test_lower_is_rejected(self) -> None:
        assert not counter_advanced(4, 5)

    def test_counterless_authenticator(self) -> None:
        assert counter_advanced(0, 0)

    def test_reset_to_zero_is_rejected(self) -> None:
        assert not counter_advanced(0, 3)


class TestParsing:
    def test_extract_challenge_from_registration(self) -> None:
        credential = credential_verifier.parse_registration(
            registration_response(CHALLENGE_B64, credential_id=CREDENTIAL_ID)
        )
        assert credential_verifier.extract_challenge(credential) == CHALLENGE_B64
        assert credential.raw_id == CREDENTIAL_ID

    def test_extract_challenge_from_authentication(self) -> None:
        credential = credential_verifier.parse_authentication(
            authentication_response(CHALLENGE_B64, credential_id=CREDENTIAL_ID)
        )
        assert credential_verifier.extract_challenge(credential) == CHALLENGE_B64

    def test_missing_fields_are_malformed(self) -> None:
        with pytest.raises(MalformedCredential) as exc_info:
            credential_verifier.parse_authentication({"id": "abc", "type": "public-key"})
        assert exc_info.value.status_code == 400

    def test_non_json_string_is_malformed(self) -> None:
        with pytest.raises(MalformedCredential):
            credential_verifier.parse_registration("not json at all")


class TestVerifyRegistration:
    def test_success_extracts_credential_material(self) -> None:
        credential = credential_verifier.parse_registration(
            registration_response(
                CHALLENGE_B64, credential_id=CREDENTIAL_ID, transports=["usb", "nfc"]
            )
        )
        with patch(
            "app.services.credential_verifier.verify_registration_response",
            return_value=verified_registration(CREDENTIAL_ID, multi_device=True, backed_up=True),
        ) as mock_verify:
            result = credential_verifier.verify_registration(credential, CHALLENGE)

        mock_verify.assert_called_once()
        assert mock_verify.call_args.kwargs["expected_challenge"] == CHALLENGE
        assert mock_verify.call_args.kwargs["expected_rp_id"] == "localhost"
        assert result.credential_id == CREDENTIAL_ID
        assert result.public_key == b"cose-public-key"
        assert result.sign_count == 0
        assert result.transports == ["usb", "nfc"]
        assert result.backup_eligible is True
        assert result.backup_state is True

    def test_wrong_origin(self) -> None:
        credential = credential_verifier.parse_registration(
            registration_response(CHALLENGE_B64, origin="https://evil.example")
        )
        with patch("app.services.credential_verifier.verify_registration_response") as mock_verify:
            with pytest.raises(OriginMismatch) as exc_info:
                credential_verifier.verify_registration(credential, CHALLENGE)

        mock_verify.assert_not_called()
        assert exc_info.value.message == "Passkey verification failed"

    def test_wrong_client_data_type(self) -> None:
        credential = credential_verifier.parse_registration(
            registration_response(CHALLENGE_B64, type_="webauthn.get")
        )
        with pytest.raises(ChallengeTypeMismatch):
            credential_verifier.verify_registration(credential, CHALLENGE)

    def test_challenge_differs_from_stored(self) -> None:
        credential = credential_verifier.parse_registration(registration_response(CHALLENGE_B64))
        with pytest.raises(ChallengeNotFoundOrExpired):
            credential_verifier.verify_registration(credential, os.urandom(32))


class TestVerifyAuthentication:
    def _credential(self, **kwargs):
        return credential_verifier.parse_authentication(
            authentication_response(CHALLENGE_B64, credential_id=CREDENTIAL_ID, **kwargs)
        )

    def test_counter_advances(self) -> None:
        with patch(
            "app.services.credential_verifier.verify_authentication_response",
            return_value=verified_authentication(6, backed_up=True),
        ) as mock_verify:
            result = credential_verifier.verify_authentication(
                self._credential(),
                public_key=b"cose-public-key",
                stored_sign_count=5,
                expected_challenge=CHALLENGE,
            )

        assert result.new_sign_count == 6
        assert result.backup_state is True
        assert mock_verify.call_args.kwargs["credential_public_key"] == b"cose-public-key"

    def test_counterless_authenticator_accepted(self) -> None:
        with patch(
            "app.services.credential_verifier.verify_authentication_response",
            return_value=verified_authentication(0),
        ):
            result = credential_verifier.verify_authentication(
                self._credential(),
                public_key=b"k",
                stored_sign_count=0,
                expected_challenge=CHALLENGE,
            )
        assert result.new_sign_count == 0

    @pytest.mark.parametrize("reported", [5, 4, 0])
    def test_counter_not_advancing_is_possible_clone(self, reported: int) -> None:
        with patch(
            "app.services.credential_verifier.verify_authentication_response",
            return_value=verified_authentication(reported),
        ):
            with pytest.raises(CounterNotIncrementing) as exc_info:
                credential_verifier.verify_authentication(
                    self._credential(),
                    public_key=b"k",
                    stored_sign_count=5,
                    expected_challenge=CHALLENGE,
                )
        assert exc_info.value.code == "possible_clone"
        assert exc_info.value.message == "Passkey may be cloned. Please contact support."

    def test_bad_signature(self) -> None:
        with patch(
            "app.services.credential_verifier.verify_authentication_response",
            side_effect=InvalidAuthenticationResponse("Could not verify authentication signature"),
        ):
            with pytest.raises(SignatureInvalid) as exc_info:
                credential_verifier.verify_authentication(
                    self._credential(),
                    public_key=b"k",
                    stored_sign_count=5,
                    expected_challenge=CHALLENGE,
                )
        assert exc_info.value.status_code == 401

    def test_wrong_origin_checked_before_signature(self) -> None:
        with patch(
            "app.services.credential_verifier.verify_authentication_response"
        ) as mock_verify:
            with pytest.raises(OriginMismatch):
                credential_verifier.verify_authentication(
                    self._credential(origin="http://localhost:3000"),
                    public_key=b"k",
                    stored_sign_count=0,
                    expected_challenge=CHALLENGE,
                )
        mock_verify.assert_not_called()

    def test_registration_type_rejected(self) -> None:
        with pytest.raises(ChallengeTypeMismatch):
            credential_verifier.verify_authentication(
                self._credential(type_="webauthn.create"),
                public_key=b"k",
                stored_sign_count=0,
                expected_challenge=CHALLENGE,
            )


class TestSignedAssertion:
    """Nothing patched: py_webauthn checks a real ES256 signature."""

    def setup_method(self) -> None:
        self.private_key = generate_es256_key()
        self.public_key = cose_public_key(self.private_key)

    def _credential(self, sign_count: int, *, private_key=None):
        return credential_verifier.parse_authentication(
            signed_authentication_response(
                CHALLENGE_B64,
                private_key=private_key or self.private_key,
                credential_id=CREDENTIAL_ID,
                sign_count=sign_count,
            )
        )

    def _verify(self, credential, stored_sign_count: int):
        return credential_verifier.verify_authentication(
            credential,
            public_key=self.public_key,
            stored_sign_count=stored_sign_count,
            expected_challenge=CHALLENGE,
        )

    def test_counter_advance_accepted(self) -> None:
        result = self._verify(self._credential(6), stored_sign_count=5)
        assert result.new_sign_count == 6

    def test_counterless_authenticator_accepted(self) -> None:
        result = self._verify(self._credential(0), stored_sign_count=0)
        assert result.new_sign_count == 0

    @pytest.mark.parametrize("reported", [5, 4, 0])
    def test_counter_not_advancing_rejected(self, reported: int) -> None:
        with pytest.raises(CounterNotIncrementing):
            self._verify(self._credential(reported), stored_sign_count=5)

    def test_signature_from_another_key_rejected(self) -> None:
        forged = self._credential(6, private_key=generate_es256_key())
        with pytest.raises(SignatureInvalid):
            self._verify(forged, stored_sign_count=5)

    def test_tampered_authenticator_data_rejected(self) -> None:
        response = signed_authentication_response(
            CHALLENGE_B64,
            private_key=self.private_key,
            credential_id=CREDENTIAL_ID,
            sign_count=6,
        )
        # Claim a higher counter than the one that was signed
        auth_data = bytearray(base64url_to_bytes(response["response"]["authenticatorData"]))
        auth_data[-1] = 0x63
        response["response"]["authenticatorData"] = bytes_to_base64url(bytes(auth_data))

        with pytest.raises(SignatureInvalid):
            self._verify(credential_verifier.parse_authentication(response), stored_sign_count=5)
