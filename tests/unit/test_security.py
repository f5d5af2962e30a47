"""
Unit Tests for Security Credential Helpers
"""

import base64
import datetime

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.x509.oid import NameOID

from mpesa_gateway.errors import ValidationError
from mpesa_gateway.utils.security import encrypt_initiator_password, validate_security_credential


def _self_signed(private_key):
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, 'apicrypt.safaricom.co.ke')])
    now = datetime.datetime.now(datetime.timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(private_key, hashes.SHA256())
    )
    return certificate.public_bytes(serialization.Encoding.PEM)


@pytest.fixture(scope='module')
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope='module')
def certificate_pem(rsa_key):
    return _self_signed(rsa_key)


class TestEncryptInitiatorPassword:

    def test_round_trip_with_private_key(self, rsa_key, certificate_pem):
        credential = encrypt_initiator_password('Safaricom999!*!', certificate_pem)

        plaintext = rsa_key.decrypt(base64.b64decode(credential), padding.PKCS1v15())
        assert plaintext == b'Safaricom999!*!'

    def test_accepts_text_certificate(self, certificate_pem):
        credential = encrypt_initiator_password('secret', certificate_pem.decode())
        assert validate_security_credential(credential) is True

    def test_empty_password(self, certificate_pem):
        with pytest.raises(ValidationError, match='Initiator password is required'):
            encrypt_initiator_password('', certificate_pem)

    def test_invalid_certificate(self):
        with pytest.raises(ValidationError) as exc_info:
            encrypt_initiator_password('secret', b'-----BEGIN CERTIFICATE-----\nnope\n-----END CERTIFICATE-----\n')
        assert exc_info.value.field == 'certificate'

    def test_non_rsa_certificate(self):
        pem = _self_signed(ec.generate_private_key(ec.SECP256R1()))
        with pytest.raises(ValidationError, match='RSA'):
            encrypt_initiator_password('secret', pem)


class TestValidateSecurityCredential:

    @pytest.mark.parametrize("credential", [
        '',
        None,
        'not base64!!',
        base64.b64encode(b'x' * 128).decode(),
    ])
    def test_rejects(self, credential):
        assert validate_security_credential(credential) is False

    def test_accepts_rsa_sized_ciphertext(self):
        assert validate_security_credential(base64.b64encode(b'x' * 256).decode()) is True
