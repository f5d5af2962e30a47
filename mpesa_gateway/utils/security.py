import base64
import binascii
from typing import Union

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from mpesa_gateway.errors import ValidationError


def encrypt_initiator_password(initiator_password: str, certificate_pem: Union[str, bytes]) -> str:
    """
    Build the SecurityCredential for B2C / B2B / balance / status / reversal.

    Encrypts the initiator password with the public key of the Safaricom
    certificate (sandbox or production) using RSA PKCS#1 v1.5.

    Returns:
        str: Base64-encoded ciphertext
    """
    if not initiator_password:
        raise ValidationError('Initiator password is required', field='initiator_password')

    if isinstance(certificate_pem, str):
        certificate_pem = certificate_pem.encode()

    try:
        certificate = x509.load_pem_x509_certificate(certificate_pem)
    except ValueError as exc:
        raise ValidationError(f'Invalid certificate: {exc}', field='certificate') from exc

    public_key = certificate.public_key()
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise ValidationError('Certificate does not carry an RSA public key', field='certificate')

    ciphertext = public_key.encrypt(initiator_password.encode(), padding.PKCS1v15())
    return base64.b64encode(ciphertext).decode()


def validate_security_credential(credential: str) -> bool:
    """Check that a configured credential looks like RSA ciphertext in base64."""
    if not credential or not isinstance(credential, str):
        return False
    try:
        raw = base64.b64decode(credential, validate=True)
    except (binascii.Error, ValueError):
        return False
    # 2048-bit or larger keys
    return len(raw) >= 256
