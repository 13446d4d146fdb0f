# server/certs.py
# Generates a self-signed TLS certificate and key for development servers.

import datetime     # certificate validity window
import ipaddress    # IP subject alternative names
import os           # key file permissions
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

#### Constants ####
KEY_SIZE = 2048
VALID_DAYS = 365
DEFAULT_COMMON_NAME = "localhost"


def cert_files_exist(cert_file, key_file):
    """Return True when both the certificate and the key are present."""
    return os.path.isfile(cert_file) and os.path.isfile(key_file)


def _build_certificate(key, common_name, days):
    """
    Build and self-sign an X.509 certificate for the given key.

    The certificate names "localhost", 127.0.0.1 and ::1 as subject
    alternative names so loopback clients can verify it.
    """
    name = x509.Name([
        x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Secure MP3 Share"),
    ])
    now = datetime.datetime.now(datetime.timezone.utc)
    public_key = key.public_key()

    alt_names = [
        x509.DNSName(common_name),
        x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
        x509.IPAddress(ipaddress.ip_address("::1")),
    ]
    if common_name != "localhost":
        alt_names.append(x509.DNSName("localhost"))

    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(public_key)
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(minutes=5))
        .not_valid_after(now + datetime.timedelta(days=days))
        .add_extension(x509.SubjectAlternativeName(alt_names), critical=False)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.SubjectKeyIdentifier.from_public_key(public_key), critical=False)
        .add_extension(x509.AuthorityKeyIdentifier.from_issuer_public_key(public_key), critical=False)
        .sign(key, hashes.SHA256())
    )


def generate_self_signed_cert(cert_file, key_file, common_name=DEFAULT_COMMON_NAME, days=VALID_DAYS):
    """
    Create a new RSA key and self-signed certificate as PEM files.

    Equivalent to:
        openssl req -newkey rsa:2048 -nodes -keyout key.pem -x509 -days 365 -out cert.pem

    Parameters:
        cert_file   (str): Output path for the certificate.
        key_file    (str): Output path for the private key (written 0600).
        common_name (str): Subject CN and DNS name.
        days        (int): Validity period.

    Returns:
        tuple[str, str]: (cert_file, key_file)
    """
    key = rsa.generate_private_key(public_exponent=65537, key_size=KEY_SIZE)
    cert = _build_certificate(key, common_name, days)

    for path in (cert_file, key_file):
        parent = os.path.dirname(os.path.abspath(path))
        os.makedirs(parent, exist_ok=True)

    key_bytes = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    # Private key is readable by the owner only.
    fd = os.open(key_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(key_bytes)

    with open(cert_file, "wb") as f:
        f.write(cert.public_bytes(serialization.Encoding.PEM))

    print(f"[i] Wrote self-signed certificate to {cert_file}")
    print(f"[i] Wrote private key to {key_file}")
    return cert_file, key_file
