from typing import Sequence

from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding

from mesh_cert_agent.core.errors import EncodingError


def encode_certificates_pem(certs: Sequence[bytes]) -> bytes:
    """
    Serialize DER certificates as concatenated CERTIFICATE PEM blocks.

    Order is preserved, so encoding [c1, c2] equals encoding [c1] followed
    by encoding [c2].
    """
    blocks = []
    for index, der in enumerate(certs):
        try:
            cert = x509.load_der_x509_certificate(der)
        except (ValueError, TypeError) as e:
            raise EncodingError(f"could not encode certificate {index} as PEM: {e}") from e
        blocks.append(cert.public_bytes(Encoding.PEM))
    return b"".join(blocks)
