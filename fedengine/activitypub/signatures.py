# fedengine/activitypub/signatures.py
"""
HTTP Signatures for ActivityPub.

Outbound requests are signed with RSA-SHA256 over a signing string built
from (request-target), host, date and, when a body is sent, digest.
Inbound requests are verified by rebuilding the same string from the
header list named in the Signature header.

See: https://docs.joinmastodon.org/spec/security/
"""

import base64
import hashlib
import logging
from dataclasses import dataclass, field
from email.utils import formatdate
from typing import Dict, List, Mapping, Optional, Tuple
from urllib.parse import urlparse

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from ..http import FederationClient

logger = logging.getLogger(__name__)

ALGORITHM = "rsa-sha256"


@dataclass
class SignatureHeader:
    """
    Parsed value of a Signature header.

    Attributes:
        key_id: URL of the signing key
        algorithm: Declared algorithm (informational)
        headers: Signed header names, in signing order
        signature: Base64 signature
    """
    key_id: str
    signature: str
    algorithm: str = ALGORITHM
    headers: List[str] = field(default_factory=lambda: ["date"])

    def to_header(self) -> str:
        return (
            f'keyId="{self.key_id}",algorithm="{self.algorithm}",'
            f'headers="{" ".join(self.headers)}",signature="{self.signature}"'
        )


def generate_keypair() -> Tuple[str, str]:
    """
    Generate an RSA-2048 key pair for a new actor.

    Returns:
        (public_key_pem, private_key_pem)
    """
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
    )
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return public_pem.decode("utf-8"), private_pem.decode("utf-8")


def digest_body(body: bytes | str) -> str:
    """Digest header value for a request body."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return "SHA-256=" + base64.b64encode(hashlib.sha256(body).digest()).decode("utf-8")


def _request_target(method: str, path: str) -> str:
    return f"(request-target): {method.lower()} {path}"


def _lookup(headers: Mapping[str, str], name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    if name in headers:
        return headers[name]
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def sign_request(
    method: str,
    url: str,
    body: bytes | str | None,
    private_key_pem: str,
    key_id: str,
    date: Optional[str] = None,
) -> Dict[str, str]:
    """
    Sign an outbound HTTP request.

    Args:
        method: HTTP method
        url: Full target URL
        body: Request body, or None
        private_key_pem: Signer's PKCS8 PEM private key
        key_id: Public key URL advertised in the signature
        date: HTTP date to sign (defaults to now; must be fresh per call)

    Returns:
        Headers to add to the request: Date, Signature and, with a body, Digest
    """
    parsed = urlparse(url)
    path = parsed.path or "/"
    if date is None:
        date = formatdate(usegmt=True)

    digest = digest_body(body) if body is not None else None
    signed_headers = ["(request-target)", "host", "date"]
    lines = [
        _request_target(method, path),
        f"host: {parsed.netloc}",
        f"date: {date}",
    ]
    if digest:
        signed_headers.append("digest")
        lines.append(f"digest: {digest}")

    private_key = serialization.load_pem_private_key(
        private_key_pem.encode("utf-8"),
        password=None,
    )
    signature_bytes = private_key.sign(
        "\n".join(lines).encode("utf-8"),
        padding.PKCS1v15(),
        hashes.SHA256(),
    )

    signature = SignatureHeader(
        key_id=key_id,
        signature=base64.b64encode(signature_bytes).decode("utf-8"),
        headers=signed_headers,
    )
    headers = {
        "Date": date,
        "Signature": signature.to_header(),
    }
    if digest:
        headers["Digest"] = digest
    return headers


def parse_signature_header(value: str) -> Optional[SignatureHeader]:
    """
    Parse a Signature header.

    Returns None if keyId or signature is missing. Values are split on the
    first '=' only, so base64 padding survives.
    """
    params: Dict[str, str] = {}
    for part in value.split(","):
        if "=" not in part:
            continue
        key, raw = part.split("=", 1)
        params[key.strip()] = raw.strip().strip('"')

    key_id = params.get("keyId")
    signature = params.get("signature")
    if not key_id or not signature:
        return None

    header_list = params.get("headers", "date").split()
    return SignatureHeader(
        key_id=key_id,
        signature=signature,
        algorithm=params.get("algorithm", ALGORITHM),
        headers=header_list,
    )


def verify_request(
    method: str,
    path: str,
    headers: Mapping[str, str],
    public_key_pem: str,
    body: bytes | str | None = None,
) -> bool:
    """
    Verify an inbound request's HTTP signature.

    Never raises: any malformed input yields False, which callers treat as
    "untrusted".

    Args:
        method: HTTP method of the request
        path: Request path (no scheme/host)
        headers: Request headers
        public_key_pem: Claimed signer's public key
        body: Raw body; when non-empty, the signature must cover a Digest
            header that matches it

    Returns:
        True if the signature is valid
    """
    try:
        raw = _lookup(headers, "Signature")
        if not raw:
            return False

        parsed = parse_signature_header(raw)
        if parsed is None or not parsed.headers:
            return False

        if body:
            # A body is only trusted when its digest is part of the signature.
            if "digest" not in (name.lower() for name in parsed.headers):
                logger.debug("Signature does not cover the Digest header")
                return False
            if _lookup(headers, "Digest") != digest_body(body):
                logger.debug("Digest does not match request body")
                return False

        lines = []
        for name in parsed.headers:
            if name == "(request-target)":
                lines.append(_request_target(method, path))
                continue
            header_value = _lookup(headers, name)
            if header_value is None:
                logger.debug(f"Signed header missing from request: {name}")
                return False
            lines.append(f"{name.lower()}: {header_value}")

        public_key = serialization.load_pem_public_key(public_key_pem.encode("utf-8"))
        if not isinstance(public_key, rsa.RSAPublicKey):
            return False
        public_key.verify(
            base64.b64decode(parsed.signature),
            "\n".join(lines).encode("utf-8"),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
        return True

    except (InvalidSignature, UnsupportedAlgorithm, ValueError, TypeError, AttributeError):
        return False


def fetch_actor_public_key(client: FederationClient, actor_url: str) -> Optional[str]:
    """
    Fetch an actor document and extract its public key PEM.

    Returns None on any network or shape failure.
    """
    doc = client.get_json(actor_url)
    if doc is None:
        return None
    public_key = doc.get("publicKey")
    if not isinstance(public_key, dict):
        return None
    pem = public_key.get("publicKeyPem")
    return pem if isinstance(pem, str) and pem else None
