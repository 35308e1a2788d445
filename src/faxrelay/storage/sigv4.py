"""
AWS Signature Version 4 query-string presigning for S3-compatible stores.

Everything needed for access travels in the query string, so the URL alone
grants a single GET of one object until it expires.
"""

import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qsl, quote, urlsplit

ALGORITHM = "AWS4-HMAC-SHA256"
SERVICE = "s3"
UNSIGNED_PAYLOAD = "UNSIGNED-PAYLOAD"
AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"

REQUIRED_QUERY_PARAMS = (
    "X-Amz-Algorithm",
    "X-Amz-Credential",
    "X-Amz-Date",
    "X-Amz-Expires",
    "X-Amz-SignedHeaders",
    "X-Amz-Signature",
)


@dataclass(frozen=True)
class PresignedUrlParts:
    """Signature parameters recovered from a presigned URL."""

    scheme: str
    host: str
    canonical_uri: str
    params: dict[str, str]
    signature: str
    issued_at: datetime
    expires_in: int

    @property
    def expires_at(self) -> datetime:
        return self.issued_at + timedelta(seconds=self.expires_in)

    @property
    def credential_scope(self) -> str:
        return self.params["X-Amz-Credential"].split("/", 1)[1]


def _uri_encode(value: str, safe: str = "-_.~") -> str:
    return quote(value, safe=safe)


def _hmac(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


def derive_signing_key(secret_access_key: str, datestamp: str, region: str) -> bytes:
    k_date = _hmac(("AWS4" + secret_access_key).encode("utf-8"), datestamp)
    k_region = _hmac(k_date, region)
    k_service = _hmac(k_region, SERVICE)
    return _hmac(k_service, "aws4_request")


def canonical_query_string(params: dict[str, str]) -> str:
    encoded = sorted((_uri_encode(k), _uri_encode(v)) for k, v in params.items())
    return "&".join(f"{k}={v}" for k, v in encoded)


def build_canonical_request(method: str, canonical_uri: str, params: dict[str, str], host: str) -> str:
    return "\n".join(
        [
            method,
            canonical_uri,
            canonical_query_string(params),
            f"host:{host}\n",
            "host",
            UNSIGNED_PAYLOAD,
        ]
    )


def build_string_to_sign(amz_date: str, credential_scope: str, canonical_request: str) -> str:
    digest = hashlib.sha256(canonical_request.encode("utf-8")).hexdigest()
    return "\n".join([ALGORITHM, amz_date, credential_scope, digest])


def compute_signature(
    secret_access_key: str,
    amz_date: str,
    credential_scope: str,
    canonical_request: str,
) -> str:
    datestamp, region = credential_scope.split("/")[:2]
    signing_key = derive_signing_key(secret_access_key, datestamp, region)
    string_to_sign = build_string_to_sign(amz_date, credential_scope, canonical_request)
    return hmac.new(signing_key, string_to_sign.encode("utf-8"), hashlib.sha256).hexdigest()


def object_location(
    endpoint_url: str,
    bucket: str,
    key: str,
    addressing_style: str = "path",
) -> tuple[str, str, str]:
    """Return ``(scheme, host, canonical_uri)`` for an object."""
    parts = urlsplit(endpoint_url)
    if parts.scheme not in {"http", "https"} or not parts.netloc:
        raise ValueError(f"Object store endpoint is not an absolute URL: {endpoint_url!r}")
    encoded_key = _uri_encode(key.lstrip("/"), safe="-_.~/")
    if addressing_style == "virtual":
        return parts.scheme, f"{bucket}.{parts.netloc}", f"/{encoded_key}"
    return parts.scheme, parts.netloc, f"/{bucket}/{encoded_key}"


def presign_url(
    *,
    endpoint_url: str,
    bucket: str,
    key: str,
    region: str,
    access_key_id: str,
    secret_access_key: str,
    expires_in: int,
    issued_at: datetime,
    addressing_style: str = "path",
    method: str = "GET",
) -> str:
    """Build a SigV4 presigned URL for one object."""
    if not access_key_id or not secret_access_key:
        raise ValueError("Object store credentials are required for presigning")
    if expires_in < 1:
        raise ValueError("Presigned URL lifetime must be positive")

    scheme, host, canonical_uri = object_location(endpoint_url, bucket, key, addressing_style)
    issued = issued_at.astimezone(timezone.utc)
    amz_date = issued.strftime(AMZ_DATE_FORMAT)
    credential_scope = f"{issued.strftime('%Y%m%d')}/{region}/{SERVICE}/aws4_request"

    params = {
        "X-Amz-Algorithm": ALGORITHM,
        "X-Amz-Credential": f"{access_key_id}/{credential_scope}",
        "X-Amz-Date": amz_date,
        "X-Amz-Expires": str(expires_in),
        "X-Amz-SignedHeaders": "host",
    }
    canonical_request = build_canonical_request(method, canonical_uri, params, host)
    signature = compute_signature(secret_access_key, amz_date, credential_scope, canonical_request)

    query = canonical_query_string(params)
    return f"{scheme}://{host}{canonical_uri}?{query}&X-Amz-Signature={signature}"


def parse_presigned_url(url: str) -> PresignedUrlParts:
    """Recover signature parameters from a presigned URL.

    Raises:
        ValueError: If the URL is not a well-formed SigV4 presigned URL.
    """
    parts = urlsplit(url)
    if parts.scheme not in {"http", "https"}:
        raise ValueError(f"Unsupported scheme: {parts.scheme!r}")
    if not parts.netloc:
        raise ValueError("Presigned URL has no host")

    params = dict(parse_qsl(parts.query, keep_blank_values=True))
    missing = [name for name in REQUIRED_QUERY_PARAMS if not params.get(name)]
    if missing:
        raise ValueError(f"Presigned URL missing query parameters: {', '.join(missing)}")
    if params["X-Amz-Algorithm"] != ALGORITHM:
        raise ValueError(f"Unsupported signing algorithm: {params['X-Amz-Algorithm']}")
    # <access key>/<date>/<region>/<service>/aws4_request
    credential = params["X-Amz-Credential"].split("/")
    if len(credential) != 5 or not all(credential) or credential[-1] != "aws4_request":
        raise ValueError("Malformed X-Amz-Credential")

    issued_at = datetime.strptime(params["X-Amz-Date"], AMZ_DATE_FORMAT).replace(tzinfo=timezone.utc)
    expires_in = int(params["X-Amz-Expires"])
    signature = params.pop("X-Amz-Signature")

    return PresignedUrlParts(
        scheme=parts.scheme,
        host=parts.netloc,
        canonical_uri=parts.path or "/",
        params=params,
        signature=signature,
        issued_at=issued_at,
        expires_in=expires_in,
    )


def verify_presigned_url(
    url: str,
    secret_access_key: str,
    now: datetime | None = None,
    method: str = "GET",
) -> bool:
    """Recompute the signature embedded in ``url`` and check it is unexpired."""
    try:
        parts = parse_presigned_url(url)
    except ValueError:
        return False

    canonical_request = build_canonical_request(method, parts.canonical_uri, parts.params, parts.host)
    expected = compute_signature(
        secret_access_key,
        parts.params["X-Amz-Date"],
        parts.credential_scope,
        canonical_request,
    )
    if not hmac.compare_digest(expected, parts.signature):
        return False
    if now is not None and not (parts.issued_at <= now <= parts.expires_at):
        return False
    return True
