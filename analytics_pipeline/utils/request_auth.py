"""
Request signing for queue delivery without a vendor SDK.

``SigV4Authenticator`` implements AWS Signature Version 4 for plain HTTP
requests: canonical request, string to sign, chained HMAC-SHA256 key
derivation and the final signature. Missing credentials are reported as an
``Unconfigured`` result rather than an exception so callers can skip delivery.
"""

import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple, Union
from urllib.parse import parse_qsl, quote, urlsplit

from .config import SQSConfig
from .timestamp_utils import to_amz_date

ALGORITHM = 'AWS4-HMAC-SHA256'
SCOPE_TERMINATOR = 'aws4_request'
KEY_PREFIX = 'AWS4'
DEFAULT_PORTS = {'http': 80, 'https': 443}


class SigningError(Exception):
    """Custom exception for request signing errors."""
    pass


@dataclass(frozen=True)
class Credentials:
    """Static AWS credentials used to sign requests."""
    access_key_id: str
    secret_access_key: str
    session_token: Optional[str] = None


@dataclass(frozen=True)
class HttpRequest:
    """Description of an outbound HTTP request to be signed."""
    method: str
    url: str
    body: bytes = b''
    content_type: Optional[str] = None


@dataclass(frozen=True)
class SignedHeaders:
    """Headers to send with the request so the receiving service accepts it."""
    headers: Dict[str, str]

    @property
    def authorization(self) -> str:
        return self.headers['Authorization']


@dataclass(frozen=True)
class Unconfigured:
    """Signing was not possible because credentials are missing."""
    reason: str


SigningResult = Union[SignedHeaders, Unconfigured]


class RequestAuthenticator(ABC):
    """Signs outbound requests for one queue backend."""

    @abstractmethod
    def sign(self, request: HttpRequest, timestamp: Optional[datetime] = None) -> SigningResult:
        """
        Produce the authentication headers for a request.

        Args:
            request: Request to sign
            timestamp: Signing time in UTC (uses current time if None)

        Returns:
            SignedHeaders, or Unconfigured when no credentials are available

        Raises:
            SigningError: If the request cannot be canonicalized
        """


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hmac_sha256(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode('utf-8'), hashlib.sha256).digest()


class SigV4Authenticator(RequestAuthenticator):
    """AWS Signature Version 4 authenticator."""

    def __init__(self, credentials: Optional[Credentials], region: str, service: str = 'sqs'):
        """
        Initialize the authenticator.

        Args:
            credentials: Credentials to sign with, or None when unconfigured
            region: AWS region of the receiving service
            service: Signing name of the receiving service
        """
        self.credentials = credentials
        self.region = region
        self.service = service

    @classmethod
    def from_config(cls, config: SQSConfig) -> 'SigV4Authenticator':
        credentials = None
        if config.access_key_id and config.secret_access_key:
            credentials = Credentials(access_key_id=config.access_key_id,
                                      secret_access_key=config.secret_access_key,
                                      session_token=config.session_token)
        return cls(credentials, region=config.region, service='sqs')

    @property
    def is_configured(self) -> bool:
        return bool(self.credentials and self.credentials.access_key_id and self.credentials.secret_access_key)

    def sign(self, request: HttpRequest, timestamp: Optional[datetime] = None) -> SigningResult:
        if not self.is_configured:
            return Unconfigured('missing AWS access key id or secret access key')

        amz_date = to_amz_date(timestamp)
        date_stamp = amz_date[:8]

        canonical_request, signed_headers = self.canonical_request(request, amz_date)
        string_to_sign = self.string_to_sign(canonical_request, amz_date)
        signature = self.signature(string_to_sign, date_stamp)

        authorization = (f'{ALGORITHM} Credential={self.credentials.access_key_id}/{self.credential_scope(date_stamp)}, '
                         f'SignedHeaders={signed_headers}, Signature={signature}')

        headers = {'Host': _canonical_host(request.url), 'X-Amz-Date': amz_date, 'Authorization': authorization}
        if request.content_type:
            headers['Content-Type'] = request.content_type
        if self.credentials.session_token:
            headers['X-Amz-Security-Token'] = self.credentials.session_token
        return SignedHeaders(headers)

    def canonical_request(self, request: HttpRequest, amz_date: str) -> Tuple[str, str]:
        """Build the canonical request string.

        Returns:
            Tuple of (canonical_request, signed_headers)
        """
        try:
            parts = urlsplit(request.url)
        except ValueError as e:
            raise SigningError(f'Invalid request URL {request.url!r}: {e}')
        if not parts.hostname:
            raise SigningError(f'Request URL has no host: {request.url!r}')

        header_map = {'host': _canonical_host(request.url), 'x-amz-date': amz_date}
        if request.content_type:
            header_map['content-type'] = request.content_type
        if self.credentials and self.credentials.session_token:
            header_map['x-amz-security-token'] = self.credentials.session_token

        names = sorted(header_map)
        canonical_headers = ''.join(f'{name}:{" ".join(header_map[name].split())}\n' for name in names)
        signed_headers = ';'.join(names)

        canonical = '\n'.join([
            request.method.upper(),
            _canonical_path(parts.path),
            _canonical_query(parts.query),
            canonical_headers,
            signed_headers,
            sha256_hex(request.body),
        ])
        return canonical, signed_headers

    def credential_scope(self, date_stamp: str) -> str:
        return f'{date_stamp}/{self.region}/{self.service}/{SCOPE_TERMINATOR}'

    def string_to_sign(self, canonical_request: str, amz_date: str) -> str:
        return '\n'.join([
            ALGORITHM,
            amz_date,
            self.credential_scope(amz_date[:8]),
            sha256_hex(canonical_request.encode('utf-8')),
        ])

    def signing_key(self, date_stamp: str) -> bytes:
        """Derive the request signing key: secret -> date -> region -> service -> terminator."""
        k_date = hmac_sha256((KEY_PREFIX + self.credentials.secret_access_key).encode('utf-8'), date_stamp)
        k_region = hmac_sha256(k_date, self.region)
        k_service = hmac_sha256(k_region, self.service)
        return hmac_sha256(k_service, SCOPE_TERMINATOR)

    def signature(self, string_to_sign: str, date_stamp: str) -> str:
        return hmac.new(self.signing_key(date_stamp), string_to_sign.encode('utf-8'), hashlib.sha256).hexdigest()


def _canonical_host(url: str) -> str:
    parts = urlsplit(url)
    host = parts.hostname or ''
    if parts.port and parts.port != DEFAULT_PORTS.get(parts.scheme):
        host = f'{host}:{parts.port}'
    return host


def _canonical_path(path: str) -> str:
    return quote(path or '/', safe='/~')


def _canonical_query(query: str) -> str:
    if not query:
        return ''
    pairs: List[Tuple[str, str]] = [(quote(k, safe='-_.~'), quote(v, safe='-_.~'))
                                    for k, v in parse_qsl(query, keep_blank_values=True)]
    return '&'.join(f'{k}={v}' for k, v in sorted(pairs))
