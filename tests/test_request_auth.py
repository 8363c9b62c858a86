"""
Tests for SigV4 request signing.
"""

from datetime import datetime, timezone

import pytest
from botocore.auth import SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials as BotoCredentials

from analytics_pipeline.utils.config import SQSConfig
from analytics_pipeline.utils.request_auth import (Credentials, HttpRequest, SignedHeaders, SigningError,
                                                   SigV4Authenticator, Unconfigured)

EXAMPLE_KEY_ID = 'AKIDEXAMPLE'
EXAMPLE_SECRET = 'wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY'
QUEUE_URL = 'https://sqs.eu-west-1.amazonaws.com/123456789012/analytics.fifo'
FORM_BODY = b'Action=SendMessage&Version=2012-11-05&MessageBody=%7B%7D&MessageGroupId=analytics'


def sqs_config(**overrides):
    values = dict(queue_url=QUEUE_URL, region='eu-west-1', access_key_id=EXAMPLE_KEY_ID,
                  secret_access_key=EXAMPLE_SECRET, session_token=None, request_timeout=5.0,
                  group_strategy='static', max_workers=1)
    values.update(overrides)
    return SQSConfig(**values)


def botocore_authorization(request: HttpRequest, amz_date: str, region: str, service: str) -> str:
    """Authorization header computed independently by botocore's signer."""
    headers = {'X-Amz-Date': amz_date}
    if request.content_type:
        headers['Content-Type'] = request.content_type
    aws_request = AWSRequest(method=request.method, url=request.url, data=request.body or None, headers=headers)
    aws_request.context['timestamp'] = amz_date

    signer = SigV4Auth(BotoCredentials(EXAMPLE_KEY_ID, EXAMPLE_SECRET), service, region)
    canonical_request = signer.canonical_request(aws_request)
    signature = signer.signature(signer.string_to_sign(aws_request, canonical_request), aws_request)
    signed_headers = signer.signed_headers(signer.headers_to_sign(aws_request))
    return (f'AWS4-HMAC-SHA256 Credential={EXAMPLE_KEY_ID}/{signer.credential_scope(aws_request)}, '
            f'SignedHeaders={signed_headers}, Signature={signature}')


class TestGoldenVectors:
    """Published SigV4 test vectors."""

    def test_get_vanilla(self):
        """AWS SigV4 test suite case 'get-vanilla'."""
        authenticator = SigV4Authenticator(Credentials(EXAMPLE_KEY_ID, EXAMPLE_SECRET), 'us-east-1', 'service')
        request = HttpRequest(method='GET', url='https://example.amazonaws.com/')

        result = authenticator.sign(request, datetime(2015, 8, 30, 12, 36, 0, tzinfo=timezone.utc))

        assert result.authorization == (
            'AWS4-HMAC-SHA256 Credential=AKIDEXAMPLE/20150830/us-east-1/service/aws4_request, '
            'SignedHeaders=host;x-amz-date, '
            'Signature=5fa00fa31553b73ebf1942676e86291e8372ff2a2260956d9b8aae1d763fbf31')
        assert result.headers['X-Amz-Date'] == '20150830T123600Z'

    def test_signing_key_derivation(self):
        """Documented key derivation example (20120215/us-east-1/iam)."""
        authenticator = SigV4Authenticator(Credentials(EXAMPLE_KEY_ID, EXAMPLE_SECRET), 'us-east-1', 'iam')

        key = authenticator.signing_key('20120215')

        assert key.hex() == 'f4780e2d9f65fa895f9c67b32ce1baf0b0d8a43505a000a1a9e090d414db404d'


class TestSigV4Authenticator:
    """Signing SQS requests."""

    @pytest.fixture
    def authenticator(self):
        return SigV4Authenticator.from_config(sqs_config())

    @pytest.fixture
    def request_(self):
        return HttpRequest(method='POST', url=QUEUE_URL, body=FORM_BODY,
                           content_type='application/x-www-form-urlencoded')

    def test_signature_is_deterministic(self, authenticator, request_):
        moment = datetime(2024, 2, 14, 10, 0, 0, tzinfo=timezone.utc)

        first = authenticator.sign(request_, moment)
        second = authenticator.sign(request_, moment)

        assert first == second

    def test_matches_botocore_signer(self, authenticator, request_):
        moment = datetime(2024, 2, 14, 10, 0, 0, tzinfo=timezone.utc)

        result = authenticator.sign(request_, moment)

        assert result.authorization == botocore_authorization(request_, '20240214T100000Z', 'eu-west-1', 'sqs')

    def test_query_string_matches_botocore_signer(self, authenticator):
        request = HttpRequest(method='GET', url='https://sqs.eu-west-1.amazonaws.com/?Param2=value2&Param1=value1')
        moment = datetime(2024, 2, 14, 10, 0, 0, tzinfo=timezone.utc)

        result = authenticator.sign(request, moment)

        assert result.authorization == botocore_authorization(request, '20240214T100000Z', 'eu-west-1', 'sqs')

    def test_canonical_request_layout(self, authenticator, request_):
        canonical, signed_headers = authenticator.canonical_request(request_, '20240214T100000Z')

        lines = canonical.split('\n')
        assert lines[0] == 'POST'
        assert lines[1] == '/123456789012/analytics.fifo'
        assert lines[2] == ''
        assert lines[3:6] == ['content-type:application/x-www-form-urlencoded',
                              'host:sqs.eu-west-1.amazonaws.com',
                              'x-amz-date:20240214T100000Z']
        assert lines[6] == ''
        assert signed_headers == 'content-type;host;x-amz-date'

    def test_signature_changes_with_timestamp(self, authenticator, request_):
        first = authenticator.sign(request_, datetime(2024, 2, 14, 10, 0, 0, tzinfo=timezone.utc))
        second = authenticator.sign(request_, datetime(2024, 2, 14, 10, 0, 1, tzinfo=timezone.utc))

        assert first.authorization != second.authorization

    def test_headers_to_send(self, authenticator, request_):
        result = authenticator.sign(request_, datetime(2024, 2, 14, 10, 0, 0, tzinfo=timezone.utc))

        assert isinstance(result, SignedHeaders)
        assert result.headers['Host'] == 'sqs.eu-west-1.amazonaws.com'
        assert result.headers['Content-Type'] == 'application/x-www-form-urlencoded'
        assert 'X-Amz-Security-Token' not in result.headers

    def test_session_token_is_signed(self, request_):
        authenticator = SigV4Authenticator.from_config(sqs_config(session_token='token-123'))

        result = authenticator.sign(request_, datetime(2024, 2, 14, 10, 0, 0, tzinfo=timezone.utc))

        assert result.headers['X-Amz-Security-Token'] == 'token-123'
        assert 'SignedHeaders=content-type;host;x-amz-date;x-amz-security-token' in result.authorization

    def test_naive_timestamp_treated_as_utc(self, authenticator, request_):
        aware = authenticator.sign(request_, datetime(2024, 2, 14, 10, 0, 0, tzinfo=timezone.utc))
        naive = authenticator.sign(request_, datetime(2024, 2, 14, 10, 0, 0))

        assert aware == naive

    def test_url_without_host_raises(self, authenticator):
        with pytest.raises(SigningError):
            authenticator.sign(HttpRequest(method='POST', url='/no/host'))


class TestUnconfigured:
    """Missing credentials are a result, not an exception."""

    @pytest.mark.parametrize('overrides', [
        {'secret_access_key': None},
        {'access_key_id': None},
        {'access_key_id': None, 'secret_access_key': None},
    ])
    def test_missing_credentials(self, overrides):
        authenticator = SigV4Authenticator.from_config(sqs_config(**overrides))

        result = authenticator.sign(HttpRequest(method='POST', url=QUEUE_URL))

        assert isinstance(result, Unconfigured)
        assert not authenticator.is_configured

    def test_empty_secret(self):
        authenticator = SigV4Authenticator(Credentials(EXAMPLE_KEY_ID, ''), 'us-east-1')

        assert isinstance(authenticator.sign(HttpRequest(method='POST', url=QUEUE_URL)), Unconfigured)
