"""Short-lived attendance token signing and validation."""
import base64
import hashlib
import hmac
import io
import json
import re
import secrets
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta
from typing import Any, Dict, Union
from urllib.parse import parse_qs, urlencode, urlsplit

import qrcode

_EPOCH = datetime(1970, 1, 1)
_HEX_NONCE = re.compile(r'^[0-9a-f]{32}$')
_HEX_SIGNATURE = re.compile(r'^[0-9a-f]{64}$')
REQUIRED_FIELDS = ('session_id', 'issued_at', 'nonce', 'expires_at', 'signature')


def to_millis(moment: datetime) -> int:
    """Milliseconds since the epoch, computed without float rounding."""
    return (moment - _EPOCH) // timedelta(milliseconds=1)


def from_millis(millis: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=millis)


class TokenRejected(Exception):
    """Base class for codec-level rejections."""
    reason = 'rejected'


class TokenMalformed(TokenRejected):
    reason = 'malformed'


class TokenExpired(TokenRejected):
    reason = 'expired'


class TokenSignatureMismatch(TokenRejected):
    reason = 'bad_signature'


@dataclass(frozen=True)
class Token:
    """Signed capability for one attendance redemption in one session."""

    session_id: int
    issued_at: int
    nonce: str
    expires_at: int
    signature: str

    @property
    def issued_at_datetime(self) -> datetime:
        return from_millis(self.issued_at)

    @property
    def expires_at_datetime(self) -> datetime:
        return from_millis(self.expires_at)

    def seconds_remaining(self, now: datetime) -> int:
        return max(0, (self.expires_at - to_millis(now)) // 1000)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_string(self) -> str:
        return json.dumps(self.to_dict(), separators=(',', ':'))


def _require_int(data: Dict[str, Any], field: str) -> int:
    value = data[field]
    # bool is an int subclass, reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise TokenMalformed(f'Invalid {field}')
    return value


def _require_hex(data: Dict[str, Any], field: str, pattern) -> str:
    value = data[field]
    if not isinstance(value, str) or not pattern.match(value):
        raise TokenMalformed(f'Invalid {field}')
    return value


def parse_token(raw: Union[str, Dict[str, Any]]) -> Token:
    """Parse a token string, a scan URL carrying one, or an already-decoded dict."""
    if isinstance(raw, dict):
        data = raw
    else:
        if not isinstance(raw, str) or not raw.strip():
            raise TokenMalformed('Empty token')
        text = raw.strip()
        if not text.startswith('{'):
            values = parse_qs(urlsplit(text).query).get('data')
            if not values:
                raise TokenMalformed('No token data in scan URL')
            text = values[0]
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise TokenMalformed('Token is not valid JSON') from e

    if not isinstance(data, dict):
        raise TokenMalformed('Token must be an object')

    missing = [field for field in REQUIRED_FIELDS if field not in data]
    if missing:
        raise TokenMalformed(f"Missing field: {', '.join(missing)}")

    return Token(
        session_id=_require_int(data, 'session_id'),
        issued_at=_require_int(data, 'issued_at'),
        nonce=_require_hex(data, 'nonce', _HEX_NONCE),
        expires_at=_require_int(data, 'expires_at'),
        signature=_require_hex(data, 'signature', _HEX_SIGNATURE)
    )


class TokenCodec:
    """Issues and verifies HMAC-SHA256 signed attendance tokens.

    The signature covers session id, issue time, nonce and expiry together,
    so none of them can be edited without invalidating the token. Expiry is
    still checked twice: against the signed ``expires_at`` and against
    ``issued_at`` plus the configured window.
    """

    def __init__(self, secret_key: str, window_seconds: int = 30):
        if not secret_key:
            raise ValueError('secret_key is required')
        if window_seconds <= 0:
            raise ValueError('window_seconds must be positive')
        self._key = secret_key.encode('utf-8')
        self.window = timedelta(seconds=window_seconds)
        self._window_ms = window_seconds * 1000

    def _sign(self, session_id: int, issued_at: int, nonce: str, expires_at: int) -> str:
        data = f"{session_id}-{issued_at}-{nonce}-{expires_at}"
        return hmac.new(self._key, data.encode('utf-8'), hashlib.sha256).hexdigest()

    def issue(self, session_id: int, now: datetime) -> Token:
        issued_at = to_millis(now)
        expires_at = issued_at + self._window_ms
        nonce = secrets.token_hex(16)
        return Token(
            session_id=session_id,
            issued_at=issued_at,
            nonce=nonce,
            expires_at=expires_at,
            signature=self._sign(session_id, issued_at, nonce, expires_at)
        )

    def verify(self, token: Token, now: datetime) -> int:
        """Return the token's session id or raise a ``TokenRejected`` subclass."""
        expected = self._sign(token.session_id, token.issued_at, token.nonce, token.expires_at)
        if not hmac.compare_digest(expected, token.signature):
            raise TokenSignatureMismatch('Signature does not match')

        now_ms = to_millis(now)
        if now_ms > token.expires_at:
            raise TokenExpired('Token has expired')
        if now_ms - token.issued_at > self._window_ms:
            raise TokenExpired('Token is older than the validity window')

        return token.session_id


def build_scan_url(token: Token, base_url: str) -> str:
    """URL students open by scanning the QR code."""
    return f"{base_url.rstrip('/')}/student/scan?{urlencode({'data': token.to_string()})}"


def render_qr_image(content: str) -> str:
    """Render content as a base64 PNG data URI."""
    qr = qrcode.QRCode(
        version=None,  # Auto-determine size
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=1,
    )
    qr.add_data(content)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffered = io.BytesIO()
    img.save(buffered, format="PNG")
    img_str = base64.b64encode(buffered.getvalue()).decode()

    return f"data:image/png;base64,{img_str}"
