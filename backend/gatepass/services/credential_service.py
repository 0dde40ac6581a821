"""
Credential codec: the token printed into a vendor's QR pass.

TOKEN FORMAT
============

  {user_id}-{event_id}-{vehicle_id}-{timestamp_ms}[.{signature}]

The body binds vendor, event and vehicle; the millisecond timestamp keeps
two passes for the same triple distinct when a vendor pays twice before the
first registration lands.

Signing:
  A bare concatenation is trivially forgeable: anyone who can guess ids and
  a plausible timestamp can print a well-formed pass, and only the store
  lookup rejects it. With signing enabled the body is suffixed with a
  truncated HMAC-SHA256 under CREDENTIAL_SECRET, so the gate can reject a
  forged pass before touching the database.

  Passes issued before signing existed carry no suffix. They are accepted
  (and then matched exactly against the store) only while
  CREDENTIAL_REQUIRE_SIGNATURE is false.

Rendering uses `qrcode`; decoding is normally done by the scanning device,
decode_credential_image exists for tooling and tests and needs OpenCV.
"""

import base64
import hashlib
import hmac
import io
import re
import time
from dataclasses import dataclass
from typing import Optional, Union

import qrcode
from qrcode.exceptions import DataOverflowError

from gatepass.core.config import get_settings
from gatepass.core.exceptions import CredentialForged, EncodingError, MalformedCredential

SIGNATURE_LENGTH = 32
MAX_CREDENTIAL_LENGTH = 512

_CREDENTIAL_RE = re.compile(
    r"^(?P<user>\d+)-(?P<event>\d+)-(?P<vehicle>\d+)-(?P<ts>\d+)"
    r"(?:\.(?P<sig>[0-9a-f]{%d}))?$" % SIGNATURE_LENGTH
)


@dataclass(frozen=True)
class CredentialParts:
    user_id: int
    event_id: int
    vehicle_id: int
    timestamp_ms: int
    signature: Optional[str] = None

    @property
    def body(self) -> str:
        return f"{self.user_id}-{self.event_id}-{self.vehicle_id}-{self.timestamp_ms}"


def now_ms() -> int:
    return int(time.time() * 1000)


def _sign(body: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), body.encode(), hashlib.sha256).hexdigest()
    return digest[:SIGNATURE_LENGTH]


def mint_credential(
    user_id: int,
    event_id: int,
    vehicle_id: int,
    timestamp_ms: int,
    *,
    sign: Optional[bool] = None,
    secret: Optional[str] = None,
) -> str:
    """Compose a credential. Pure: same inputs, same token."""
    settings = get_settings()
    if sign is None:
        sign = settings.CREDENTIAL_SIGNING_ENABLED

    body = f"{user_id}-{event_id}-{vehicle_id}-{timestamp_ms}"
    if not sign:
        return body
    return f"{body}.{_sign(body, secret or settings.CREDENTIAL_SECRET)}"


def parse_credential(token: str) -> CredentialParts:
    """Split a credential into its fields. Does not check the signature."""
    match = _CREDENTIAL_RE.match(token.strip()) if token else None
    if not match:
        raise MalformedCredential()
    return CredentialParts(
        user_id=int(match.group("user")),
        event_id=int(match.group("event")),
        vehicle_id=int(match.group("vehicle")),
        timestamp_ms=int(match.group("ts")),
        signature=match.group("sig"),
    )


def verify_credential(
    token: str,
    *,
    require_signature: Optional[bool] = None,
    secret: Optional[str] = None,
) -> CredentialParts:
    """
    Parse and authenticate a scanned credential.

    Raises MalformedCredential for strings that are not credentials at all
    and CredentialForged for well-formed ones that fail the signature check.
    """
    settings = get_settings()
    if require_signature is None:
        require_signature = settings.CREDENTIAL_REQUIRE_SIGNATURE

    parts = parse_credential(token)
    if parts.signature is None:
        if require_signature:
            raise CredentialForged("Credential is unsigned")
        return parts

    expected = _sign(parts.body, secret or settings.CREDENTIAL_SECRET)
    if not hmac.compare_digest(expected, parts.signature):
        raise CredentialForged()
    return parts


def render_credential(token: str) -> bytes:
    """Encode a credential as a PNG QR code."""
    if not token or len(token) > MAX_CREDENTIAL_LENGTH:
        raise EncodingError(f"Credential length {len(token or '')} is outside 1..{MAX_CREDENTIAL_LENGTH}")

    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    try:
        qr.add_data(token)
        qr.make(fit=True)
    except (DataOverflowError, ValueError) as e:
        raise EncodingError(str(e)) from e

    buffer = io.BytesIO()
    qr.make_image(fill_color="black", back_color="white").save(buffer, format="PNG")
    return buffer.getvalue()


def render_credential_data_url(token: str) -> str:
    png = render_credential(token)
    return "data:image/png;base64," + base64.b64encode(png).decode("ascii")


def decode_credential_image(image: Union[bytes, str]) -> str:
    """
    Read a credential back out of a QR image (PNG/JPEG bytes or a data URL).

    Requires the `scanner` extra (opencv-python-headless).
    """
    import cv2
    import numpy as np

    if isinstance(image, str) and image.startswith("data:"):
        image = base64.b64decode(image.split(",", 1)[1])

    pixels = cv2.imdecode(np.frombuffer(image, dtype=np.uint8), cv2.IMREAD_GRAYSCALE)
    if pixels is None:
        raise MalformedCredential("Image could not be decoded")

    # The classic detector misses some valid codes; the ArUco-based one and
    # a 2x upscale recover them
    detectors = (cv2.QRCodeDetector(), cv2.QRCodeDetectorAruco())
    upscaled = cv2.resize(pixels, None, fx=2, fy=2, interpolation=cv2.INTER_NEAREST)
    for candidate in (pixels, upscaled):
        for detector in detectors:
            data, _points, _ = detector.detectAndDecode(candidate)
            if data:
                return data
    raise MalformedCredential("No QR code found in image")
