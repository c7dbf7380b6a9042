"""
Participation code QR images for the organizer dashboard.
"""
from urllib.parse import urlencode

import cv2
import numpy as np

QUIET_ZONE_MODULES = 4


def join_url(base_url: str, code: str) -> str:
    return f"{base_url.rstrip('/')}/camera/join?{urlencode({'code': code})}"


def render_qr(text: str, scale: int = 8) -> np.ndarray:
    """Encode text as a black-on-white QR matrix scaled to scale px per module"""
    encoder = cv2.QRCodeEncoder.create()
    matrix = encoder.encode(text)
    if matrix is None or matrix.size == 0:
        raise ValueError('QR encoding failed')

    if matrix.ndim == 3:
        matrix = cv2.cvtColor(matrix, cv2.COLOR_BGR2GRAY)

    matrix = np.pad(matrix, QUIET_ZONE_MODULES, mode='constant', constant_values=255)
    height, width = matrix.shape[:2]
    return cv2.resize(matrix, (width * scale, height * scale), interpolation=cv2.INTER_NEAREST)


def render_join_qr(code: str, base_url: str, scale: int = 8) -> bytes:
    """PNG bytes of the QR code phones scan to join an event"""
    image = render_qr(join_url(base_url, code), scale=scale)
    ok, buffer = cv2.imencode('.png', image)
    if not ok:
        raise ValueError('PNG encoding failed')
    return buffer.tobytes()
