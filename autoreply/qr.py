"""QR challenge rendering for the status page."""
from __future__ import annotations

import base64
import io
from functools import lru_cache

import qrcode


@lru_cache(maxsize=4)
def render_qr_png(payload: str) -> bytes:
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="#000000", back_color="#FFFFFF")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def qr_data_url(payload: str) -> str:
    """Render payload as an inline ``data:image/png;base64,...`` URL."""
    encoded = base64.b64encode(render_qr_png(payload)).decode("ascii")
    return f"data:image/png;base64,{encoded}"
