from io import BytesIO

import qrcode
from qrcode.constants import ERROR_CORRECT_H


def render_qr_png(data: str, box_size: int = 10, border: int = 4) -> bytes:
    """Render ``data`` as a PNG QR code with high error correction (labels get scratched)."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=ERROR_CORRECT_H,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
