"""Encoding of raw pairing payloads into displayable artifacts."""

import base64
import io

import qrcode

DATA_URL_PREFIX = "data:image/png;base64,"


def encode_pairing_artifact(payload: str) -> str:
    """
    Render a raw pairing payload as a QR PNG data URL.

    CPU-bound; callers on the event loop run it with ``asyncio.to_thread``.

    Args:
        payload: Raw pairing string emitted by the transport

    Returns:
        ``data:image/png;base64,...`` URL

    Raises:
        ValueError: If the payload is empty
    """
    if not payload:
        raise ValueError("Pairing payload must not be empty")

    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=4,
    )
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="#000000", back_color="#FFFFFF").convert("RGB")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return DATA_URL_PREFIX + base64.b64encode(buf.getvalue()).decode("ascii")
