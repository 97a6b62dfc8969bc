import qrcode
import qrcode.image.svg


def request_uri(scheme: str, host: str, qr_store_path: str, qr_id: str) -> str:
    """Indirection URL a wallet scans; the full request is fetched from the QR store."""
    return f"{scheme}://?request_uri={host}{qr_store_path}?id={qr_id}"


def make_qr_svg_bytes(payload: str) -> bytes:
    img = qrcode.make(payload, image_factory=qrcode.image.svg.SvgPathImage)
    return img.to_string()
