import base64
import binascii

from colloquy.errors import ValidationError

DEFAULT_IMAGE_MIME = "image/jpeg"


def encode_data_uri(data: bytes, mime_type: str = DEFAULT_IMAGE_MIME) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def decode_data_uri(uri: str) -> tuple[str | None, bytes]:
    """Split ``data:<mime>;base64,<payload>`` into (mime, bytes).

    A bare base64 string without the ``data:`` header is accepted too.
    """
    mime_type = None
    payload = uri
    if uri.startswith("data:"):
        header, sep, payload = uri.partition(",")
        if not sep:
            raise ValidationError("Malformed data URI: missing ',' separator")
        mime_type = header[len("data:"):].split(";", 1)[0] or None
    try:
        return mime_type, base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Malformed base64 payload: {e}") from e
