import io
import base64
import binascii
from typing import Tuple
from urllib.parse import unquote_to_bytes

from PIL import Image as PillowImage, UnidentifiedImageError

from ..models import (
    log, MAX_IMAGE_DIMENSION, JPEG_QUALITY, SUPPORTED_OUTPUT_MIMES,
    DecodeError, EncodeError, ResolvedImage, ResolverConfig
)

# Encoders we keep; anything else decodable is normalized to JPEG
PASSTHROUGH_FORMATS = {'JPEG', 'PNG', 'GIF'}

class ImageTransform:
    @staticmethod
    def transform(data: bytes, max_dimension: int = MAX_IMAGE_DIMENSION,
                  jpeg_quality: int = JPEG_QUALITY) -> Tuple[bytes, str]:
        """Decode, shrink to fit max_dimension and re-encode.

        The source format is sniffed from the bytes. Returns the encoded bytes
        and the lowercase output format ('jpeg', 'png' or 'gif').
        """
        if not data:
            raise DecodeError("No Data")
        try:
            with PillowImage.open(io.BytesIO(data)) as opened:
                source_format = opened.format
                # First frame only for animated sources
                opened.seek(0)
                opened.load()
                img = opened.copy()
        except (UnidentifiedImageError, PillowImage.DecompressionBombError, OSError, SyntaxError, ValueError, EOFError) as e:
            raise DecodeError(f"Unsupported image data: {e}") from e

        output_format = source_format if source_format in PASSTHROUGH_FORMATS else 'JPEG'

        if img.width > max_dimension or img.height > max_dimension:
            img.thumbnail((max_dimension, max_dimension), PillowImage.Resampling.BICUBIC)

        out_io = io.BytesIO()
        save_params = {}
        try:
            if output_format == 'JPEG':
                img = ImageTransform._flatten_for_jpeg(img)
                save_params["quality"] = jpeg_quality
            img.save(out_io, format=output_format, **save_params)
        except (OSError, ValueError, KeyError) as e:
            raise EncodeError(f"Failed to encode {output_format}: {e}") from e

        if source_format != output_format:
            log.debug(f"Normalized {source_format} image to {output_format}")
        return out_io.getvalue(), output_format.lower()

    @staticmethod
    def _flatten_for_jpeg(img):
        if img.mode in ('RGB', 'L', 'CMYK'):
            return img
        if img.mode in ('RGBA', 'LA', 'PA') or (img.mode == 'P' and 'transparency' in img.info):
            rgba = img.convert('RGBA')
            background = PillowImage.new("RGB", rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.getchannel('A'))
            return background
        return img.convert('RGB')

def decode_data_uri(uri: str) -> bytes:
    """Return the payload of a data: URI (base64 or percent-encoded)."""
    if not uri or not uri.startswith('data:'):
        raise DecodeError("Not a data URI")
    header, sep, payload = uri.partition(',')
    if not sep:
        raise DecodeError("invalid base64 data URL format")
    if header.endswith(';base64'):
        payload = ''.join(payload.split())
        try:
            return base64.b64decode(payload + '=' * (-len(payload) % 4))
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"failed to decode base64 data: {e}") from e
    return unquote_to_bytes(payload)

def transform_to_image(data: bytes, config: ResolverConfig) -> ResolvedImage:
    out, fmt = ImageTransform.transform(data, config.max_dimension, config.jpeg_quality)
    mime_type = f"image/{fmt}"
    if mime_type not in SUPPORTED_OUTPUT_MIMES:
        raise EncodeError(f"Unexpected output type {mime_type}")
    return ResolvedImage(data=out, mime_type=mime_type)

def process_image_data(data: bytes, config: ResolverConfig) -> str:
    """Transform raw image bytes into an inlined data URI."""
    return transform_to_image(data, config).to_data_uri()

def process_data_uri(uri: str, config: ResolverConfig) -> str:
    return process_image_data(decode_data_uri(uri), config)
