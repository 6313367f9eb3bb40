"""
Thumbnail utility: downscaled PNG previews for generated images.
"""
import io

from PIL import Image, UnidentifiedImageError

THUMBNAIL_SIZE = (256, 256)


def make_thumbnail(content: bytes, size: tuple[int, int] = THUMBNAIL_SIZE) -> bytes:
    """
    Fit the image into `size` keeping the aspect ratio and return PNG bytes.
    Raises ValueError when the content is not a readable image.
    """
    try:
        img = Image.open(io.BytesIO(content))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError("Generated content is not a valid image") from e

    if img.mode not in ("RGB", "RGBA"):
        img = img.convert("RGBA")
    img.thumbnail(size, Image.LANCZOS)

    out = io.BytesIO()
    img.save(out, "PNG")
    return out.getvalue()
