import io

from PIL import Image


# ------------------------------------------------------------------
# Raster assets
# ------------------------------------------------------------------

def png_bytes(width: int = 8, height: int = 6, color=(200, 30, 30), mode: str = "RGB") -> bytes:
    buffer = io.BytesIO()
    Image.new(mode, (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def jpeg_bytes(width: int = 8, height: int = 6, *, progressive: bool = False) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), (20, 120, 220)).save(
        buffer, format="JPEG", quality=90, progressive=progressive
    )
    return buffer.getvalue()


def animated_gif_bytes(width: int = 8, height: int = 6) -> bytes:
    """Two-frame GIF; only the first frame survives normalization."""
    frames = [
        Image.new("P", (width, height), 1),
        Image.new("P", (width, height), 2),
    ]
    buffer = io.BytesIO()
    frames[0].save(
        buffer,
        format="GIF",
        save_all=True,
        append_images=frames[1:],
        duration=100,
        loop=0,
    )
    return buffer.getvalue()


def png_size(data: bytes):
    with Image.open(io.BytesIO(data)) as img:
        return img.format, img.size
