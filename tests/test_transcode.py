import io

from PIL import Image

from website_mirror.transcode import convert, detect_image_format


def encode(img: Image.Image, fmt: str) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def half_transparent_png() -> bytes:
    img = Image.new("RGBA", (16, 16), (255, 0, 0, 255))
    for x in range(8):
        for y in range(16):
            img.putpixel((x, y), (0, 0, 0, 0))
    return encode(img, "PNG")


def test_png_with_alpha_keeps_transparency():
    result = convert(half_transparent_png())

    assert result.converted
    assert result.output_format == "webp"
    assert result.has_alpha
    with Image.open(io.BytesIO(result.data)) as out:
        assert out.format == "WEBP"
        out = out.convert("RGBA")
        assert out.getpixel((2, 8))[3] == 0
        assert out.getpixel((12, 8))[3] == 255


def test_jpeg_is_converted_without_alpha():
    data = encode(Image.new("RGB", (8, 8), (10, 200, 30)), "JPEG")
    assert detect_image_format(data) == "jpg"

    result = convert(data)

    assert result.converted
    assert not result.has_alpha
    with Image.open(io.BytesIO(result.data)) as out:
        assert out.format == "WEBP"


def test_webp_input_passes_through():
    data = encode(Image.new("RGB", (4, 4)), "WEBP")
    result = convert(data)
    assert not result.converted
    assert result.data == data
    assert result.output_format == "webp"


def test_gif_passes_through():
    data = encode(Image.new("P", (4, 4)), "GIF")
    result = convert(data)
    assert not result.converted
    assert result.data == data


def test_corrupt_png_passes_through():
    data = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32
    result = convert(data)
    assert not result.converted
    assert result.data == data


def test_non_image_passes_through():
    result = convert(b"plain text, not an image")
    assert not result.converted
    assert result.output_format is None
