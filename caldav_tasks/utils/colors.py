"""Colour helpers for tags."""

TAG_PALETTE = [
    "#ef4444",  # red
    "#f97316",  # orange
    "#eab308",  # yellow
    "#22c55e",  # green
    "#14b8a6",  # teal
    "#3b82f6",  # blue
    "#8b5cf6",  # violet
    "#ec4899",  # pink
]


def _string_hash(value: str) -> int:
    """32-bit ``h * 31 + c`` string hash, stable across processes."""
    h = 0
    for char in value:
        h = ((h << 5) - h + ord(char)) & 0xFFFFFFFF
    return h - (1 << 32) if h & 0x80000000 else h


def generate_tag_color(name: str) -> str:
    """Pick a palette colour deterministically from a tag name."""
    return TAG_PALETTE[abs(_string_hash(name)) % len(TAG_PALETTE)]


def contrast_text_color(hex_color: str) -> str:
    """Black or white, whichever reads better on ``hex_color``."""
    if not hex_color or not hex_color.startswith("#") or len(hex_color) < 7:
        return "#ffffff"
    try:
        r = int(hex_color[1:3], 16)
        g = int(hex_color[3:5], 16)
        b = int(hex_color[5:7], 16)
    except ValueError:
        return "#ffffff"
    luminance = (0.299 * r + 0.587 * g + 0.114 * b) / 255
    return "#000000" if luminance > 0.5 else "#ffffff"
