"""Deterministic placeholder images, the last-resort fallback for every tier."""

PLACEHOLDER_URL_TEMPLATE = "https://picsum.photos/seed/{seed}/600/400"


def hash_query(query: str) -> int:
    """
    Fold a string into a stable non-negative seed.

    Each UTF-16 code unit is mixed in with ``h = h * 31 + unit`` wrapped to a
    signed 32-bit integer; the absolute value is returned.

    Example:
        >>> hash_query("abc")
        96354
    """
    value = 0
    data = query.encode("utf-16-le", "surrogatepass")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        value = ((value << 5) - value + unit) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return abs(value)


def resolve_placeholder(query: str) -> str:
    """Return the placeholder image URL for a query. Pure and total."""
    return PLACEHOLDER_URL_TEMPLATE.format(seed=hash_query(query or ""))
