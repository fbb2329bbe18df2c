"""Whitespace-insensitive content comparison.

Reformatting a shell file (trailing newlines, re-indentation) should not raise a
sync prompt, so content is compared with every ASCII whitespace byte removed.
"""


def strip_whitespace(data: bytes) -> bytes:
    """Returns `data` with all ASCII whitespace bytes removed."""
    return b"".join(data.split())


def is_significantly_different(a: bytes, b: bytes) -> bool:
    """Determines whether two contents differ beyond whitespace.

    Args:
        a (bytes): First content.
        b (bytes): Second content.

    Returns:
        bool: False if the contents are byte-identical or identical once all
        whitespace is removed, True otherwise.
    """
    if a == b:
        return False
    return strip_whitespace(a) != strip_whitespace(b)
