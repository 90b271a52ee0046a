import re
import unicodedata

_NON_WORD = re.compile(r"[\W_]+")


def _fold(char: str) -> str:
    """Drop the accent of a Latin letter; leave every other character alone."""
    base = "".join(c for c in unicodedata.normalize("NFKD", char) if not unicodedata.combining(c))
    return base if base.isascii() else char


def slugify(value: str, max_length: int = 200) -> str:
    """
    Build a URL slug from free text.

    Accented Latin letters are folded to ASCII, other scripts are kept, runs
    of anything else become a single hyphen and leading/trailing hyphens are
    removed.

    Example:
        >>> slugify("How do I reset my VPN password?")
        'how-do-i-reset-my-vpn-password'
        >>> slugify("如何重置密码")
        '如何重置密码'
    """
    folded = "".join(_fold(c) for c in unicodedata.normalize("NFC", value))
    slug = _NON_WORD.sub("-", folded.lower()).strip("-")
    if len(slug) > max_length:
        slug = slug[:max_length].rstrip("-")
    if not slug:
        raise ValueError(f"Cannot build a slug from '{value}'")
    return slug
