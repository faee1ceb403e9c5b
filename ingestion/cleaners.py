import re

# ASCII word characters, whitespace and the punctuation a plain-text rendering keeps.
_DISALLOWED = re.compile(r"""[^\w\s.,!?;:()\[\]{}'"@#$%^&*+=\-_<>/\\|`~]""", re.ASCII)
_HORIZONTAL_WS = re.compile(r"[^\S\n]+")


def normalize_text(s: str) -> str:
    s = s.replace("\r\n", "\n").replace("\r", "\n")
    s = _DISALLOWED.sub("", s)
    s = _HORIZONTAL_WS.sub(" ", s)
    s = re.sub(r" *\n *", "\n", s)
    s = re.sub(r"\n{3,}", "\n\n", s)
    return s.strip()


def is_meaningful_fragment(s: str, min_length: int = 2) -> bool:
    """Kerning and positioning noise is short or carries no letters."""
    s = s.strip()
    return len(s) >= min_length and re.search(r"[A-Za-z]", s) is not None
