import re

WORD_RE = re.compile(r"[^\W_]+")


def trigrams(text: str) -> set[str]:
    """Trigram set as built by pg_trgm: each word padded with two leading and one trailing blank."""
    grams: set[str] = set()
    for word in WORD_RE.findall((text or "").lower()):
        padded = f"  {word} "
        for idx in range(len(padded) - 2):
            grams.add(padded[idx : idx + 3])
    return grams


def similarity(left: str, right: str) -> float:
    left_grams = trigrams(left)
    right_grams = trigrams(right)
    if not left_grams or not right_grams:
        return 0.0
    shared = len(left_grams & right_grams)
    return shared / float(len(left_grams | right_grams))
