import re
from collections import Counter
from typing import Iterable

import nltk
from nltk.stem import PorterStemmer
from nltk.corpus import stopwords
from nltk.tokenize import word_tokenize

DEFAULT_STOPWORDS = {
    "a", "an", "and", "are", "as", "at", "be", "but", "by", "for", "if", "in", "into",
    "is", "it", "no", "not", "of", "on", "or", "such", "that", "the", "their", "then",
    "there", "these", "they", "this", "to", "was", "will", "with",
}


def _load_stopwords() -> set[str]:
    try:
        nltk.data.find("corpora/stopwords")
    except LookupError:
        try:
            nltk.download("stopwords", quiet=True)
        except Exception:
            return DEFAULT_STOPWORDS

    try:
        return set(stopwords.words("english"))
    except LookupError:
        return DEFAULT_STOPWORDS


def _safe_word_tokenize(text: str) -> list[str]:
    try:
        return word_tokenize(text.lower())
    except LookupError:
        return TOKEN_RE.findall(text.lower())


STOPWORDS = _load_stopwords()
TOKEN_RE = re.compile(r"\b[a-zA-Z0-9]{2,}\b")
stemmer = PorterStemmer()


def tokenize(text: str) -> Counter[str]:
    tokens = _safe_word_tokenize(text)
    filtered = [t for t in tokens if t not in STOPWORDS and TOKEN_RE.fullmatch(t)]
    stemmed = [stemmer.stem(t) for t in filtered]
    return Counter(stemmed)


def match_keywords(text: str, keywords: Iterable[str]) -> list[str]:
    """Topic keywords whose every stemmed term occurs in ``text``.

    Multi-word keywords ("town council") match when all of their terms are
    present; the keyword is returned as configured on the topic.
    """
    terms = tokenize(text or "")
    matched: list[str] = []
    seen: set[str] = set()
    for keyword in keywords:
        cleaned = (keyword or "").strip()
        if not cleaned or cleaned.lower() in seen:
            continue
        keyword_terms = tokenize(cleaned)
        if keyword_terms and all(term in terms for term in keyword_terms):
            matched.append(cleaned)
            seen.add(cleaned.lower())
    return matched
