"""Skill body similarity.

The default score is Jaccard overlap of normalized key-phrase sets. Any
function ``(str, str) -> float`` in [0, 1] with ``sim(x, x) == 1`` and
``sim(x, y) == sim(y, x)`` can be passed to the merger instead.
"""

import re
from typing import Callable, List, Set

SimilarityFn = Callable[[str, str], float]

_BOLD_RE = re.compile(r"\*\*([^*]+)\*\*")
_BULLET_RE = re.compile(r"^\s*[-*]\s+(.+)$", re.MULTILINE)
_WORD_RE = re.compile(r"[a-z0-9%$][a-z0-9%$.\-]*")

MAX_KEY_PHRASES = 10

_STOPWORDS = frozenset(
    """
    about above after again against also because been before being below between
    both could does doing down during each from further have having here into
    just more most only other over same should some such than that their them
    then there these they this those through under until very what when where
    which while will with would your
    """.split()
)


def extract_key_phrases(body: str, limit: int = MAX_KEY_PHRASES) -> List[str]:
    """Pull the phrases a skill body emphasizes.

    Bold spans of 5-50 characters come first, then the first five words of
    each bullet item when they make up at least 10 characters.

    Args:
        body: Skill body text (markdown)
        limit: Maximum number of phrases

    Returns:
        Phrases in order of appearance, without duplicates

    Example:
        >>> extract_key_phrases("- **Low TVL pools** rug quickly")
        ['Low TVL pools', '**Low TVL pools** rug quickly']
    """
    phrases: List[str] = []

    for match in _BOLD_RE.finditer(body):
        text = match.group(1).strip()
        if 5 <= len(text) <= 50:
            phrases.append(text)

    for match in _BULLET_RE.finditer(body):
        words = " ".join(match.group(1).strip().split(" ")[:5])
        if len(words) >= 10:
            phrases.append(words)

    seen = set()
    unique = []
    for phrase in phrases:
        key = normalize_phrase(phrase)
        if key and key not in seen:
            seen.add(key)
            unique.append(phrase)
    return unique[:limit]


def normalize_phrase(text: str) -> str:
    """Lowercase, drop markdown emphasis, collapse whitespace and trim punctuation."""
    text = text.replace("**", "").replace("`", "").lower()
    text = re.sub(r"\s+", " ", text)
    return text.strip(" .,:;!?-*_")


def content_words(text: str) -> Set[str]:
    """Distinctive words (4+ chars, no stopwords) used when a body has no key phrases."""
    return {
        w.strip(".-")
        for w in _WORD_RE.findall(text.lower())
        if len(w.strip(".-")) >= 4 and w.strip(".-") not in _STOPWORDS
    }


def _jaccard(a: Set[str], b: Set[str]) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


def phrase_jaccard(body_a: str, body_b: str) -> float:
    """Jaccard similarity of two skill bodies over their key phrases.

    When either body has no extractable phrases, both are compared on their
    content-word sets instead, so the score stays symmetric. Two bodies with
    nothing to compare score 1.0 only if their normalized text is equal.
    """
    phrases_a = {normalize_phrase(p) for p in extract_key_phrases(body_a)}
    phrases_b = {normalize_phrase(p) for p in extract_key_phrases(body_b)}

    if phrases_a and phrases_b:
        return _jaccard(phrases_a, phrases_b)

    words_a = content_words(body_a)
    words_b = content_words(body_b)
    if words_a or words_b:
        return _jaccard(words_a, words_b)

    return 1.0 if normalize_phrase(body_a) == normalize_phrase(body_b) else 0.0
