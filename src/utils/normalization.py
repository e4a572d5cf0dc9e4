"""Name normalization helpers.

Two forms are used:

* storage form: accents stripped, trimmed, ``NOM`` upper-cased and
  ``prenom`` lower-cased, preserving the teacher's spacing and hyphens;
* match key: storage form further case-folded with whitespace, hyphens and
  underscores removed. Match keys are only ever compared, never stored as
  a display value.
"""

import re
import unicodedata

_MATCH_STRIP_RE = re.compile(r"[\s\-_]+")
_SLUG_RE = re.compile(r"[^a-z0-9]+")


def strip_accents(value) -> str:
    if not isinstance(value, str):
        return ""
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_nom(value) -> str:
    return strip_accents(value).strip().upper()


def normalize_prenom(value) -> str:
    return strip_accents(value).strip().lower()


def match_key(value) -> str:
    """Comparison key: "Jean-Paul", "jean paul" and "JEAN_PAUL" are equal."""
    return _MATCH_STRIP_RE.sub("", strip_accents(value).casefold())


def identity_key(nom, prenom) -> str:
    """Compound dedup key for one human (surname + given name)."""
    return f"{match_key(nom)}|{match_key(prenom)}"


def normalize_email(value) -> str:
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def to_slug(value) -> str:
    return _SLUG_RE.sub("-", strip_accents(value).lower()).strip("-")
