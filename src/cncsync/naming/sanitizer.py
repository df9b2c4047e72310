# Author: PB
# Maintainer: PB
# Original date: 2026.10.19
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/cncsync/naming/sanitizer.py

"""
Name sanitization for machine directories and program files.

User-entered order, part and file names end up as directory and file names
on a share that machine controllers read. Controllers accept a narrow
alphabet and some limit file names to 24 characters, so every name passes
through a NamingPolicy:

1. Transliterate known letters (Polish diacritics, ligatures)
2. NFD-decompose and drop combining marks
3. Replace anything outside [A-Za-z0-9_.- ] with "_"
4. (vendor policies) truncate the base name, keeping any controller
   suffix such as "_MAC07_A_V2" and the extension intact

Policies are pure and idempotent: sanitize(sanitize(x)) == sanitize(x).
"""

import re
import time
import unicodedata
from typing import Dict, Optional, Pattern, Sequence, Tuple

ALLOWED_CHARS = re.compile(r"[^A-Za-z0-9_.\- ]")

TRANSLITERATIONS: Dict[str, str] = {
    "ą": "a", "Ą": "A",
    "ć": "c", "Ć": "C",
    "ę": "e", "Ę": "E",
    "ł": "l", "Ł": "L",
    "ń": "n", "Ń": "N",
    "ó": "o", "Ó": "O",
    "ś": "s", "Ś": "S",
    "ź": "z", "Ź": "Z",
    "ż": "z", "Ż": "Z",
    "ß": "ss",
    "æ": "ae", "Æ": "AE",
    "ø": "o", "Ø": "O",
    "đ": "d", "Đ": "D",
    "þ": "th", "Þ": "TH",
}

# Controller-appended tags, most specific first
MPF_SUFFIX_PATTERNS: Tuple[Pattern, ...] = (
    re.compile(r"(?P<base>.*)(?P<suffix>_[Mm][Aa][Cc]\d+_[A-Za-z]_[Vv]\d+)$"),
    re.compile(r"(?P<base>.*)(?P<suffix>_[Mm][Aa][Cc]\d+_[A-Za-z])$"),
    re.compile(r"(?P<base>.*)(?P<suffix>_[Mm][Aa][Cc]\d+)$"),
)

PROGRAM_EXTENSION = ".mpf"


def fallback_name(prefix: str = "Unknown") -> str:
    """Generated name for blank input."""
    return f"{prefix}_{int(time.time() * 1000)}"


def clean_characters(text: str, transliterations: Dict[str, str] = TRANSLITERATIONS) -> str:
    """Transliterate, strip diacritics and replace disallowed characters."""
    text = unicodedata.normalize("NFC", text)
    text = "".join(transliterations.get(ch, ch) for ch in text)
    decomposed = unicodedata.normalize("NFD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return ALLOWED_CHARS.sub("_", stripped)


def split_extension(name: str) -> Tuple[str, str]:
    """Split "name.ext" into ("name", ".ext"); dotfiles have no extension."""
    dot = name.rfind(".")
    if dot <= 0:
        return name, ""
    return name[:dot], name[dot:]


class NamingPolicy:
    """Generic policy: character cleaning plus an optional length limit."""

    name = "default"

    def __init__(
        self,
        max_length: Optional[int] = None,
        suffix_patterns: Sequence[Pattern] = (),
        transliterations: Optional[Dict[str, str]] = None,
    ):
        self.max_length = max_length
        self.suffix_patterns = tuple(suffix_patterns)
        self.transliterations = transliterations or TRANSLITERATIONS

    def sanitize(self, raw_name: Optional[str], fallback: Optional[str] = None) -> str:
        """Return a filesystem- and controller-safe version of raw_name.

        Args:
            raw_name: User-entered name, may be None or blank
            fallback: Name used for blank input; defaults to Unknown_<ms>
        """
        if raw_name is None or not raw_name.strip():
            return fallback if fallback is not None else fallback_name()

        cleaned = clean_characters(raw_name.strip(), self.transliterations)
        if self.max_length is not None:
            cleaned = self._fit(cleaned)
        cleaned = cleaned.strip()

        if not cleaned:
            return fallback if fallback is not None else fallback_name()
        return cleaned

    def _split_suffix(self, stem: str) -> Tuple[str, str]:
        for pattern in self.suffix_patterns:
            match = pattern.match(stem)
            if match:
                return match.group("base"), match.group("suffix")
        return stem, ""

    def _fit(self, name: str) -> str:
        if len(name) <= self.max_length:
            return name
        stem, ext = split_extension(name)
        base, suffix = self._split_suffix(stem)
        max_base = max(self.max_length - len(suffix) - len(ext), 0)
        fitted = base[:max_base].rstrip() + suffix + ext
        # suffix + extension alone can exceed the limit
        return fitted[: self.max_length]


class DefaultPolicy(NamingPolicy):
    """No length limit; used for directory names and unknown vendors."""

    name = "default"


class MpfPolicy(NamingPolicy):
    """Sinumerik-style .MPF programs: 24 characters, controller tags kept."""

    name = "inframet"

    def __init__(self, max_length: int = 24):
        super().__init__(max_length=max_length, suffix_patterns=MPF_SUFFIX_PATTERNS)


POLICIES = {
    "default": DefaultPolicy,
    "inframet": MpfPolicy,
}

DEFAULT_POLICY = DefaultPolicy()


def policy_for(vendor: Optional[str]) -> NamingPolicy:
    """Look up the naming policy for a client or machine vendor."""
    policy_cls = POLICIES.get((vendor or "").strip().lower(), DefaultPolicy)
    return policy_cls()


def sanitize(raw_name: Optional[str], policy: Optional[NamingPolicy] = None, fallback: Optional[str] = None) -> str:
    return (policy or DEFAULT_POLICY).sanitize(raw_name, fallback=fallback)


def sanitize_item_names(item) -> Tuple[str, str]:
    """Sanitized (order, part) directory names for a queue item."""
    order = DEFAULT_POLICY.sanitize(item.order_name, fallback=f"NoOrderName_{item.id}")
    part = DEFAULT_POLICY.sanitize(item.part_name, fallback=f"NoPartName_{item.id}")
    return order, part


def attachment_disk_name(attachment, policy: Optional[NamingPolicy] = None) -> str:
    """File name an attachment is stored under in a machine directory.

    The vendor policy applies to program files only; everything else keeps
    its full cleaned name.
    """
    fallback = f"NoFileName_{attachment.id}"
    cleaned = DEFAULT_POLICY.sanitize(attachment.file_name, fallback=fallback)
    if policy is None or not is_program_file(cleaned):
        return cleaned
    return policy.sanitize(attachment.file_name, fallback=fallback)


def queue_file_name(machine_name: Optional[str]) -> str:
    """Control file name for a machine: <sanitized name>.txt"""
    return DEFAULT_POLICY.sanitize(machine_name, fallback="machine_queue") + ".txt"


def is_program_file(name: str) -> bool:
    return name.lower().endswith(PROGRAM_EXTENSION)
