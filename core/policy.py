"""
Forbidden-content policy.

The policy file is plain text, one rule per line:

    # comment
    site:blocked.example     → forbidden hostname substring
    badword                  → forbidden word substring

Blank lines and ``#`` comments are ignored, ``site:`` is matched
case-insensitively, and every rule is stored lowercased.  A
``PolicyStore`` never changes after construction, so sessions running
on different threads share one instance without locking.
"""

import logging
from typing import Iterable

logger = logging.getLogger("FilterProxy.Policy")

SITE_PREFIX = "site:"


class PolicyStore:
    """Immutable forbidden-word / forbidden-host lists."""

    def __init__(self, forbidden_words: Iterable[str] = (),
                 forbidden_hosts: Iterable[str] = ()):
        self._words = frozenset(
            w.strip().lower() for w in forbidden_words if w.strip()
        )
        self._hosts = frozenset(
            h.strip().lower() for h in forbidden_hosts if h.strip()
        )
        # bytes copies for scanning raw bodies without decoding them
        self._word_bytes = tuple(
            (w, w.encode("utf-8")) for w in sorted(self._words)
        )
        self._longest = max(
            (len(b) for _, b in self._word_bytes), default=0
        )

    # ── construction ─────────────────────────────────────────────
    @classmethod
    def parse(cls, lines: Iterable[str]) -> "PolicyStore":
        words: list[str] = []
        hosts: list[str] = []
        for raw in lines:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            lower = line.lower()
            if lower.startswith(SITE_PREFIX):
                host = lower[len(SITE_PREFIX):].strip()
                if host:
                    hosts.append(host)
            else:
                words.append(lower)
        return cls(words, hosts)

    @classmethod
    def load(cls, path: str) -> "PolicyStore":
        """
        Read the policy file at *path*.

        A missing or unreadable file is not fatal: the proxy starts with
        an empty policy and a warning is logged.
        """
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as fh:
                policy = cls.parse(fh)
        except OSError as exc:
            logger.warning(
                "Warning: %s not found — no filtering will apply (%s)",
                path, exc.strerror or exc,
            )
            return cls()

        if policy.is_empty():
            logger.warning("Warning: %s has no rules, nothing will be filtered",
                           path)
        logger.info(
            "Loaded %d forbidden words and %d forbidden sites from %s",
            len(policy.forbidden_words), len(policy.forbidden_hosts), path,
        )
        return policy

    # ── accessors ────────────────────────────────────────────────
    @property
    def forbidden_words(self) -> frozenset[str]:
        return self._words

    @property
    def forbidden_hosts(self) -> frozenset[str]:
        return self._hosts

    @property
    def longest_word(self) -> int:
        """Byte length of the longest forbidden word (0 if none)."""
        return self._longest

    def is_empty(self) -> bool:
        return not self._words and not self._hosts

    # ── matching ─────────────────────────────────────────────────
    def is_host_forbidden(self, host: str) -> bool:
        return self.find_forbidden_host(host) is not None

    def find_forbidden_host(self, host: str) -> str | None:
        host_lower = host.lower()
        for blocked in self._hosts:
            if blocked in host_lower:
                return blocked
        return None

    def contains_forbidden_word(self, text: str | bytes) -> bool:
        return self.find_forbidden_word(text) is not None

    def find_forbidden_word(self, text: str | bytes) -> str | None:
        """Return the first forbidden word contained in *text*, if any."""
        if not self._words or not text:
            return None
        if isinstance(text, (bytes, bytearray, memoryview)):
            haystack = bytes(text).lower()
            for word, encoded in self._word_bytes:
                if encoded in haystack:
                    return word
            return None
        haystack = text.lower()
        for word, _ in self._word_bytes:
            if word in haystack:
                return word
        return None

    def __repr__(self) -> str:
        return (f"PolicyStore(words={len(self._words)}, "
                f"hosts={len(self._hosts)})")
