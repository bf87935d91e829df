"""
Pairing code generation.

Codes are short, fixed-length and drawn uniformly from an alphabet without
look-alike characters, so they survive being read off one screen and typed
into another. Uniqueness is only checked against the codes that are live
right now; a code freed by a finished session can be handed out again.
"""

import random
import secrets
from typing import Container, Optional

from config import CODE_ALPHABET, CODE_LENGTH, CODE_MAX_ATTEMPTS
from relay.errors import CodeSpaceExhausted

AMBIGUOUS_CHARS = frozenset("0O1I")


def normalize(code: str) -> str:
    """Canonical form used for every code-keyed lookup (case-insensitive)."""
    return code.strip().upper()


class CodeGenerator:
    """Stateless generator; entropy comes from `rng` (system CSPRNG by default)."""

    def __init__(
        self,
        alphabet: str = CODE_ALPHABET,
        length: int = CODE_LENGTH,
        max_attempts: int = CODE_MAX_ATTEMPTS,
        rng: Optional[random.Random] = None,
    ):
        if not alphabet:
            raise ValueError("alphabet must not be empty")
        if len(set(alphabet)) != len(alphabet):
            raise ValueError("alphabet contains duplicate characters")
        if AMBIGUOUS_CHARS & set(alphabet.upper()):
            raise ValueError(
                f"alphabet contains ambiguous characters: "
                f"{''.join(sorted(AMBIGUOUS_CHARS & set(alphabet.upper())))}"
            )
        if alphabet != alphabet.upper():
            raise ValueError("alphabet must be upper-case so lookups can normalize")
        if length <= 0:
            raise ValueError("length must be positive")
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")

        self.alphabet = alphabet
        self.length = length
        self.max_attempts = max_attempts
        self._rng = rng or secrets.SystemRandom()

    def _draw(self) -> str:
        return "".join(self._rng.choice(self.alphabet) for _ in range(self.length))

    def generate(self, existing_codes: Container[str]) -> str:
        """
        Return a code that is not in `existing_codes`.

        Raises CodeSpaceExhausted when no free code turns up within
        `max_attempts` draws. With the default 32-character alphabet and
        six positions there are ~10^9 codes, so this only happens when the
        configuration shrinks the code space to near the live session count.
        """
        for _ in range(self.max_attempts):
            code = self._draw()
            if code not in existing_codes:
                return code
        raise CodeSpaceExhausted(
            f"no free pairing code after {self.max_attempts} attempts "
            f"(alphabet={len(self.alphabet)} chars, length={self.length})"
        )
