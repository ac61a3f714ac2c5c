from __future__ import annotations

import random
from collections.abc import Sequence


class PhraseVariation:
    """Picks one of several equivalent templates so replies don't read canned."""

    def __init__(self, seed: int | None = None, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random(seed)

    def choose(self, options: Sequence[str]) -> str:
        if not options:
            return ""
        return self._rng.choice(list(options))
