"""Short code generation.

Codes are random nanoid draws over a 62-symbol, case-sensitive alphabet.
At the default length of 8 the space holds about 2.2e14 codes, so a draw
collides with an existing code only at astronomically large corpus sizes;
the existence check below turns the remaining risk into a bounded retry
instead of a reservation step.
"""

from collections.abc import Callable

from nanoid import generate
from prometheus_client import Counter

from shortener.cache import URLCache
from shortener.exceptions import CodeSpaceExhaustedError
from shortener.store import ShortURLStore

__all__ = ["ALPHABET", "CodeGenerator", "generate_short_code"]

ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ"

CODE_COLLISIONS_TOTAL = Counter(
    "shortener_code_collisions_total",
    "Generated short codes that were already taken and redrawn",
)


def generate_short_code(length: int) -> str:
    assert isinstance(length, int) and length > 0, f"length must be a positive integer, got {length!r}"
    return generate(ALPHABET, length)


class CodeGenerator:
    """Draws short codes that are free in every place a code can live.

    A code is considered taken if the durable store has it, the cache still
    resolves or tombstones it, or the hit aggregator holds a pending delta
    for it. The cache and aggregator checks cover codes whose record was
    just deleted: such a code must not be handed out again while stale state
    for it can still surface.
    """

    def __init__(
        self,
        store: ShortURLStore,
        cache: URLCache,
        is_pending: Callable[[str], bool],
        length: int = 8,
        max_attempts: int = 5,
        draw: Callable[[int], str] = generate_short_code,
    ):
        assert max_attempts > 0, f"max_attempts must be positive, got {max_attempts!r}"
        self._store = store
        self._cache = cache
        self._is_pending = is_pending
        self._length = length
        self._max_attempts = max_attempts
        self._draw = draw

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    async def _is_taken(self, code: str) -> bool:
        if self._is_pending(code):
            return True
        if await self._cache.get(code) is not None or await self._cache.is_deleted(code):
            return True
        return await self._store.exists(code)

    async def generate(self) -> str:
        """Return a code that no store currently knows about.

        Raises:
            CodeSpaceExhaustedError: every draw within ``max_attempts`` collided.
        """
        for _ in range(self._max_attempts):
            code = self._draw(self._length)
            if not await self._is_taken(code):
                return code
            CODE_COLLISIONS_TOTAL.inc()
        raise CodeSpaceExhaustedError(
            f"No free short code of length {self._length} after {self._max_attempts} attempts"
        )
