"""Short code generation.

Generators turn an identifier space into candidate short codes. They never
touch the mapping store; the only state they hold is an injected counter
source, so allocation can scale out without a central sequencer.

Strategies
==========
::
    SequentialCodeGenerator                RandomCodeGenerator
    ┌──────────────────────┐               ┌──────────────────────┐
    │ counter.next_value() │               │ nanoid(alphabet, n)  │
    └──────────┬───────────┘               └──────────┬───────────┘
               ▼                                      ▼
    ┌──────────────────────┐               ┌──────────────────────┐
    │ permute mod base**L  │               │ n grows with attempt │
    └──────────┬───────────┘               └──────────────────────┘
               ▼
    ┌──────────────────────┐
    │ base-N encode, pad   │
    └──────────────────────┘

Key Behaviours
===============
- Sequential codes never collide while counter values are never reused.
- Random codes may collide; the allocation service retries them.
- Every call with ``attempt > 0`` yields a new candidate: the sequential
  strategy draws a new counter value, the random one draws fresh entropy.
- ``reserve()`` is the only awaitable step; it lets a counter source fetch
  an id block before ``generate`` runs.
"""

import asyncio
import logging
import math
import threading
from abc import ABC, abstractmethod
from typing import Protocol

import redis.asyncio as redis
from nanoid import generate as nanoid_generate
from redis.exceptions import RedisError

from shortener.config import BASE62_ALPHABET, CODE_COLUMN_WIDTH, Settings
from shortener.exceptions import CodeSpaceExhausted, TransientStoreFailure

__all__ = [
    "encode",
    "CounterSource",
    "LocalCounter",
    "RedisBlockCounter",
    "CodeGenerator",
    "SequentialCodeGenerator",
    "RandomCodeGenerator",
    "build_code_generator",
]

logger = logging.getLogger("urlshortener")

# Odd multiplier used to spread consecutive counter values across the code space.
PERMUTATION_MULTIPLIER = 2_654_435_761
LENGTH_STEP_ATTEMPTS = 2


def encode(number: int, alphabet: str = BASE62_ALPHABET) -> str:
    """Encode a number in the base given by ``alphabet``.

    Example:
        >>> encode(12345)
        '3d7'
    """
    if number < 0:
        raise ValueError("Number must be non-negative")

    if number == 0:
        return alphabet[0]

    base = len(alphabet)
    result = []

    while number > 0:
        number, remainder = divmod(number, base)
        result.append(alphabet[remainder])

    return "".join(result[::-1])


class CounterSource(Protocol):
    async def reserve(self) -> None: ...

    def next_value(self) -> int: ...


class LocalCounter:
    """Thread-safe in-process counter."""

    def __init__(self, start: int = 1):
        if start < 0:
            raise ValueError("Counter start must be non-negative")
        self._next = start
        self._lock = threading.Lock()

    async def reserve(self) -> None:
        return None

    def next_value(self) -> int:
        with self._lock:
            value = self._next
            self._next += 1
        return value


class RedisBlockCounter:
    """Counter that leases blocks of ids from a shared Redis key.

    ``INCRBY`` hands every process a disjoint block, so values are unique
    across the fleet. Unused ids in a block are lost on restart, never reused.
    """

    def __init__(self, client: redis.Redis, key: str, block_size: int, timeout: float):
        if block_size < 1:
            raise ValueError("Block size must be positive")
        self._client = client
        self._key = key
        self._block_size = block_size
        self._timeout = timeout
        self._next = 0
        self._end = -1
        self._lock = asyncio.Lock()

    @property
    def remaining(self) -> int:
        return max(self._end - self._next + 1, 0)

    async def reserve(self) -> None:
        if self._next <= self._end:
            return
        async with self._lock:
            if self._next <= self._end:
                return
            try:
                async with asyncio.timeout(self._timeout):
                    end_value = await self._client.incrby(self._key, self._block_size)
            except (TimeoutError, RedisError) as exc:
                raise TransientStoreFailure("reserve_ids") from exc
            self._next = end_value - self._block_size + 1
            self._end = end_value
            logger.debug(f"Leased id block {self._next}-{self._end} from {self._key}")

    def next_value(self) -> int:
        if self._next > self._end:
            raise RuntimeError("Id block exhausted; await reserve() before next_value()")
        value = self._next
        self._next += 1
        return value


class CodeGenerator(ABC):
    def __init__(self, length: int, alphabet: str = BASE62_ALPHABET):
        if length < 1 or length > CODE_COLUMN_WIDTH:
            raise ValueError(f"length must be between 1 and {CODE_COLUMN_WIDTH}, got {length!r}")
        self.length = length
        self.alphabet = alphabet

    async def reserve(self) -> None:
        return None

    @abstractmethod
    def generate(self, attempt: int) -> str:
        raise NotImplementedError

    @staticmethod
    def _check_attempt(attempt: int) -> None:
        if attempt < 0:
            raise ValueError(f"attempt must be non-negative, got {attempt!r}")


class SequentialCodeGenerator(CodeGenerator):
    def __init__(
        self,
        counter: CounterSource,
        length: int,
        alphabet: str = BASE62_ALPHABET,
        scramble: bool = True,
    ):
        super().__init__(length, alphabet)
        self._counter = counter
        self.capacity = len(alphabet) ** length
        self._multiplier = self._coprime_multiplier(self.capacity) if scramble else 1

    async def reserve(self) -> None:
        await self._counter.reserve()

    def generate(self, attempt: int) -> str:
        self._check_attempt(attempt)
        value = self._counter.next_value()
        if value >= self.capacity:
            raise CodeSpaceExhausted(value, self.capacity)
        permuted = (value * self._multiplier) % self.capacity
        return encode(permuted, self.alphabet).rjust(self.length, self.alphabet[0])

    @staticmethod
    def _coprime_multiplier(capacity: int) -> int:
        multiplier = PERMUTATION_MULTIPLIER % capacity or 1
        while math.gcd(multiplier, capacity) != 1:
            multiplier += 1
        return multiplier


class RandomCodeGenerator(CodeGenerator):
    def generate(self, attempt: int) -> str:
        self._check_attempt(attempt)
        size = min(self.length + attempt // LENGTH_STEP_ATTEMPTS, CODE_COLUMN_WIDTH)
        return nanoid_generate(self.alphabet, size)


def build_code_generator(settings: Settings, redis_client: redis.Redis | None = None) -> CodeGenerator:
    if settings.CODE_STRATEGY == "random":
        return RandomCodeGenerator(settings.SHORT_CODE_LENGTH, settings.CODE_ALPHABET)

    counter: CounterSource
    if redis_client is not None:
        counter = RedisBlockCounter(
            redis_client,
            settings.ID_ALLOCATOR_KEY,
            settings.ID_BLOCK_SIZE,
            settings.STORE_TIMEOUT_SECONDS,
        )
    else:
        counter = LocalCounter()
    return SequentialCodeGenerator(counter, settings.SHORT_CODE_LENGTH, settings.CODE_ALPHABET)
