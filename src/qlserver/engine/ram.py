"""Heap flag computation for the engine process.

The engine runs on a managed runtime and additionally keeps an off-heap
buffer region. A total memory budget is split between the two and turned
into the pair of flags the engine accepts:

    -J-Xmx<N>M            managed heap, megabytes
    --off-heap-ram=<N>    off-heap buffers, megabytes
"""

from __future__ import annotations

from typing import Tuple

from qlserver.core.models import HeapFlags
from qlserver.errors import InvalidConfiguration

# Share of the budget given to the managed heap; the off-heap region
# receives the remainder. 8192 -> 4096 / 4096.
MANAGED_HEAP_FRACTION = 0.5

# Both regions need at least one megabyte.
MIN_RAM_MB = 2


class RamAllocator:
    """Splits a memory budget into managed-heap and off-heap flags."""

    def __init__(self, managed_fraction: float = MANAGED_HEAP_FRACTION) -> None:
        if isinstance(managed_fraction, bool) or not isinstance(managed_fraction, (int, float)):
            raise InvalidConfiguration(
                f"Managed heap fraction must be a number, got {type(managed_fraction).__name__}"
            )
        if not 0 < managed_fraction < 1:
            raise InvalidConfiguration(
                f"Managed heap fraction must be between 0 and 1 (exclusive), got {managed_fraction}"
            )
        self._managed_fraction = float(managed_fraction)

    @property
    def managed_fraction(self) -> float:
        return self._managed_fraction

    def split(self, total_mb: int) -> Tuple[int, int]:
        """Return ``(managed_mb, off_heap_mb)`` for a budget.

        Raises:
            InvalidConfiguration: If the budget is not an integer of at
                least MIN_RAM_MB megabytes.
        """
        if isinstance(total_mb, bool) or not isinstance(total_mb, int):
            raise InvalidConfiguration(
                f"RAM budget must be an integer number of megabytes, got {total_mb!r}"
            )
        if total_mb <= 0:
            raise InvalidConfiguration(f"RAM budget must be positive, got {total_mb}")
        if total_mb < MIN_RAM_MB:
            raise InvalidConfiguration(
                f"RAM budget must be at least {MIN_RAM_MB} MB to fit both heap regions, got {total_mb}"
            )

        managed = int(total_mb * self._managed_fraction)
        managed = max(1, min(total_mb - 1, managed))
        return managed, total_mb - managed

    def resolve(self, total_mb: int) -> HeapFlags:
        """Return the heap flags for a budget, managed heap first."""
        managed, off_heap = self.split(total_mb)
        return [f"-J-Xmx{managed}M", f"--off-heap-ram={off_heap}"]


_DEFAULT_ALLOCATOR = RamAllocator()


def resolve_ram(total_mb: int) -> HeapFlags:
    """Resolve heap flags using the default split policy.

    Args:
        total_mb: Total memory budget in megabytes.

    Returns:
        ``['-J-Xmx<N>M', '--off-heap-ram=<M>']`` with ``N + M == total_mb``.

    Raises:
        InvalidConfiguration: If the budget is not a usable integer.
    """
    return _DEFAULT_ALLOCATOR.resolve(total_mb)
