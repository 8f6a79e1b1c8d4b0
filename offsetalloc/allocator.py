"""Fast hard real-time O(1) offset allocator with minimal fragmentation.

The allocator hands out offsets into an externally owned range of
``size`` units.  Free regions are kept in 256 size-class bins arranged as
32 top bins with 8 leaf bins each.  Two levels of bitmasks allow the
smallest fitting bin to be found in constant time.  Adjacent free regions
are merged when an allocation is released.
"""

from __future__ import annotations

from dataclasses import dataclass

from .smallfloat import (
    find_lowest_set_bit_after,
    float_to_uint,
    uint_to_float_round_down,
    uint_to_float_round_up,
)

NUM_TOP_BINS = 32
BINS_PER_LEAF = 8
TOP_BINS_INDEX_SHIFT = 3
LEAF_BINS_INDEX_MASK = 0x7
NUM_LEAF_BINS = NUM_TOP_BINS * BINS_PER_LEAF

DEFAULT_MAX_ALLOCS = 128 * 1024

_UINT32_MAX = 0xFFFFFFFF


class AllocationError(Exception):
    """Raised when an allocation cannot be made or released."""


@dataclass(frozen=True)
class Allocation:
    """A handle to an allocated region: its offset and internal node index."""

    offset: int
    metadata: int


@dataclass(frozen=True)
class StorageReport:
    """Summary of the free space left in an allocator."""

    total_free_space: int
    largest_free_region: int


@dataclass(frozen=True)
class Region:
    """Number of free regions held in the bin of a given size class."""

    size: int
    count: int


@dataclass(frozen=True)
class StorageReportFull:
    """Free region counts for every size-class bin."""

    free_regions: tuple[Region, ...]


@dataclass
class _Node:
    data_offset: int = 0
    data_size: int = 0
    bin_prev: int | None = None
    bin_next: int | None = None
    neighbor_prev: int | None = None
    neighbor_next: int | None = None
    used: bool = False


def _check_uint32(value: int, name: str) -> None:
    if not 0 <= value <= _UINT32_MAX:
        raise ValueError(f"{name} must be an unsigned 32-bit integer, got {value}")


def _split_bin(bin_index: int) -> tuple[int, int]:
    return bin_index >> TOP_BINS_INDEX_SHIFT, bin_index & LEAF_BINS_INDEX_MASK


class Allocator:
    """Offset allocator over a range of ``size`` units.

    At most ``max_allocs`` allocations can be live at the same time.
    """

    def __init__(self, size: int, max_allocs: int = DEFAULT_MAX_ALLOCS) -> None:
        _check_uint32(size, "size")
        if max_allocs < 0:
            raise ValueError(f"max_allocs must be non-negative, got {max_allocs}")
        self._size = size
        self._max_allocs = max_allocs
        self.reset()

    @property
    def size(self) -> int:
        """Total size of the managed range."""
        return self._size

    @property
    def max_allocs(self) -> int:
        """Maximum number of live allocations."""
        return self._max_allocs

    def reset(self) -> None:
        """Release every allocation and return to a single free region."""
        self._free_storage = 0
        self._used_bins_top = 0
        self._used_bins = [0] * NUM_TOP_BINS
        self._bin_heads: list[int | None] = [None] * NUM_LEAF_BINS
        node_count = self._max_allocs + 1
        self._nodes = [_Node() for _ in range(node_count)]
        # Free list is a stack; node 0 is popped first.
        self._free_nodes = list(reversed(range(node_count)))
        self._insert_node_into_bin(self._size, 0)

    def allocate(self, size: int) -> Allocation:
        """Allocate ``size`` units and return the allocation handle.

        Raises AllocationError when no slot or no fitting region is left.
        """
        _check_uint32(size, "size")
        if not self._free_nodes:
            raise AllocationError("out of allocation slots")

        # Round up so that every region in the chosen bin fits the request.
        min_top, min_leaf = _split_bin(uint_to_float_round_up(size))

        top = min_top
        leaf: int | None = None
        if self._used_bins_top & (1 << top):
            leaf = find_lowest_set_bit_after(self._used_bins[top], min_leaf)

        if leaf is None:
            found_top = find_lowest_set_bit_after(self._used_bins_top, min_top + 1)
            if found_top is None:
                raise AllocationError(f"no free region large enough for {size}")
            top = found_top
            # Every leaf of a higher top bin fits; one is set since the top bit is.
            leaf = find_lowest_set_bit_after(self._used_bins[top], 0)
            assert leaf is not None

        bin_index = (top << TOP_BINS_INDEX_SHIFT) | leaf

        node_index = self._bin_heads[bin_index]
        assert node_index is not None
        node = self._nodes[node_index]
        total_size = node.data_size
        node.data_size = size
        node.used = True
        self._bin_heads[bin_index] = node.bin_next
        if node.bin_next is not None:
            self._nodes[node.bin_next].bin_prev = None
        node.bin_next = None
        self._free_storage -= total_size

        if self._bin_heads[bin_index] is None:
            self._clear_bin_bit(top, leaf)

        remainder = total_size - size
        if remainder > 0:
            new_index = self._insert_node_into_bin(remainder, node.data_offset + size)
            new_node = self._nodes[new_index]
            if node.neighbor_next is not None:
                self._nodes[node.neighbor_next].neighbor_prev = new_index
            new_node.neighbor_prev = node_index
            new_node.neighbor_next = node.neighbor_next
            node.neighbor_next = new_index

        return Allocation(offset=node.data_offset, metadata=node_index)

    def free(self, allocation: Allocation) -> None:
        """Release an allocation, merging it with free neighbours."""
        node_index = allocation.metadata
        node = self._live_node(allocation)

        offset = node.data_offset
        size = node.data_size

        prev_index = node.neighbor_prev
        if prev_index is not None and not self._nodes[prev_index].used:
            prev_node = self._nodes[prev_index]
            offset = prev_node.data_offset
            size += prev_node.data_size
            self._remove_node_from_bin(prev_index)
            node.neighbor_prev = prev_node.neighbor_prev

        next_index = node.neighbor_next
        if next_index is not None and not self._nodes[next_index].used:
            next_node = self._nodes[next_index]
            size += next_node.data_size
            self._remove_node_from_bin(next_index)
            node.neighbor_next = next_node.neighbor_next

        neighbor_next = node.neighbor_next
        neighbor_prev = node.neighbor_prev

        self._free_nodes.append(node_index)
        combined_index = self._insert_node_into_bin(size, offset)
        combined = self._nodes[combined_index]

        if neighbor_next is not None:
            combined.neighbor_next = neighbor_next
            self._nodes[neighbor_next].neighbor_prev = combined_index
        if neighbor_prev is not None:
            combined.neighbor_prev = neighbor_prev
            self._nodes[neighbor_prev].neighbor_next = combined_index

    def allocation_size(self, allocation: Allocation) -> int:
        """Return the size that was requested for a live allocation."""
        return self._live_node(allocation).data_size

    def storage_report(self) -> StorageReport:
        """Return the total free space and the largest free region size."""
        if not self._free_nodes:
            # No slot left: nothing more can be allocated.
            return StorageReport(total_free_space=0, largest_free_region=0)
        largest = 0
        if self._used_bins_top:
            top = self._used_bins_top.bit_length() - 1
            leaf = self._used_bins[top].bit_length() - 1
            largest = float_to_uint((top << TOP_BINS_INDEX_SHIFT) | leaf)
        return StorageReport(
            total_free_space=self._free_storage, largest_free_region=largest
        )

    def storage_report_full(self) -> StorageReportFull:
        """Return the number of free regions in every size-class bin."""
        return StorageReportFull(
            free_regions=tuple(
                Region(size=float_to_uint(bin_index), count=self._bin_length(head))
                for bin_index, head in enumerate(self._bin_heads)
            )
        )

    def _bin_length(self, head: int | None) -> int:
        count = 0
        while head is not None:
            head = self._nodes[head].bin_next
            count += 1
        return count

    def _live_node(self, allocation: Allocation) -> _Node:
        index = allocation.metadata
        if not 0 <= index < len(self._nodes):
            raise AllocationError(f"invalid allocation handle {allocation}")
        node = self._nodes[index]
        if not node.used or node.data_offset != allocation.offset:
            raise AllocationError(f"allocation {allocation} is not live")
        return node

    def _clear_bin_bit(self, top: int, leaf: int) -> None:
        self._used_bins[top] &= ~(1 << leaf)
        if not self._used_bins[top]:
            self._used_bins_top &= ~(1 << top)

    def _insert_node_into_bin(self, size: int, data_offset: int) -> int:
        # Round down so that the bin never overstates the region size.
        bin_index = uint_to_float_round_down(size)
        top, leaf = _split_bin(bin_index)

        top_node_index = self._bin_heads[bin_index]
        if top_node_index is None:
            self._used_bins[top] |= 1 << leaf
            self._used_bins_top |= 1 << top

        node_index = self._free_nodes.pop()
        self._nodes[node_index] = _Node(
            data_offset=data_offset, data_size=size, bin_next=top_node_index
        )
        if top_node_index is not None:
            self._nodes[top_node_index].bin_prev = node_index
        self._bin_heads[bin_index] = node_index

        self._free_storage += size
        return node_index

    def _remove_node_from_bin(self, node_index: int) -> None:
        node = self._nodes[node_index]

        if node.bin_prev is not None:
            self._nodes[node.bin_prev].bin_next = node.bin_next
            if node.bin_next is not None:
                self._nodes[node.bin_next].bin_prev = node.bin_prev
        else:
            bin_index = uint_to_float_round_down(node.data_size)
            top, leaf = _split_bin(bin_index)
            self._bin_heads[bin_index] = node.bin_next
            if node.bin_next is not None:
                self._nodes[node.bin_next].bin_prev = None
            if self._bin_heads[bin_index] is None:
                self._clear_bin_bit(top, leaf)

        self._free_nodes.append(node_index)
        self._free_storage -= node.data_size