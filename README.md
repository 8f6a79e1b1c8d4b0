# offsetalloc

A fast offset allocator with fixed metadata. It hands out offsets inside a
linear range of a given size, such as a GPU buffer or a descriptor heap. It
never touches memory itself. It only keeps track of which offsets are in use.

Free regions are sorted into 256 bins: 32 top bins, each with 8 leaf bins. The
bin sizes follow a small floating-point distribution with a 3-bit mantissa.
Two levels of bitmasks find a fitting bin in constant time. When an allocation
is freed, it is merged at once with any free neighbours. Freeing everything
therefore returns the allocator to one region with no fragmentation.

## Installation

```
pip install .
```

## Usage

```python
from offsetalloc.allocator import Allocator, AllocationError

allocator = Allocator(256 * 1024 * 1024, 128 * 1024)

a = allocator.allocate(1337)
print(a.offset)                       # 0
print(allocator.allocation_size(a))   # 1337

report = allocator.storage_report()
print(report.total_free_space, report.largest_free_region)

allocator.free(a)
```

`Allocator(size, max_allocs=131072)` manages the range `0 .. size`.

### Return values and errors

- `allocate(size)` returns a frozen `Allocation`, which has two fields:
  - `offset`: where the region starts.
  - `metadata`: an internal node index.
- `allocate` raises `AllocationError` in two cases:
  - no free region is large enough;
  - no metadata slot is left.
- `free(allocation)` and `allocation_size(allocation)` raise `AllocationError`
  when the handle does not refer to a live allocation. This includes freeing
  the same allocation twice.
- Sizes must be unsigned 32-bit integers. Any other value raises `ValueError`.

### Reports and reset

- `storage_report()` returns a `StorageReport` with two fields:
  - `total_free_space`
  - `largest_free_region`: the size class of the largest non-empty bin.

  When no metadata slot is left, both fields are 0.
- `storage_report_full()` returns a `StorageReportFull`. Its `free_regions`
  tuple holds one `Region` per bin. Each `Region` gives the bin's size class
  (`size`) and how many free regions the bin holds (`count`).
- `reset()` puts the allocator back into its starting state: one free region
  that covers the whole range.

The `size` and `max_allocs` properties give back the values passed to the
constructor.

### Size classes

The bin mapping is also available on its own, in `offsetalloc.smallfloat`:

```python
from offsetalloc.smallfloat import (
    uint_to_float_round_up,
    uint_to_float_round_down,
    float_to_uint,
    find_lowest_set_bit_after,
)

uint_to_float_round_up(118)    # 39
uint_to_float_round_down(118)  # 38
float_to_uint(38)              # 112, the smallest size in bin 38
find_lowest_set_bit_after(0b10100, 3)  # 4 (None if no bit is set)
```

## What it does not do

This package does not reserve, map or copy any memory. It gives out offsets
only. Storing data at those offsets is up to the caller.

## Running the tests

```
pip install .[test]
pytest
```