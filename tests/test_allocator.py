import pytest

from offsetalloc.allocator import (
    NUM_LEAF_BINS,
    Allocation,
    AllocationError,
    Allocator,
    Region,
    StorageReport,
)

MB = 1024 * 1024


@pytest.fixture
def allocator():
    return Allocator(256 * MB, 100)


def assert_clean(alloc):
    validate_all = alloc.allocate(256 * MB)
    assert validate_all.offset == 0
    alloc.free(validate_all)


def test_simple_allocation_offset():
    alloc = Allocator(2 * MB, 100)
    a = alloc.allocate(1337)
    assert a.offset == 0
    alloc.free(a)
    assert alloc.storage_report().total_free_space == 2 * MB


def test_default_max_allocs_basic():
    alloc = Allocator(256 * MB)
    a = alloc.allocate(1337)
    assert a.offset == 0
    assert alloc.max_allocs == 128 * 1024
    alloc.free(a)


def test_simple(allocator):
    a = allocator.allocate(0)
    assert a.offset == 0
    b = allocator.allocate(1)
    assert b.offset == 0
    c = allocator.allocate(123)
    assert c.offset == 1
    d = allocator.allocate(1234)
    assert d.offset == 124

    allocator.free(a)
    allocator.free(b)
    allocator.free(c)
    allocator.free(d)
    assert_clean(allocator)


def test_merge_trivial(allocator):
    a = allocator.allocate(1337)
    assert a.offset == 0
    allocator.free(a)
    b = allocator.allocate(1337)
    assert b.offset == 0
    allocator.free(b)
    assert_clean(allocator)


def test_reuse_trivial(allocator):
    a = allocator.allocate(1024)
    assert a.offset == 0
    b = allocator.allocate(3456)
    assert b.offset == 1024
    allocator.free(a)
    c = allocator.allocate(1024)
    assert c.offset == 0
    allocator.free(c)
    allocator.free(b)
    assert_clean(allocator)


def test_reuse_complex(allocator):
    a = allocator.allocate(1024)
    assert a.offset == 0
    b = allocator.allocate(3456)
    assert b.offset == 1024
    allocator.free(a)

    c = allocator.allocate(2345)
    assert c.offset == 1024 + 3456
    d = allocator.allocate(456)
    assert d.offset == 0
    e = allocator.allocate(512)
    assert e.offset == 456

    report = allocator.storage_report()
    assert report.total_free_space == 256 * MB - 3456 - 2345 - 456 - 512
    assert report.largest_free_region < report.total_free_space

    allocator.free(c)
    allocator.free(d)
    allocator.free(b)
    allocator.free(e)
    assert_clean(allocator)


def test_zero_fragmentation():
    alloc = Allocator(256 * MB, 256)
    allocations = [alloc.allocate(MB) for _ in range(256)]
    assert [a.offset for a in allocations] == [i * MB for i in range(256)]

    assert alloc.storage_report() == StorageReport(0, 0)

    for i in (243, 5, 123, 95):
        alloc.free(allocations[i])
    for i in (151, 152, 153, 154):
        alloc.free(allocations[i])

    for i in (243, 5, 123, 95):
        allocations[i] = alloc.allocate(MB)
    allocations[151] = alloc.allocate(4 * MB)

    reallocated = {allocations[i].offset for i in (243, 5, 123, 95)}
    assert reallocated == {243 * MB, 5 * MB, 123 * MB, 95 * MB}
    assert allocations[151].offset == 151 * MB

    for i, allocation in enumerate(allocations):
        if i < 152 or i > 154:
            alloc.free(allocation)

    report = alloc.storage_report()
    assert report.total_free_space == 256 * MB
    assert report.largest_free_region == 256 * MB
    assert_clean(alloc)


def test_fresh_storage_report(allocator):
    assert allocator.storage_report() == StorageReport(256 * MB, 256 * MB)


def test_allocation_size(allocator):
    a = allocator.allocate(1337)
    assert allocator.allocation_size(a) == 1337
    b = allocator.allocate(0)
    assert allocator.allocation_size(b) == 0


def test_allocation_size_of_freed_allocation_raises(allocator):
    a = allocator.allocate(100)
    allocator.free(a)
    with pytest.raises(AllocationError):
        allocator.allocation_size(a)


def test_out_of_space_raises():
    alloc = Allocator(1024, 10)
    with pytest.raises(AllocationError):
        alloc.allocate(2048)
    assert alloc.storage_report().total_free_space == 1024


def test_out_of_allocation_slots_raises():
    alloc = Allocator(1024, 2)
    first = alloc.allocate(1)
    second = alloc.allocate(1)
    assert (first.offset, second.offset) == (0, 1)
    with pytest.raises(AllocationError):
        alloc.allocate(1)
    assert alloc.storage_report() == StorageReport(0, 0)
    alloc.free(second)
    third = alloc.allocate(1)
    assert third.offset == 1


def test_double_free_raises(allocator):
    a = allocator.allocate(64)
    allocator.free(a)
    with pytest.raises(AllocationError):
        allocator.free(a)


def test_invalid_handle_raises(allocator):
    with pytest.raises(AllocationError):
        allocator.free(Allocation(offset=0, metadata=10_000))


def test_invalid_arguments():
    with pytest.raises(ValueError):
        Allocator(-1, 10)
    with pytest.raises(ValueError):
        Allocator(1024, -1)
    alloc = Allocator(1024, 10)
    with pytest.raises(ValueError):
        alloc.allocate(-5)


def test_reset_releases_everything(allocator):
    for _ in range(10):
        allocator.allocate(1000)
    assert allocator.storage_report().total_free_space == 256 * MB - 10_000
    allocator.reset()
    assert allocator.storage_report() == StorageReport(256 * MB, 256 * MB)
    assert_clean(allocator)


def test_storage_report_full_fresh(allocator):
    report = allocator.storage_report_full()
    assert len(report.free_regions) == NUM_LEAF_BINS
    assert sum(region.count for region in report.free_regions) == 1
    assert report.free_regions[208] == Region(size=256 * MB, count=1)
    assert report.free_regions[64].size == 1024
    assert report.free_regions[5].size == 5


def test_storage_report_full_counts_fragments(allocator):
    a = allocator.allocate(1024)
    allocator.allocate(1024)
    c = allocator.allocate(1024)
    allocator.allocate(1024)
    allocator.free(a)
    allocator.free(c)
    report = allocator.storage_report_full()
    assert report.free_regions[64].count == 2
    assert sum(region.count for region in report.free_regions) == 3


def test_free_regions_merge_back_to_single_region(allocator):
    handles = [allocator.allocate(size) for size in (10, 200, 3000, 40000)]
    for handle in reversed(handles):
        allocator.free(handle)
    report = allocator.storage_report_full()
    assert sum(region.count for region in report.free_regions) == 1
    assert allocator.storage_report().largest_free_region == 256 * MB