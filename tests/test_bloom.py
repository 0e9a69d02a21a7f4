import pytest

from fincaskv.bloom import (
    DEFAULT_HASH_FUNCS,
    BloomConfig,
    ShardedBloomFilter,
    is_power_of_two,
    next_power_of_2,
    optimal_bits,
    optimal_hash_funcs,
)

STAT_KEYS = [
    "total_bits",
    "num_items",
    "num_shards",
    "bits_per_shard",
    "num_hash_funcs",
    "auto_scale",
    "estimated_fpp",
    "current_fill_rate",
]


def _filter():
    return ShardedBloomFilter(BloomConfig(expected_elements=1000, false_positive_rate=0.01))


def test_valid_config():
    bf = ShardedBloomFilter(
        BloomConfig(
            expected_elements=1000,
            false_positive_rate=0.01,
            auto_scale=True,
            num_shards=16,
            bits_per_shard=1024,
            num_hash_funcs=4,
        )
    )
    assert bf.shard_count() == 16
    assert bf.stats()["auto_scale"] is True


def test_zero_expected_elements():
    with pytest.raises(ValueError, match="expected elements"):
        ShardedBloomFilter(BloomConfig(expected_elements=0, false_positive_rate=0.01))


@pytest.mark.parametrize("rate", [0, 1, -0.5, 1.5])
def test_invalid_false_positive_rate(rate):
    with pytest.raises(ValueError, match="false positive rate"):
        ShardedBloomFilter(BloomConfig(expected_elements=1000, false_positive_rate=rate))


def test_non_power_of_two_shards_rounded_up():
    bf = ShardedBloomFilter(
        BloomConfig(expected_elements=1000, false_positive_rate=0.01, num_shards=10)
    )
    assert bf.shard_count() == 16


@pytest.mark.parametrize(
    "elements, check, want",
    [
        ([b"test1"], b"test1", True),
        ([b"test1"], b"test2", False),
        ([b"test1"], b"", False),
        ([b"test1", b"test2", b"test3"], b"test2", True),
    ],
)
def test_add_and_contains(elements, check, want):
    bf = _filter()
    for elem in elements:
        bf.add(elem)
    assert bf.contains(check) is want


def test_add_empty_raises():
    bf = _filter()
    with pytest.raises(ValueError, match="empty data"):
        bf.add(b"")


def test_in_operator():
    bf = _filter()
    bf.add(b"present")
    assert b"present" in bf
    assert b"" not in bf


@pytest.mark.parametrize("elements", [[b"test1", b"test2"], []])
def test_reset(elements):
    bf = _filter()
    for elem in elements:
        bf.add(elem)
    bf.reset()
    for elem in elements:
        assert not bf.contains(elem)
    assert bf.stats()["num_items"] == 0


@pytest.mark.parametrize("num_elements, expected_growth", [(1000, True), (10, False)])
def test_auto_scale(num_elements, expected_growth):
    bf = ShardedBloomFilter(
        BloomConfig(
            expected_elements=100, false_positive_rate=0.01, auto_scale=True, num_shards=16
        )
    )
    initial = bf.shard_count()
    for i in range(num_elements):
        bf.add(str(i).encode())
    final = bf.shard_count()
    if expected_growth:
        assert final > initial
    else:
        assert final == initial


@pytest.mark.parametrize("elements", [[], [b"test1", b"test2"]])
def test_stats(elements):
    bf = _filter()
    for elem in elements:
        bf.add(elem)
    stats = bf.stats()
    for key in STAT_KEYS:
        assert key in stats
    assert stats["num_items"] == len(elements)
    assert 0 <= stats["current_fill_rate"] <= 1


def test_estimated_fpp_zero_when_empty_and_grows():
    bf = _filter()
    assert bf.stats()["estimated_fpp"] == 0
    bf.add(b"a")
    first = bf.stats()["estimated_fpp"]
    bf.add(b"b")
    assert 0 < first < bf.stats()["estimated_fpp"] < 1


def test_helpers():
    assert is_power_of_two(16) and not is_power_of_two(7)
    assert not is_power_of_two(0)
    assert next_power_of_2(7) == 8
    assert next_power_of_2(8) == 8
    assert optimal_bits(1000, 0.01) > 0
    assert optimal_hash_funcs(1000, 10000) >= DEFAULT_HASH_FUNCS


def test_no_false_negatives():
    bf = _filter()
    items = [f"key-{i}".encode() for i in range(500)]
    for item in items:
        bf.add(item)
    assert all(bf.contains(item) for item in items)