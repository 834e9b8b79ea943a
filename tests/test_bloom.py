import pytest

from hyperlinkr.bloom import SHARD_COUNT, BloomShard, ShardedBloom


def test_empty_shard_contains_nothing():
    shard = BloomShard(1024, 100)
    assert not any(shard.contains(f"key{n}") for n in range(100))


def test_shard_has_no_false_negatives():
    shard = BloomShard(4096, 200)
    keys = [f"code{n}" for n in range(200)]
    for key in keys:
        shard.insert(key)
    assert all(shard.contains(key) for key in keys)


def test_shard_insert_reports_previous_presence():
    shard = BloomShard(4096, 100)
    assert shard.insert(b"abc") is False
    assert shard.insert(b"abc") is True


def test_str_and_bytes_keys_agree():
    shard = BloomShard(4096, 100)
    shard.insert("hello")
    assert shard.contains(b"hello")


def test_shard_rejects_zero_bits():
    with pytest.raises(ValueError):
        BloomShard(0, 10)


def test_shard_uses_at_least_one_hash():
    shard = BloomShard(8, 1_000_000)
    assert shard.num_hashes >= 1


def test_sharded_bloom_uses_sixteen_shards():
    bloom = ShardedBloom(1_048_576, 100_000)
    assert bloom.shard_count == 16
    assert len(bloom.shards) == SHARD_COUNT


def test_shard_sizes_round_up():
    bloom = ShardedBloom(1_048_577, 100_000)
    assert all(shard.num_bits * SHARD_COUNT >= 1_048_577 for shard in bloom.shards)


def test_shard_index_in_range_and_stable():
    bloom = ShardedBloom(1_048_576, 100_000)
    for n in range(200):
        key = f"k{n}"
        index = bloom.shard_index(key)
        assert 0 <= index < SHARD_COUNT
        assert bloom.shard_index(key) == index


def test_keys_spread_over_several_shards():
    bloom = ShardedBloom(1_048_576, 100_000)
    indices = {bloom.shard_index(f"k{n}") for n in range(500)}
    assert len(indices) > 1


def test_sharded_bloom_membership():
    bloom = ShardedBloom(1_048_576, 100_000)
    keys = [f"url:{n}" for n in range(1000)]
    for key in keys:
        bloom.insert(key)
    assert all(bloom.contains(key) for key in keys)
    false_positives = sum(bloom.contains(f"absent:{n}") for n in range(1000))
    assert false_positives < 50


def test_sharded_insert_lands_in_its_shard():
    bloom = ShardedBloom(1_048_576, 100_000)
    bloom.insert("abc")
    assert bloom.shards[bloom.shard_index("abc")].contains("abc")