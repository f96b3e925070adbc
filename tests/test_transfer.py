from datetime import timedelta

import pytest

from requester.speeds import Speeds
from requester.transfer import (
    DEFAULT_BLOCK_SIZE,
    DownloadInstanceInfo,
    DownloadInstanceInfoExport,
    DownloadStatus,
    Range,
    RangeGenMode,
    block_size_range_gen,
    default_range_gen,
    instance_info_export_from_json,
    remaining_length,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_default_gen_small_file_single_range():
    gen = default_range_gen(1024, 0, 0, 10)
    index, r = gen.gen_range()
    assert index == 0
    assert r == Range(0, 1024)
    assert r.show_details() == "{0-1024}"
    assert gen.gen_range() == (1, None)
    assert gen.is_done()


def test_block_size_gen_1024_by_53():
    gen = block_size_range_gen(1024, 0, 53)
    results = []
    while True:
        index, r = gen.gen_range()
        if r is None:
            break
        results.append((index, r))
    assert len(results) == 20
    assert [i for i, _ in results] == list(range(20))
    assert results[0][1].show_details() == "{0-53}"
    assert results[1][1].show_details() == "{53-106}"
    assert results[-1][1].show_details() == "{1007-1024}"


def test_default_gen_splits_evenly_last_takes_rest():
    gen = default_range_gen(10_000_001, 0, 0, 4)
    ranges = list(gen)
    assert [r.show_details() for r in ranges] == [
        "{0-2500000}",
        "{2500000-5000000}",
        "{5000000-7500000}",
        "{7500000-10000001}",
    ]


def test_load_block_size_minimum():
    gen = default_range_gen(1000, 0, 0, 4)
    assert gen.load_block_size() == DEFAULT_BLOCK_SIZE


def test_block_size_gen_default_block_size():
    gen = block_size_range_gen(DEFAULT_BLOCK_SIZE * 2, 0, 0)
    _, r = gen.gen_range()
    assert r == Range(0, DEFAULT_BLOCK_SIZE)


def test_range_count():
    assert block_size_range_gen(10000, 0, 999).range_count() == 11
    assert block_size_range_gen(1000, 0, 100).range_count() == 10
    gen = default_range_gen(1024, 0, 0, 10)
    assert gen.range_count() == 10
    gen.gen_range()
    assert gen.range_count() == 9


def test_range_operations():
    r = Range(10, 50)
    assert r.length() == 40
    assert r.add_begin(15) == 25
    assert r.length() == 25
    assert remaining_length([Range(0, 5), None, Range(10, 30)]) == 25


def test_download_status_speeds_and_time_left():
    clock = FakeClock()
    status = DownloadStatus(total_size=1000, speeds_stat=Speeds(clock=clock))
    assert status.time_left() is None
    status.add_speeds_downloaded(100)
    status.add_downloaded(300)
    clock.now = 1.0
    status.update_speeds()
    assert status.speeds_per_second() == 100
    assert status.time_left() == timedelta(seconds=7)


def test_download_status_counters():
    status = DownloadStatus()
    status.add_total_size(50)
    status.add_total_size(25)
    status.add_downloaded(10)
    assert status.total_size == 75
    assert status.downloaded == 10
    assert status.time_elapsed() >= timedelta(0)


def test_max_speeds():
    status = DownloadStatus()
    status.update_max_speeds(50)
    status.update_max_speeds(20)
    assert status.max_speeds == 50
    status.clear_max_speeds()
    assert status.max_speeds == 0


def test_instance_info_round_trip_block_mode():
    gen = block_size_range_gen(1000, 600, 100)
    status = DownloadStatus(total_size=1000, range_gen=gen)
    info = DownloadInstanceInfo(status, [Range(450, 500), Range(580, 600)])

    export = DownloadInstanceInfoExport()
    export.set_instance_info(info)
    restored = instance_info_export_from_json(export.to_json())
    assert restored.range_gen_mode is RangeGenMode.BLOCK_SIZE
    assert restored.gen_begin == 600
    assert restored.block_size == 100

    rebuilt = restored.get_instance_info()
    assert rebuilt.ranges == [Range(450, 500), Range(580, 600)]
    assert rebuilt.download_status.downloaded == 530
    assert rebuilt.download_status.total_size == 1000
    assert rebuilt.download_status.range_gen.load_begin() == 600
    assert rebuilt.download_status.range_gen.gen_range()[1] == Range(600, 700)


def test_instance_info_default_mode():
    export = DownloadInstanceInfoExport(
        range_gen_mode=RangeGenMode.DEFAULT,
        total_size=1000,
        ranges=[Range(100, 250), Range(900, 1000)],
    )
    info = export.get_instance_info()
    assert info.download_status.downloaded == 750
    assert info.download_status.range_gen.is_done()
    assert info.download_status.range_gen.gen_range()[1] is None


def test_set_instance_info_without_gen():
    export = DownloadInstanceInfoExport(range_gen_mode=RangeGenMode.BLOCK_SIZE)
    export.set_instance_info(DownloadInstanceInfo(DownloadStatus(total_size=42), [Range(1, 2)]))
    assert export.range_gen_mode is RangeGenMode.DEFAULT
    assert export.total_size == 42
    assert export.ranges == [Range(1, 2)]


def test_set_instance_info_none_keeps_values():
    export = DownloadInstanceInfoExport(total_size=7)
    export.set_instance_info(None)
    assert export.total_size == 7


def test_from_json_invalid():
    with pytest.raises(ValueError):
        instance_info_export_from_json("not json")
    with pytest.raises(ValueError):
        instance_info_export_from_json("[1, 2]")