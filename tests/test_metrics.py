import pytest

from Lanforge.metrics import get_counter, get_counters, inc_counter, observe_histogram, timed


def test_counters_accumulate_and_reset_between_tests():
    assert get_counter("importer.server.imported") == 0
    inc_counter("importer.server.imported")
    inc_counter("importer.server.imported", 2)
    assert get_counter("importer.server.imported") == 3


def test_histogram_buckets_are_flattened():
    observe_histogram("h", 3, buckets=[1, 5])
    observe_histogram("h", 5)
    observe_histogram("h", 9)
    counters = get_counters()
    assert counters["histo.h.le_5"] == 2
    assert counters["histo.h.gt_5"] == 1
    assert counters["histo.h.sum"] == 17
    assert counters["histo.h.count"] == 3
    assert "histo.h.le_1" not in counters


def test_timed_records_only_successful_blocks():
    with timed("t"):
        pass
    with pytest.raises(ValueError):
        with timed("t"):
            raise ValueError("boom")
    assert get_counters()["histo.t.count"] == 1
