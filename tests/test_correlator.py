import threading

from devbridge.bridge.correlator import RequestCorrelator


def test_take_method_is_one_shot():
    correlator = RequestCorrelator()
    request_id = correlator.issue("RPCServer.State")

    assert correlator.take_method(request_id) == "RPCServer.State"
    assert correlator.take_method(request_id) == ""
    assert len(correlator) == 0


def test_unknown_id_yields_empty_method():
    correlator = RequestCorrelator()

    assert correlator.take_method(12345) == ""
    assert correlator.take_method(None) == ""


def test_ids_increase_monotonically():
    correlator = RequestCorrelator()
    first = correlator.next_id()
    correlator.remember(first, "RPCServer.Command")
    second = correlator.issue("RPCServer.Stacktrace")

    assert second == first + 1
    assert correlator.take_method(first) == "RPCServer.Command"
    assert correlator.take_method(second) == "RPCServer.Stacktrace"


def test_ids_are_unique_across_threads():
    correlator = RequestCorrelator()
    seen = []
    lock = threading.Lock()

    def worker():
        ids = [correlator.issue("m") for _ in range(500)]
        with lock:
            seen.extend(ids)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(seen) == 4000
    assert len(set(seen)) == 4000
    assert len(correlator) == 4000
