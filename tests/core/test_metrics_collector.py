from core import metrics


def test_counters_and_labels():
    metrics.inc("chat_messages_total", {"role": "user"})
    metrics.inc("chat_messages_total", {"role": "user"})
    metrics.inc("chat_messages_total", {"role": "assistant"})
    assert metrics.counter_value("chat_messages_total", {"role": "user"}) == 2
    snap = metrics.snapshot()
    assert snap["counters"]["chat_messages_total{role=assistant}"] == 1
    assert metrics.counter_value("missing_total") == 0


def test_histogram_summary_and_cap():
    for v in range(2000):
        metrics.observe("llm_request_latency_ms", float(v), {"model": "m"})
    h = metrics.snapshot()["histograms"]["llm_request_latency_ms{model=m}"]
    assert h["count"] == 1024
    assert h["max"] == 1999.0
    assert h["min"] == 2000.0 - 1024
    assert h["last"] == 1999.0


def test_reset_for_tests():
    metrics.inc("ws_connections_total")
    metrics.reset_for_tests()
    assert metrics.snapshot()["counters"] == {}
