import threading
import time

from fincaskv.server_stats import ServerStats


def test_connection_count_goes_up_and_down():
    stats = ServerStats()
    opened, closed = 5, 2
    for _ in range(opened):
        stats.incr_conn_count()
    for _ in range(closed):
        stats.decr_conn_count()
    assert stats.conn_count == opened - closed


def test_counters_are_independent():
    stats = ServerStats()
    cmds, errors, slow = 4, 3, 2
    for _ in range(cmds):
        stats.incr_cmd_count()
    for _ in range(errors):
        stats.incr_error_count()
    for _ in range(slow):
        stats.incr_slow_count()
    assert (stats.cmd_count, stats.error_count, stats.slow_count) == (cmds, errors, slow)
    assert stats.conn_count == stats.bytes_sent == stats.bytes_received == 0


def test_byte_counters_accumulate():
    stats = ServerStats()
    received = [100, 250]
    sent = [64, 32, 16]
    for n in received:
        stats.add_bytes_received(n)
    for n in sent:
        stats.add_bytes_sent(n)
    assert stats.bytes_received == sum(received)
    assert stats.bytes_sent == sum(sent)


def test_start_time_defaults_to_now():
    before = time.time()
    stats = ServerStats()
    assert before <= stats.start_time <= time.time()


def test_concurrent_increments_are_not_lost():
    stats = ServerStats()
    threads_count, per_thread = 8, 2000

    def work():
        for _ in range(per_thread):
            stats.incr_cmd_count()
            stats.add_bytes_sent(2)

    threads = [threading.Thread(target=work) for _ in range(threads_count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert stats.cmd_count == threads_count * per_thread
    assert stats.bytes_sent == threads_count * per_thread * 2