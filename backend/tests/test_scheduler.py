import threading

import pytest

from crashgame.services.rounds import SerialScheduler


@pytest.fixture()
def worker():
    scheduler = SerialScheduler()
    scheduler.start()
    yield scheduler
    scheduler.stop()


def test_run_before_start_is_inline():
    scheduler = SerialScheduler()
    assert scheduler.run(threading.get_ident) == threading.get_ident()


def test_run_executes_on_worker(worker):
    caller = threading.get_ident()
    assert worker.run(threading.get_ident) != caller
    assert worker.run(lambda a, b=0: a + b, 2, b=3) == 5


def test_run_propagates_errors(worker):
    def boom():
        raise ValueError('bad stake')

    with pytest.raises(ValueError):
        worker.run(boom)
    # worker survives
    assert worker.run(lambda: 'ok') == 'ok'


def test_nested_run_from_worker_does_not_deadlock(worker):
    assert worker.run(lambda: worker.run(lambda: 42)) == 42


def test_call_later_fires_in_due_order(worker):
    fired = []
    done = threading.Event()

    def record(label):
        fired.append(label)
        if len(fired) == 2:
            done.set()

    worker.call_later(0.05, record, 'second')
    worker.call_later(0.01, record, 'first')
    assert done.wait(2)
    assert fired == ['first', 'second']


def test_cancelled_timer_never_fires(worker):
    fired = threading.Event()
    after = threading.Event()
    handle = worker.call_later(0.02, fired.set)
    handle.cancel()
    worker.call_later(0.05, after.set)
    assert after.wait(2)
    assert not fired.is_set()


def test_timer_error_does_not_stop_worker(worker):
    def boom():
        raise RuntimeError('tick failed')

    ran = threading.Event()
    worker.call_later(0, boom)
    worker.call_later(0.01, ran.set)
    assert ran.wait(2)
    assert worker.run(lambda: 7) == 7


def test_timers_and_calls_do_not_interleave(worker):
    log = []
    done = threading.Event()

    def long_job(tag):
        log.append(('start', tag))
        for _ in range(1000):
            pass
        log.append(('end', tag))

    for i in range(5):
        worker.call_later(0, long_job, f"timer-{i}")
    threads = [threading.Thread(target=worker.run, args=(long_job, f"call-{i}")) for i in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(2)
    worker.call_later(0.02, done.set)
    assert done.wait(2)

    assert len(log) == 20
    for i in range(0, len(log), 2):
        assert log[i][0] == 'start'
        assert log[i + 1] == ('end', log[i][1])


def test_stop_cancels_timers():
    scheduler = SerialScheduler()
    scheduler.start()
    fired = threading.Event()
    scheduler.call_later(0.05, fired.set)
    scheduler.stop()
    assert not scheduler.running
    assert not fired.wait(0.2)
