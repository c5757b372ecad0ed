import logging

from nodestrap.logging.log import init_logging
from nodestrap.observers.dispatcher import EventBus
from nodestrap.observers.events import LifecycleEvent
from nodestrap.observers.interface import Observer
from nodestrap.observers.logger import LoggerObserver

# Simple capturing observer
class Capture(Observer):
    def __init__(self): self.events = []
    def notify(self, event): self.events.append(event)

class Broken(Observer):
    def notify(self, event): raise RuntimeError("observer bug")


def test_broken_observer_does_not_stop_others():
    cap = Capture()
    bus = EventBus(observers=[Broken(), cap])
    bus.emit(LifecycleEvent("register", "START", "Registering web1"))
    assert [e.phase for e in cap.events] == ["register"]


def test_logger_observer_and_log_file(tmp_path):
    logger, run_id, log_path = init_logging(base_dir=tmp_path, name="nodestrap-test")
    LoggerObserver(logger).notify(LifecycleEvent("execute", "FAILURE", "exit 3"))
    for h in logger.handlers:
        h.flush()

    text = log_path.read_text()
    assert run_id in text
    assert "[EVENT] execute.FAILURE: exit 3" in text
    assert logger.level == logging.DEBUG
