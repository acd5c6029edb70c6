import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from quotesync.connectivity import ConnectivityMonitor, ConnectivityState, OFFLINE


def test_effective_state_needs_both_flags():
    assert ConnectivityState(True, True).online
    assert not ConnectivityState(True, False).online
    assert not ConnectivityState(False, True).online


def test_subscriber_gets_initial_then_transitions_in_order():
    monitor = ConnectivityMonitor()
    seen = []
    monitor.subscribe(seen.append)
    monitor.publish(True, True)
    monitor.publish(True, True)  # duplicate, not re-delivered
    monitor.publish(True, False)
    monitor.publish(False, False)
    assert monitor.flush(timeout=2)
    assert seen == [
        OFFLINE,
        ConnectivityState(True, True),
        ConnectivityState(True, False),
        ConnectivityState(False, False),
    ]
    assert monitor.current() == OFFLINE
    monitor.stop()


def test_late_subscriber_gets_current_state_once():
    monitor = ConnectivityMonitor()
    monitor.publish(True, True)
    seen = []
    monitor.subscribe(seen.append)
    monitor.flush(timeout=2)
    assert seen == [ConnectivityState(True, True)]
    monitor.stop()


def test_reachable_defaults_to_connected():
    monitor = ConnectivityMonitor()
    monitor.publish(True)
    monitor.flush(timeout=2)
    assert monitor.current().online
    monitor.stop()


def test_failing_subscriber_does_not_block_others():
    monitor = ConnectivityMonitor()
    seen = []

    def boom(state):
        raise RuntimeError('subscriber bug')

    monitor.subscribe(boom)
    monitor.subscribe(seen.append)
    monitor.publish(True, True)
    monitor.flush(timeout=2)
    assert seen[-1].online
    monitor.stop()


def test_unsubscribe_stops_delivery():
    monitor = ConnectivityMonitor()
    seen = []
    unsubscribe = monitor.subscribe(seen.append)
    monitor.flush(timeout=2)
    unsubscribe()
    monitor.publish(True, True)
    monitor.flush(timeout=2)
    assert seen == [OFFLINE]
    monitor.stop()


def test_sensor_failure_means_offline():
    class BrokenSensor:
        def start(self, publish):
            raise OSError('no network service')

    monitor = ConnectivityMonitor(BrokenSensor(), initial=ConnectivityState(True, True))
    assert monitor.sensor_failed
    assert monitor.current() == OFFLINE
    monitor.stop()


def test_sensor_pushes_through_publish():
    class Sensor:
        def start(self, publish):
            self.publish = publish
            publish(True, True)

    sensor = Sensor()
    monitor = ConnectivityMonitor(sensor)
    monitor.flush(timeout=2)
    assert monitor.current().online
    sensor.publish(False, False)
    monitor.flush(timeout=2)
    assert not monitor.current().online
    monitor.stop()
