"""Virus Combat - Turn Timer and Phase Table Tests"""

import os
import sys
import time
import unittest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from PySide6.QtCore import QCoreApplication

from combat.turn_structure import (
    LEGAL_TRANSITIONS,
    TURN_CYCLE,
    Phase,
    can_transition,
    display_name,
    is_terminal,
    next_phase_after,
)
from combat.turn_timer import TurnTimer

app = QCoreApplication.instance() or QCoreApplication([])


def process_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate() and time.monotonic() < deadline:
        app.processEvents()
        time.sleep(0.005)
    return predicate()


class TestTurnTimer(unittest.TestCase):

    def setUp(self):
        self.timer = TurnTimer(30.0)
        self.fired = []
        self.timer.expired.connect(lambda: self.fired.append(True))

    def tearDown(self):
        self.timer.stop()

    def test_force_expire_fires_once(self):
        self.timer.start()
        self.assertTrue(self.timer.force_expire())
        self.assertFalse(self.timer.force_expire())
        self.assertEqual(len(self.fired), 1)
        self.assertFalse(self.timer.is_running)

    def test_force_expire_without_start_does_nothing(self):
        self.assertFalse(self.timer.force_expire())
        self.assertEqual(self.fired, [])

    def test_elapsed_duration_fires(self):
        self.timer.start(0.02)
        self.assertTrue(process_until(lambda: self.fired))
        self.assertEqual(len(self.fired), 1)

    def test_restart_cancels_previous_countdown(self):
        self.timer.start(0.02)
        self.timer.start(30.0)
        time.sleep(0.05)
        app.processEvents()
        self.assertEqual(self.fired, [])
        self.assertTrue(self.timer.is_running)

    def test_stop_cancels_without_firing(self):
        self.timer.start(0.02)
        self.timer.stop()
        time.sleep(0.05)
        app.processEvents()
        self.assertEqual(self.fired, [])
        self.assertEqual(self.timer.remaining(), 0.0)

    def test_remaining_counts_down(self):
        self.timer.start(30.0)
        remaining = self.timer.remaining()
        self.assertGreater(remaining, 29.0)
        self.assertLessEqual(remaining, 30.0)


class TestPhaseTable(unittest.TestCase):

    def test_cycle_is_legal(self):
        for phase in TURN_CYCLE:
            self.assertTrue(can_transition(phase, next_phase_after(phase)))

    def test_no_self_loops(self):
        for phase in Phase:
            self.assertFalse(can_transition(phase, phase))

    def test_no_skipping(self):
        self.assertFalse(can_transition(Phase.STARTING, Phase.ENDING_LOCAL))
        self.assertFalse(can_transition(Phase.ACTION_ACTIVE, Phase.WAITING_FOR_SERVER))
        self.assertFalse(can_transition(Phase.WAITING_FOR_SERVER, Phase.ACTION_ACTIVE))

    def test_combat_end_reachable_from_every_live_phase(self):
        for phase in Phase:
            if phase is not Phase.COMBAT_ENDED:
                self.assertTrue(can_transition(phase, Phase.COMBAT_ENDED))

    def test_combat_ended_is_terminal(self):
        self.assertTrue(is_terminal(Phase.COMBAT_ENDED))
        self.assertEqual(LEGAL_TRANSITIONS[Phase.COMBAT_ENDED], frozenset())
        self.assertIsNone(next_phase_after(Phase.COMBAT_ENDED))

    def test_waiting_loops_back_to_starting(self):
        self.assertIs(next_phase_after(Phase.WAITING_FOR_SERVER), Phase.STARTING)

    def test_display_names(self):
        self.assertEqual(display_name(Phase.ACTION_ACTIVE), "Action")


if __name__ == '__main__':
    unittest.main()
