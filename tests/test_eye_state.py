"""
Unit tests for the eye state machine.
"""

import sys
import os
import math
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from drowsiness_tcn.core.clock import Tick
from drowsiness_tcn.core.eye_state import EyeStateMachine, ema_alpha, unify_eye_probabilities
from drowsiness_tcn.core.ring_buffer import Run
from drowsiness_tcn.utils.config import Config

OPEN = 0.9
CLOSED = 0.2
FPS = 15


def feed(machine, probs, start=0):
    """Push a sequence of probabilities at 15 Hz; returns the observations."""
    return [machine.update(p, Tick(start + i, (start + i) / FPS)) for i, p in enumerate(probs)]


class TestEyeDebounce(unittest.TestCase):
    """Closure must persist for two ticks before it is reported."""

    def setUp(self):
        self.eye = EyeStateMachine(Config())

    def test_single_closed_tick_is_ignored(self):
        obs = feed(self.eye, [OPEN, CLOSED, OPEN, OPEN, OPEN])
        self.assertTrue(obs[1].raw_closed)
        self.assertFalse(any(o.closed for o in obs))
        self.assertEqual(len(self.eye.runs), 0)

    def test_two_closed_ticks_close(self):
        obs = feed(self.eye, [OPEN, CLOSED, CLOSED])
        self.assertFalse(obs[1].closed)
        self.assertTrue(obs[2].closed)
        self.assertEqual(obs[2].run_length_frames, 1)

    def test_single_open_tick_does_not_reopen(self):
        obs = feed(self.eye, [CLOSED, CLOSED, CLOSED, OPEN, CLOSED, CLOSED])
        self.assertTrue(all(o.closed for o in obs[1:]))

    def test_missing_probability_counts_as_open(self):
        obs = feed(self.eye, [None, float('nan')])
        self.assertFalse(obs[0].raw_closed)
        self.assertTrue(math.isnan(obs[0].ema_1s))


class TestBlinkClassification(unittest.TestCase):
    """Closed runs of 2..6 frames are blinks."""

    def run_of(self, n):
        eye = EyeStateMachine(Config())
        obs = feed(eye, [OPEN] * 3 + [CLOSED] * n + [OPEN] * 5)
        return eye, obs

    def test_blink_lengths(self):
        for n in range(2, 7):
            eye, obs = self.run_of(n)
            runs = list(eye.runs)
            self.assertEqual(len(runs), 1, f"run of {n}")
            self.assertEqual(runs[0].length_frames, n)
            self.assertEqual(sum(o.blink for o in obs), 1, f"run of {n}")

    def test_non_blink_lengths(self):
        eye, obs = self.run_of(1)
        self.assertEqual(sum(o.blink for o in obs), 0)
        self.assertEqual(len(eye.runs), 0)

        eye, obs = self.run_of(7)
        self.assertEqual(list(eye.runs)[0].length_frames, 7)
        self.assertEqual(sum(o.blink for o in obs), 0)

    def test_is_blink_bounds(self):
        eye = EyeStateMachine(Config())
        self.assertFalse(eye.is_blink(Run(0.0, 0, 0.0)))
        self.assertFalse(eye.is_blink(Run(0.0, 1, 1 / FPS)))
        self.assertTrue(eye.is_blink(Run(0.0, 2, 2 / FPS)))
        self.assertTrue(eye.is_blink(Run(0.0, 6, 6 / FPS)))
        self.assertFalse(eye.is_blink(Run(0.0, 7, 7 / FPS)))

    def test_blink_then_open_timeline(self):
        eye = EyeStateMachine(Config())
        obs = feed(eye, [CLOSED] * 3 + [OPEN] * 60)

        self.assertEqual(sum(o.blink for o in obs), 1)
        self.assertTrue(obs[4].blink)
        self.assertAlmostEqual(obs[4].max_close_run_10s, 3 / FPS)

        # Before the first blink the feature reads the cap
        self.assertEqual(obs[0].time_since_last_blink_s, 30.0)
        self.assertAlmostEqual(obs[4].time_since_last_blink_s, 0.0)
        for k in range(1, 59):
            self.assertAlmostEqual(obs[4 + k].time_since_last_blink_s, k / FPS, places=9)
        self.assertAlmostEqual(obs[-1].blink_rate_30s, 1 / 30.0)

    def test_blink_ages_out(self):
        eye = EyeStateMachine(Config())
        feed(eye, [CLOSED] * 3 + [OPEN] * 2)
        obs = feed(eye, [OPEN] * 460, start=5)
        self.assertEqual(obs[-1].time_since_last_blink_s, 30.0)
        self.assertEqual(obs[-1].blink_rate_30s, 0.0)
        self.assertEqual(obs[-1].max_close_run_10s, 0.0)
        self.assertEqual(len(eye.runs), 0)


class TestProlongedClosure(unittest.TestCase):
    """Prolonged closure fires at 12 frames with a 30 tick lockout."""

    def setUp(self):
        self.eye = EyeStateMachine(Config())

    def test_threshold_in_frames(self):
        self.assertEqual(self.eye.prolonged_frames, 12)
        self.assertEqual(self.eye.prolonged_lockout, 30)

    def test_prolonged_onset_and_clear(self):
        obs = feed(self.eye, [CLOSED] * 20 + [OPEN] * 2)
        flags = [o.prolonged for o in obs]
        self.assertEqual(flags.index(True), 12)
        self.assertAlmostEqual(obs[12].close_duration_s, 12 / FPS)
        # Still debounced-closed on the first open tick
        self.assertTrue(obs[20].prolonged)
        self.assertFalse(obs[21].closed)
        self.assertFalse(obs[21].prolonged)

    def test_lockout_blocks_second_episode(self):
        obs = feed(self.eye, [CLOSED] * 20 + [OPEN] * 2 + [CLOSED] * 30)
        flags = [o.prolonged for o in obs]
        # Second run reaches 12 frames at tick 34, lockout expires at tick 42
        self.assertFalse(any(flags[22:42]))
        self.assertTrue(flags[42])

    def test_long_closure_is_not_a_blink(self):
        obs = feed(self.eye, [CLOSED] * 20 + [OPEN] * 2)
        self.assertFalse(any(o.blink for o in obs))
        self.assertAlmostEqual(obs[-1].max_close_run_10s, 20 / FPS)


class TestEyeStatistics(unittest.TestCase):

    def test_perclos(self):
        eye = EyeStateMachine(Config())
        obs = feed(eye, [CLOSED, OPEN] * 15)
        self.assertAlmostEqual(obs[-1].perclos_30s, 0.5)

    def test_ema_seeding_and_trend(self):
        eye = EyeStateMachine(Config())
        obs = feed(eye, [None, 0.8, 0.2])
        self.assertTrue(math.isnan(obs[0].ema_1s))
        self.assertEqual(obs[1].ema_1s, 0.8)
        self.assertEqual(obs[1].trend, 0.0)

        a1 = ema_alpha(1 / FPS, 1.0)
        a5 = ema_alpha(1 / FPS, 5.0)
        self.assertAlmostEqual(obs[2].ema_1s, 0.8 + a1 * (0.2 - 0.8))
        self.assertAlmostEqual(obs[2].ema_5s, 0.8 + a5 * (0.2 - 0.8))
        self.assertLess(obs[2].trend, 0.0)

    def test_reset(self):
        eye = EyeStateMachine(Config())
        feed(eye, [CLOSED] * 3 + [OPEN] * 2)
        eye.reset()
        self.assertIsNone(eye.last_blink_time)
        self.assertIsNone(eye.ema_short)
        self.assertEqual(len(eye.runs), 0)
        self.assertEqual(len(eye.closed_samples), 0)


class TestUnifyEyeProbabilities(unittest.TestCase):

    def test_frontal_is_mean(self):
        self.assertAlmostEqual(unify_eye_probabilities(0.2, 0.8, 0.0), 0.5)

    def test_turned_face_downweights_far_eye(self):
        self.assertAlmostEqual(unify_eye_probabilities(0.2, 0.8, 20.0), (0.2 + 0.8 * 0.1) / 1.1)
        self.assertAlmostEqual(unify_eye_probabilities(0.2, 0.8, -40.0), (0.2 * 0.1 + 0.8) / 1.1)

    def test_missing_side(self):
        self.assertEqual(unify_eye_probabilities(None, 0.7, 5.0), 0.7)
        self.assertEqual(unify_eye_probabilities(0.3, float('nan'), 5.0), 0.3)
        self.assertTrue(math.isnan(unify_eye_probabilities(None, None, 0.0)))


if __name__ == '__main__':
    unittest.main()
