"""
End-to-end tests for the drowsiness session and the signal replay CLI.
"""

import sys
import os
import csv
import io
import json
import math
import tempfile
import unittest
from contextlib import redirect_stdout

import numpy as np

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import main as cli
from drowsiness_tcn.core.clock import TickOrderError
from drowsiness_tcn.core.features import FEATURE_ORDER, SchemaMismatchError
from drowsiness_tcn.core.normalization import NormalizationStatus
from drowsiness_tcn.core.pipeline import DrowsinessSession, FrameInput
from drowsiness_tcn.core.temporal_window import ClassifierStatus
from drowsiness_tcn.utils.config import Config, config as global_config

FPS = 15


class StubClassifier:
    n_features = 20
    window_length = 90

    def __init__(self, probability=0.8):
        self.probability = probability
        self.calls = 0

    def predict(self, window):
        self.calls += 1
        return self.probability


def awake_frame(**overrides):
    values = dict(yaw=0.0, pitch=0.0, roll=0.0, eye_open_prob=0.9, yawn_prob=0.1)
    values.update(overrides)
    return FrameInput(**values)


def run(session, frames, start=0):
    return [session.process_tick(f, (start + i) / FPS) for i, f in enumerate(frames)]


class TestDrowsinessSession(unittest.TestCase):
    """Full per-tick chain."""

    def test_warm_up_then_classify(self):
        clf = StubClassifier(0.8)
        session = DrowsinessSession(clf, Config())
        results = run(session, [awake_frame()] * 90)

        for r in results[:89]:
            self.assertEqual(r.classifier.status, ClassifierStatus.WARMING_UP)
            self.assertIsNone(r.probability)
        self.assertEqual(results[88].classifier.describe(), "warming 89/90...")
        self.assertEqual(results[89].classifier.status, ClassifierStatus.READY)
        self.assertTrue(results[89].drowsy)
        self.assertEqual(clf.calls, 1)
        self.assertEqual(results[89].normalization_status, NormalizationStatus.DISABLED)

    def test_feature_engine_without_classifier(self):
        session = DrowsinessSession(None, Config())
        result = run(session, [awake_frame()])[0]
        self.assertEqual(result.classifier.status, ClassifierStatus.NOT_LOADED)
        self.assertEqual(len(result.features.as_list()), 20)
        np.testing.assert_array_equal(result.normalized, result.features.as_array())

    def test_missing_signals_use_defaults(self):
        session = DrowsinessSession(None, Config())
        result = session.process_tick(FrameInput(), 0.0)
        values = result.features.as_dict()
        self.assertTrue(all(math.isfinite(v) for v in values.values()))
        self.assertEqual(values['eye_open_unified'], 0.5)
        self.assertEqual(values['ema_eye_open_1s'], 0.5)
        self.assertEqual(values['yawn_prob_ema_1s'], 0.0)
        self.assertEqual(values['time_since_last_blink_s'], 30.0)

    def test_blink_through_session(self):
        session = DrowsinessSession(None, Config())
        frames = [awake_frame(eye_open_prob=0.2)] * 3 + [awake_frame()] * 60
        results = run(session, frames)

        self.assertTrue(results[4].blink)
        self.assertAlmostEqual(results[4].features.time_since_last_blink_s, 0.0)
        summary = session.get_session_summary()
        self.assertEqual(summary['blinks'], 1)
        self.assertEqual(summary['total_ticks'], 63)
        self.assertEqual([e['event'] for e in session.session_events], ['blink'])

    def test_nod_through_session(self):
        session = DrowsinessSession(None, Config())
        results = run(session, [awake_frame(eye_open_prob=0.1, pitch=-6.0)] * 20)
        nods = [r.nod_active for r in results]
        self.assertEqual(nods.index(True), 12)
        self.assertTrue(all(nods[12:]))
        summary = session.get_session_summary()
        self.assertEqual(summary['nod_ticks'], 8)
        self.assertEqual(summary['prolonged_eye_episodes'], 1)

    def test_yawn_through_session(self):
        session = DrowsinessSession(None, Config())
        frames = [awake_frame(yawn_prob=0.95)] * 60 + [awake_frame(yawn_prob=0.0)] * 30
        results = run(session, frames)
        self.assertTrue(any(r.yawn_prolonged for r in results))
        self.assertEqual(sum(r.yawn_event for r in results), 1)
        self.assertEqual(session.get_session_summary()['yawns'], 1)

    def test_per_eye_probabilities(self):
        session = DrowsinessSession(None, Config())
        result = session.process_tick(awake_frame(eye_open_prob=None, left_eye_prob=0.2,
                                                  right_eye_prob=0.8), 0.0)
        self.assertAlmostEqual(result.features.eye_open_unified, 0.5)

    def test_axes_are_baseline_relative(self):
        a = math.radians(15.0)
        axes = (np.array([math.cos(a), 0.0, -math.sin(a)]),
                np.array([0.0, 1.0, 0.0]),
                np.array([math.sin(a), 0.0, math.cos(a)]))
        session = DrowsinessSession(None, Config())
        first, second = run(session, [FrameInput(axes=axes, eye_open_prob=0.9)] * 2)

        self.assertAlmostEqual(first.pose.yaw, 15.0)
        self.assertAlmostEqual(second.pose.yaw, 0.0, places=9)
        self.assertEqual(first.dominant_eye, "right")
        self.assertTrue(session.baseline.is_captured)

    def test_normalization_collects_then_ready(self):
        session = DrowsinessSession(StubClassifier(0.2), Config(), normalization_enabled=True)
        results = run(session, [awake_frame()] * 160)

        self.assertEqual(results[0].normalization_status, NormalizationStatus.COLLECTING)
        self.assertEqual(results[0].classifier.status, ClassifierStatus.AWAITING_NORMALIZATION)
        self.assertEqual(results[149].normalization_status, NormalizationStatus.COLLECTING)
        self.assertEqual(results[150].normalization_status, NormalizationStatus.READY)
        self.assertEqual(results[159].classifier.status, ClassifierStatus.READY)
        summary = session.get_session_summary()
        self.assertEqual(summary['normalization_samples'], 151)
        self.assertEqual(len(summary['normalization_mean']), 20)

    def test_normalization_unstable_with_sparse_ticks(self):
        session = DrowsinessSession(None, Config(), normalization_enabled=True)
        results = [session.process_tick(awake_frame(), t) for t in (0.0, 5.0, 10.0, 11.0)]
        self.assertEqual(results[2].normalization_status, NormalizationStatus.UNSTABLE)
        np.testing.assert_array_equal(results[3].normalized, results[3].features.as_array())

    def test_normalization_toggle_applies_on_reset(self):
        session = DrowsinessSession(None, Config())
        session.set_normalization_enabled(True)
        result = session.process_tick(awake_frame(), 0.0)
        self.assertEqual(result.normalization_status, NormalizationStatus.DISABLED)

        session.reset_session()
        result = session.process_tick(awake_frame(), 0.0)
        self.assertEqual(result.normalization_status, NormalizationStatus.COLLECTING)

    def test_reset_clears_state(self):
        session = DrowsinessSession(StubClassifier(), Config(), session_id="first")
        run(session, [awake_frame(eye_open_prob=0.2)] * 3 + [awake_frame()] * 100)
        session.reset_session("second")

        self.assertEqual(session.session_id, "second")
        self.assertEqual(len(session.window), 0)
        self.assertEqual(len(session.eye.runs), 0)
        self.assertEqual(session.session_stats['total_ticks'], 0)
        self.assertEqual(session.session_events, [])
        result = session.process_tick(awake_frame(), 0.0)
        self.assertEqual(result.tick.index, 0)
        self.assertEqual(result.features.time_since_last_blink_s, 30.0)

    def test_out_of_order_timestamp(self):
        session = DrowsinessSession(None, Config())
        session.process_tick(awake_frame(), 1.0)
        with self.assertRaises(TickOrderError):
            session.process_tick(awake_frame(), 0.5)

    def test_invalid_configuration(self):
        cfg = Config()
        cfg.classifier.off_threshold = 0.9
        with self.assertRaises(ValueError):
            DrowsinessSession(None, cfg)

    def test_classifier_schema_mismatch(self):
        clf = StubClassifier()
        clf.n_features = 19
        with self.assertRaises(SchemaMismatchError):
            DrowsinessSession(clf, Config())

    def test_save_session_data(self):
        session = DrowsinessSession(None, Config(), session_id="saved")
        run(session, [awake_frame()] * 5)
        with tempfile.TemporaryDirectory() as tmp:
            path = session.save_session_data(os.path.join(tmp, "session.json"))
            with open(path) as f:
                data = json.load(f)
        self.assertEqual(data['session_id'], "saved")
        self.assertEqual(data['summary']['total_ticks'], 5)
        self.assertAlmostEqual(data['summary']['session_duration'], 4 / FPS)


class TestReplayCli(unittest.TestCase):
    """Signal CSV replay through main()."""

    def write_signals(self, path, rows=30):
        with open(path, 'w', newline='') as f:
            writer = csv.writer(f)
            writer.writerow(["timestamp", "yaw", "pitch", "roll", "eye_prob", "yawn_prob"])
            for i in range(rows):
                eye = 0.2 if i in (5, 6, 7) else 0.9
                writer.writerow([f"{i / FPS:.6f}", 1.0, -1.0, 0.5, eye, 0.1])

    def test_replay_writes_features(self):
        with tempfile.TemporaryDirectory() as tmp:
            signals = os.path.join(tmp, "signals.csv")
            output = os.path.join(tmp, "features.csv")
            session_file = os.path.join(tmp, "session.json")
            self.write_signals(signals)

            with redirect_stdout(io.StringIO()) as out:
                code = cli.main(["--input", signals, "--output", output,
                                 "--save-session", session_file, "--session-id", "cli"])
            self.assertEqual(code, 0)
            self.assertIn("SESSION SUMMARY", out.getvalue())

            with open(output, newline='') as f:
                rows = list(csv.DictReader(f))
            self.assertEqual(len(rows), 30)
            for name in FEATURE_ORDER:
                self.assertIn(name, rows[0])
            self.assertEqual(sum(int(r['blink']) for r in rows), 1)

            with open(session_file) as f:
                self.assertEqual(json.load(f)['summary']['blinks'], 1)

    def test_overrides_leave_global_config_untouched(self):
        with tempfile.TemporaryDirectory() as tmp:
            signals = os.path.join(tmp, "signals.csv")
            self.write_signals(signals, rows=5)
            with redirect_stdout(io.StringIO()):
                code = cli.main(["--input", signals, "--fps", "30", "--device", "cuda:0"])
        self.assertEqual(code, 0)
        self.assertEqual(global_config.fps, 15)
        self.assertEqual(global_config.classifier.device, "cpu")

    def test_missing_columns(self):
        with tempfile.TemporaryDirectory() as tmp:
            signals = os.path.join(tmp, "bad.csv")
            with open(signals, 'w') as f:
                f.write("timestamp,eye_prob\n0.0,0.9\n")
            with redirect_stdout(io.StringIO()):
                self.assertEqual(cli.main(["--input", signals]), 1)


if __name__ == '__main__':
    unittest.main()
