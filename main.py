#!/usr/bin/env python3
"""
Main entry point for the drowsiness feature engine.
Replays recorded per-frame signals through a session from the command line.
"""

import argparse
import copy
import csv
import logging
import math
import sys
from typing import Dict, Iterator, Optional, Tuple

from drowsiness_tcn.core.features import FEATURE_ORDER
from drowsiness_tcn.core.pipeline import DrowsinessSession, FrameInput, TickResult
from drowsiness_tcn.core.temporal_window import TorchTemporalClassifier
from drowsiness_tcn.utils.config import Config, config as default_config

REQUIRED_COLUMNS = ("yaw", "pitch", "roll")
STATE_COLUMNS = ("eye_closed", "blink", "prolonged_eye", "mouth_open",
                 "yawn_event", "yawn_prolonged", "nod_active", "drowsy")


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Streaming drowsiness feature engine (signal replay)")

    parser.add_argument("--input", "-i", type=str, required=True,
                        help="CSV of per-frame signals: timestamp,yaw,pitch,roll,eye_prob,yawn_prob "
                             "(optional left_eye_prob,right_eye_prob)")
    parser.add_argument("--output", "-o", type=str, default="",
                        help="Write per-tick features and states to this CSV (optional)")
    parser.add_argument("--fps", "-f", type=int, default=None,
                        help="Tick rate when the input has no timestamp column (default: config, 15)")
    parser.add_argument("--config", "-c", type=str, default="",
                        help="JSON configuration file (optional)")
    parser.add_argument("--normalize", "-n", action="store_true",
                        help="Collect per-session baseline mean/stddev and z-score features")
    parser.add_argument("--model", "-m", type=str, default="",
                        help="TorchScript temporal classifier (default: config classifier.model_path)")
    parser.add_argument("--device", type=str, default="",
                        help="Device for the classifier, cpu or cuda[:N] (default: config)")
    parser.add_argument("--session-id", type=str, default="",
                        help="Session ID for tracking (optional)")
    parser.add_argument("--save-session", type=str, default="",
                        help="Write session summary and events to this JSON file (optional)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Enable verbose output")

    return parser.parse_args(argv)


def _to_float(value: Optional[str]) -> Optional[float]:
    if value is None or value.strip() == "":
        return None
    try:
        return float(value)
    except ValueError:
        return float('nan')


def read_signals(path: str, fps: int) -> Iterator[Tuple[float, FrameInput]]:
    """Yield (timestamp, FrameInput) for each row of a signal CSV."""
    with open(path, newline='') as f:
        reader = csv.DictReader(f)
        missing = [c for c in REQUIRED_COLUMNS if c not in (reader.fieldnames or [])]
        if missing:
            raise ValueError(f"Input is missing columns: {', '.join(missing)}")

        for index, row in enumerate(reader):
            timestamp = _to_float(row.get("timestamp"))
            if timestamp is None or not math.isfinite(timestamp):
                timestamp = index / fps
            frame = FrameInput(
                yaw=_to_float(row.get("yaw")) or 0.0,
                pitch=_to_float(row.get("pitch")) or 0.0,
                roll=_to_float(row.get("roll")) or 0.0,
                eye_open_prob=_to_float(row.get("eye_prob")),
                yawn_prob=_to_float(row.get("yawn_prob")),
                left_eye_prob=_to_float(row.get("left_eye_prob")),
                right_eye_prob=_to_float(row.get("right_eye_prob")),
            )
            yield timestamp, frame


def load_classifier(model_path: str, device: str = "cpu", window_length: Optional[int] = None):
    """Load the TorchScript classifier if a path was given."""
    if not model_path:
        return None
    return TorchTemporalClassifier.from_torchscript(model_path, device=device,
                                                    window_length=window_length)


def print_status(result: TickResult, verbose: bool = False, fps: int = 15):
    """Print status information."""
    flags = [name for name, on in result.states().items() if on]
    if verbose:
        pose = result.pose
        print(f"Tick {result.tick.index:5d} | t={result.tick.timestamp:7.2f}s | "
              f"Pose: {pose.yaw:6.1f}/{pose.pitch:6.1f}/{pose.roll:6.1f} | "
              f"PERCLOS: {result.eye.perclos_30s:.2f} | "
              f"Yawn EMA: {result.features.yawn_prob_ema_1s:.2f} | "
              f"{result.classifier.describe()} | {' '.join(flags) or '-'}")
    elif result.tick.index % fps == 0:  # Once per second
        print(f"t={result.tick.timestamp:7.2f}s | {result.classifier.describe()} | "
              f"{' '.join(flags) or '-'}")


def print_summary(summary: Dict):
    print("\n" + "=" * 60)
    print("SESSION SUMMARY")
    print("=" * 60)
    print(f"Session ID: {summary.get('session_id', 'N/A')}")
    print(f"Duration: {summary.get('session_duration', 0.0):.1f} seconds")
    print(f"Total Ticks: {summary.get('total_ticks', 0)}")
    print(f"Blinks: {summary.get('blinks', 0)}")
    print(f"Yawns: {summary.get('yawns', 0)}")
    print(f"Prolonged Eye Closures: {summary.get('prolonged_eye_episodes', 0)}")
    print(f"Nod Ticks: {summary.get('nod_ticks', 0)}")
    print(f"Drowsy: {summary.get('drowsy_percentage', 0.0):.1f}% of classified ticks")
    print(f"Normalization: {summary.get('normalization_status', 'disabled')} "
          f"({summary.get('normalization_samples', 0)} samples)")
    print("=" * 60)


def main(argv=None) -> int:
    """Main function."""
    args = parse_arguments(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.INFO)
    else:
        logging.getLogger().setLevel(logging.ERROR)

    cfg = Config(args.config) if args.config else copy.deepcopy(default_config)
    if args.fps:
        cfg.timing.target_fps = args.fps
    if args.device:
        cfg.classifier.device = args.device
    model_path = args.model or cfg.classifier.model_path

    print("=" * 60)
    print("Streaming Drowsiness Feature Engine")
    print("=" * 60)
    print(f"Input: {args.input}")
    print(f"Tick rate: {cfg.fps} Hz")
    print(f"Normalization: {'on' if args.normalize else 'off'}")
    print(f"Classifier: {model_path or 'none'}")
    if model_path:
        device_info = cfg.get_device_info()
        print(f"Device: {device_info['device']} (CUDA available: {device_info['cuda_available']})")
    print("=" * 60)

    try:
        classifier = load_classifier(model_path, cfg.classifier.device, cfg.timing.window_length)
        session = DrowsinessSession(classifier=classifier, cfg=cfg,
                                    normalization_enabled=args.normalize,
                                    session_id=args.session_id or None)
    except (OSError, ValueError, RuntimeError) as e:
        print(f"Failed to initialize session: {e}")
        return 1

    writer = None
    out_file = None
    if args.output:
        out_file = open(args.output, 'w', newline='')
        columns = ["tick", "timestamp", *FEATURE_ORDER, *STATE_COLUMNS,
                   "probability", "classifier_status", "normalization_status"]
        writer = csv.DictWriter(out_file, fieldnames=columns)
        writer.writeheader()

    try:
        for timestamp, frame in read_signals(args.input, cfg.fps):
            result = session.process_tick(frame, timestamp)
            print_status(result, args.verbose, cfg.fps)
            if writer:
                writer.writerow(result.to_dict())
    except (OSError, ValueError) as e:
        print(f"Error while replaying signals: {e}")
        return 1
    except KeyboardInterrupt:
        print("\nReplay interrupted by user")
    finally:
        if out_file:
            out_file.close()

    print_summary(session.get_session_summary())
    if args.save_session:
        print(f"Session data saved: {session.save_session_data(args.save_session)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
