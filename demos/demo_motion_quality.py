"""
Motion Quality Demo
Runs the complete scoring pipeline on a camera or video:
- Device profiling and adaptive frame rate
- MediaPipe (+ YOLO pose on capable machines) with fusion
- Per-frame form score and coaching cues

Usage:
    python demos/demo_motion_quality.py --webcam --exercise squat
    python demos/demo_motion_quality.py --video path/to/video.mp4 --exercise "Knäböj"
"""

import argparse
import logging

import cv2

from motionquality.analysis.exercise_criteria import ExerciseCatalog
from motionquality.pipeline.orchestrator import FrameResult, MotionQualityPipeline
from motionquality.utils.device_utils import camera_settings

SKELETON = [
    ("left_shoulder", "right_shoulder"),
    ("left_shoulder", "left_elbow"),
    ("left_elbow", "left_wrist"),
    ("right_shoulder", "right_elbow"),
    ("right_elbow", "right_wrist"),
    ("left_shoulder", "left_hip"),
    ("right_shoulder", "right_hip"),
    ("left_hip", "right_hip"),
    ("left_hip", "left_knee"),
    ("left_knee", "left_ankle"),
    ("right_hip", "right_knee"),
    ("right_knee", "right_ankle"),
]


def draw_result(frame, result: FrameResult):
    """Draw the fused skeleton, scores and feedback onto a frame."""
    height, width = frame.shape[:2]

    if result.pose is not None:
        for start, end in SKELETON:
            a, b = result.pose.get(start), result.pose.get(end)
            if a.is_unknown or b.is_unknown:
                continue
            cv2.line(
                frame,
                (int(a.x * width), int(a.y * height)),
                (int(b.x * width), int(b.y * height)),
                (0, 255, 0),
                2,
            )

    lines = [f"FPS target: {result.fps:.1f}  detect: {result.detection_time_ms:.0f}ms"]
    if result.score is not None:
        score = result.score
        lines.append(f"Overall: {score.overall:.0f}")
        lines.append(
            f"Sym {score.symmetry:.0f}  ROM {score.range_of_motion:.0f}  "
            f"Tempo {score.tempo:.0f}  Stab {score.stability:.0f}"
        )
    lines.extend(result.feedback)

    for i, text in enumerate(lines):
        cv2.putText(frame, text, (20, 40 + 30 * i), cv2.FONT_HERSHEY_SIMPLEX, 0.7, (255, 255, 255), 2)
    return frame


def run_capture(pipeline: MotionQualityPipeline, source):
    """Process frames from a cv2.VideoCapture source until it ends or 'q' is pressed."""
    cap = cv2.VideoCapture(source)
    if not cap.isOpened():
        print(f"❌ Failed to open {source}")
        return

    # Webcams honour the requested size and rate; video files ignore it
    for prop, value in camera_settings(pipeline.profile).items():
        cap.set(prop, value)

    last_result = None
    try:
        while True:
            ret, frame = cap.read()
            if not ret:
                break

            result = pipeline.process_frame(frame)
            if result is not None:
                last_result = result

            if last_result is not None:
                frame = draw_result(frame, last_result)
            cv2.imshow("Motion Quality", frame)

            if cv2.waitKey(1) & 0xFF == ord("q"):
                break
    finally:
        cap.release()
        cv2.destroyAllWindows()


def print_diagnostics(pipeline: MotionQualityPipeline):
    """Print pipeline diagnostics."""
    diagnostics = pipeline.get_diagnostics()
    profile = diagnostics["profile"]
    performance = diagnostics["performance"]
    recovery = diagnostics["recovery"]

    print("\n" + "=" * 60)
    print("PIPELINE DIAGNOSTICS")
    print("=" * 60)
    print(f"Device tier:        {profile['tier']}")
    print(f"Detectors:          {', '.join(diagnostics['providers']) or 'none (reduced mode)'}")
    print(f"Current FPS:        {diagnostics['scheduler']['current_fps']:.1f}")
    print(f"Average FPS:        {performance['average_fps']:.1f}")
    print(f"Average latency:    {performance['average_latency_ms']:.1f} ms")
    print(f"Dropped frames:     {performance['dropped_frames']}")
    print(f"Frames fused:       {diagnostics['fusion']['frames_fused']}")
    print(f"Degraded:           {recovery['degraded']}")
    for name, count in recovery.items():
        if name != "degraded" and count:
            print(f"  {name}: {count}")
    print("=" * 60 + "\n")


def main():
    parser = argparse.ArgumentParser(description="Motion Quality Pipeline Demo")
    parser.add_argument("--video", type=str, help="Path to input video file")
    parser.add_argument("--webcam", action="store_true", help="Use webcam instead of video file")
    parser.add_argument("--camera-index", type=int, default=0, help="Webcam index")
    parser.add_argument("--exercise", type=str, default="squat", help="Exercise id or name")
    parser.add_argument("--list-exercises", action="store_true", help="List known exercises and exit")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s: %(message)s",
    )

    if args.list_exercises:
        for exercise_id in ExerciseCatalog().list_exercises():
            print(exercise_id)
        return

    if not args.webcam and not args.video:
        print("❌ Error: Provide either --video or --webcam")
        parser.print_help()
        return

    with MotionQualityPipeline() as pipeline:
        ready = pipeline.initialize()
        print(f"✅ Pipeline initialized ({pipeline.profile.tier.value} tier, detectors: {ready})")

        pipeline.start_exercise(args.exercise)
        run_capture(pipeline, args.camera_index if args.webcam else args.video)
        print_diagnostics(pipeline)


if __name__ == "__main__":
    main()
