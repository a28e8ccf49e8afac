"""Movement-quality scoring, exercise criteria and feedback."""

from motionquality.analysis.exercise_criteria import ExerciseCatalog, ExerciseCriteria
from motionquality.analysis.form_feedback import generate_feedback
from motionquality.analysis.motion_quality import FormScore, MotionQualityAnalyzer

__all__ = [
    "ExerciseCatalog",
    "ExerciseCriteria",
    "FormScore",
    "MotionQualityAnalyzer",
    "generate_feedback",
]
