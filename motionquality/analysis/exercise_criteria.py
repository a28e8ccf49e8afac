"""Exercise form criteria catalog.

Looks up the joints, target angles and stability zones used to score an
exercise, and the tempo class used to pick its frame rate. Criteria are
loaded from ``config/exercise_config.yaml``.
"""

import logging
import re
from dataclasses import dataclass, field

from motionquality.utils.adaptive_tuning import TempoClass
from motionquality.utils.config import load_exercise_config

logger = logging.getLogger(__name__)

DEFAULT_EXERCISE_ID = "default"

# Named body regions -> canonical landmark names
STABILITY_ZONE_LANDMARKS = {
    "spine": ["left_shoulder", "right_shoulder", "left_hip", "right_hip"],
    "shoulder": ["left_shoulder", "right_shoulder"],
    "shoulders": ["left_shoulder", "right_shoulder"],
    "hip": ["left_hip", "right_hip"],
    "hips": ["left_hip", "right_hip"],
    "pelvis": ["left_hip", "right_hip"],
    "knees": ["left_knee", "right_knee"],
    "ankles": ["left_ankle", "right_ankle"],
    "wrists": ["left_wrist", "right_wrist"],
}

DEFAULT_CORE_LANDMARKS = ["left_shoulder", "right_shoulder", "left_hip", "right_hip"]


@dataclass
class ExerciseCriteria:
    """What good form means for one exercise."""

    exercise_id: str
    name: str
    primary_joints: list[str] = field(default_factory=list)
    target_rom: dict[str, float] = field(default_factory=dict)  # Joint group -> degrees
    symmetry_required: bool = False
    stability_zones: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, exercise_id: str, data: dict) -> "ExerciseCriteria":
        return cls(
            exercise_id=exercise_id,
            name=data.get("name", exercise_id),
            primary_joints=list(data.get("primary_joints") or []),
            target_rom={k: float(v) for k, v in (data.get("target_rom") or {}).items()},
            symmetry_required=bool(data.get("symmetry_required", False)),
            stability_zones=list(data.get("stability_zones") or []),
        )

    def stability_landmarks(self) -> list[str]:
        """Landmark names covered by the stability zones.

        Falls back to shoulders and hips when no known zone is listed.
        """
        names: list[str] = []
        for zone in self.stability_zones:
            for name in STABILITY_ZONE_LANDMARKS.get(zone, []):
                if name not in names:
                    names.append(name)
        return names or list(DEFAULT_CORE_LANDMARKS)


DEFAULT_CRITERIA = ExerciseCriteria(exercise_id=DEFAULT_EXERCISE_ID, name="General exercise")


def normalize_exercise_id(exercise_name: str, aliases: dict[str, str] | None = None) -> str:
    """Normalize an exercise name to a catalog id.

    Lowercases, folds Swedish diacritics (å, ä -> a, ö -> o), joins words
    with underscores and resolves aliases.

    Args:
        exercise_name: Name as entered or shown (e.g. "Knäböj").
        aliases: Alias -> catalog id mapping.

    Returns:
        Catalog id candidate (e.g. "squat").
    """
    name = exercise_name.strip().lower()
    name = re.sub(r"[åä]", "a", name)
    name = name.replace("ö", "o")
    name = re.sub(r"\s+", "_", name)

    if aliases:
        return aliases.get(name, name)
    return name


class ExerciseCatalog:
    """Exercise criteria and tempo lookup."""

    def __init__(self, config: dict | None = None):
        """Initialize catalog.

        Args:
            config: Parsed exercise config (loads exercise_config.yaml if None).
        """
        config = config if config is not None else load_exercise_config()

        self.aliases: dict[str, str] = dict(config.get("aliases") or {})
        self.criteria: dict[str, ExerciseCriteria] = {
            exercise_id: ExerciseCriteria.from_dict(exercise_id, data or {})
            for exercise_id, data in (config.get("exercises") or {}).items()
        }

        self.tempo_classes: dict[str, TempoClass] = {}
        for tempo, exercise_ids in (config.get("tempo_classes") or {}).items():
            for exercise_id in exercise_ids or []:
                self.tempo_classes[exercise_id] = TempoClass(tempo)

        self.unknown_exercises = 0

    def normalize(self, exercise_name: str) -> str:
        return normalize_exercise_id(exercise_name, self.aliases)

    def criteria_for(self, exercise_id: str) -> ExerciseCriteria:
        """Get form criteria for an exercise.

        Unknown exercises get permissive default criteria (no ROM targets,
        no symmetry requirement) and are counted.

        Args:
            exercise_id: Catalog id or display name.

        Returns:
            Exercise criteria.
        """
        key = self.normalize(exercise_id)
        if key == DEFAULT_EXERCISE_ID:
            return DEFAULT_CRITERIA

        criteria = self.criteria.get(key)
        if criteria is None:
            self.unknown_exercises += 1
            logger.warning(f"Unknown exercise '{exercise_id}', using default criteria")
            return DEFAULT_CRITERIA
        return criteria

    def tempo_class_for(self, exercise_id: str) -> TempoClass:
        """Get the movement tempo of an exercise (normal if not listed)."""
        return self.tempo_classes.get(self.normalize(exercise_id), TempoClass.NORMAL)

    def list_exercises(self) -> list[str]:
        return sorted(self.criteria)
