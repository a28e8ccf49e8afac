"""Human-readable coaching cues from a form score."""

from motionquality.analysis.motion_quality import DominantSide, FormScore

SYMMETRY_CUE_BELOW = 70.0
ROM_LOW_PCT = 60.0
ROM_HIGH_PCT = 110.0
TEMPO_CUE_BELOW = 60.0
STABILITY_CUE_BELOW = 60.0
TREMOR_CUE_BELOW = 50.0
EXCELLENT_FROM = 80.0
GOOD_FROM = 60.0

MESSAGES = {
    "shift_right": "Try to load your right side more for better balance",
    "shift_left": "Try to load your left side more for better balance",
    "increase_range": "Try to gradually increase your range of motion",
    "avoid_overloading": "Good range of motion! Avoid overloading the joint",
    "even_tempo": "Try to keep an even tempo through the whole movement",
    "core_stability": "Keep your core muscles engaged for better stability",
    "control": "Slow down and control the movement to reduce shaking",
    "excellent": "Excellent form! Keep it up",
    "good_job": "Good job! Focus on the areas that can improve",
}


def generate_feedback(score: FormScore) -> list[str]:
    """Turn a form score into ordered coaching cues.

    Cues come in a fixed order: symmetry, range of motion, tempo,
    stability, tremor, then an overall reinforcement message.

    Args:
        score: Form score for the latest frame.

    Returns:
        List of feedback messages (possibly empty).
    """
    feedback = []

    if score.symmetry < SYMMETRY_CUE_BELOW:
        side = score.breakdown.symmetry.side
        if side == DominantSide.LEFT:
            feedback.append(MESSAGES["shift_right"])
        elif side == DominantSide.RIGHT:
            feedback.append(MESSAGES["shift_left"])

    rom_pct = score.breakdown.rom.percentage
    if rom_pct < ROM_LOW_PCT:
        feedback.append(MESSAGES["increase_range"])
    elif rom_pct > ROM_HIGH_PCT:
        feedback.append(MESSAGES["avoid_overloading"])

    if score.tempo < TEMPO_CUE_BELOW:
        feedback.append(MESSAGES["even_tempo"])

    if score.stability < STABILITY_CUE_BELOW:
        feedback.append(MESSAGES["core_stability"])

    if score.breakdown.stability.tremor < TREMOR_CUE_BELOW:
        feedback.append(MESSAGES["control"])

    if score.overall >= EXCELLENT_FROM:
        feedback.append(MESSAGES["excellent"])
    elif score.overall >= GOOD_FROM:
        feedback.append(MESSAGES["good_job"])

    return feedback
