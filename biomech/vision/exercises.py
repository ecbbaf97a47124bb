"""Per-exercise scoring configuration.

The built-in table can be replaced by a JSON file (``EXERCISE_CONFIG_PATH``)
mapping exercise keys to :class:`ExerciseConfig` fields.
"""
from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from biomech.core.config import get_settings


class ExerciseConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    primary_joints: List[str]
    target_rom: float = Field(gt=0)
    ideal_tempo: float = Field(gt=0, description="Ideal rep duration in seconds")
    tempo_tolerance: float = Field(gt=0)
    symmetry_weight: float = Field(ge=0, le=1)
    depth_weight: float = Field(ge=0, le=1)


DEFAULT_EXERCISE = "default"

BUILTIN_EXERCISES: Dict[str, ExerciseConfig] = {
    "squat": ExerciseConfig(
        primary_joints=["left_knee", "right_knee", "left_hip", "right_hip"],
        target_rom=90, ideal_tempo=3.0, tempo_tolerance=1.0, symmetry_weight=0.8, depth_weight=0.9,
    ),
    "lunge": ExerciseConfig(
        primary_joints=["left_knee", "right_knee"],
        target_rom=90, ideal_tempo=4.0, tempo_tolerance=1.5, symmetry_weight=0.5, depth_weight=0.8,
    ),
    "arm_raise": ExerciseConfig(
        primary_joints=["left_shoulder_flexion", "right_shoulder_flexion"],
        target_rom=170, ideal_tempo=3.0, tempo_tolerance=1.0, symmetry_weight=0.9, depth_weight=0.7,
    ),
    "knee_extension": ExerciseConfig(
        primary_joints=["left_knee", "right_knee"],
        target_rom=90, ideal_tempo=2.5, tempo_tolerance=0.5, symmetry_weight=0.7, depth_weight=0.85,
    ),
    DEFAULT_EXERCISE: ExerciseConfig(
        primary_joints=["left_knee", "right_knee"],
        target_rom=90, ideal_tempo=3.0, tempo_tolerance=1.0, symmetry_weight=0.7, depth_weight=0.8,
    ),
}

# Keyword -> table key, checked in order
_KEYWORDS: Tuple[Tuple[str, str], ...] = (
    ("squat", "squat"),
    ("lunge", "lunge"),
    ("knee extension", "knee_extension"),
    ("arm raise", "arm_raise"),
    ("lateral raise", "arm_raise"),
    ("shoulder", "arm_raise"),
)


def normalize_exercise_name(name: Optional[str]) -> str:
    return " ".join((name or "").lower().replace("_", " ").replace("-", " ").split())


def load_exercise_configs(path: Optional[str]) -> Dict[str, ExerciseConfig]:
    """Return the exercise table, merged with overrides from ``path`` if it parses."""
    table = dict(BUILTIN_EXERCISES)
    if not path:
        return table
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        for key, values in raw.items():
            table[normalize_exercise_name(key).replace(" ", "_")] = ExerciseConfig.model_validate(values)
    except (OSError, ValueError, ValidationError) as exc:
        logger.warning("Ignoring exercise config file {}: {}", path, exc)
        return dict(BUILTIN_EXERCISES)
    logger.info("Loaded {} exercise configs from {}", len(raw), path)
    return table


@lru_cache
def exercise_table() -> Dict[str, ExerciseConfig]:
    return load_exercise_configs(get_settings().exercise_config_path)


def resolve_exercise(
    name: Optional[str], table: Optional[Dict[str, ExerciseConfig]] = None
) -> Tuple[str, ExerciseConfig]:
    """Map a free-text exercise name to ``(key, config)``; unknown names use the default entry."""
    table = table if table is not None else exercise_table()
    normalized = normalize_exercise_name(name)
    key = normalized.replace(" ", "_")
    if key in table:
        return key, table[key]
    compact = normalized.replace(" ", "")
    for keyword, target in _KEYWORDS:
        if (keyword in normalized or keyword.replace(" ", "") in compact) and target in table:
            return target, table[target]
    logger.warning("Unknown exercise '{}'; using default scoring configuration", name)
    return DEFAULT_EXERCISE, table[DEFAULT_EXERCISE]
