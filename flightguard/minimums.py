# flightguard/minimums.py
#
# Weather minimums per training level, based on FAA VFR/IFR minimums and
# flight school policy

from dataclasses import dataclass
from typing import Any, Dict, Optional

from flightguard.models import TrainingLevel


@dataclass(frozen=True)
class TrainingLevelMinimums:
    visibility: float  # statute miles
    ceiling: Optional[float]  # feet AGL, None means no restriction
    max_wind_speed: float  # knots
    max_crosswind: float  # knots
    max_tailwind: float  # knots
    allow_imc: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "visibility": self.visibility,
            "ceiling": self.ceiling,
            "maxWindSpeed": self.max_wind_speed,
            "maxCrosswind": self.max_crosswind,
            "maxTailwind": self.max_tailwind,
            "allowIMC": self.allow_imc,
        }


WEATHER_MINIMUMS = {
    # VFR only, low winds
    TrainingLevel.STUDENT: TrainingLevelMinimums(
        visibility=5,
        ceiling=3000,
        max_wind_speed=10,
        max_crosswind=5,
        max_tailwind=3,
        allow_imc=False,
    ),
    # standard VFR minimums
    TrainingLevel.PRIVATE: TrainingLevelMinimums(
        visibility=3,
        ceiling=1000,
        max_wind_speed=20,
        max_crosswind=12,
        max_tailwind=5,
        allow_imc=False,
    ),
    # may fly in IMC, must still avoid severe weather
    TrainingLevel.INSTRUMENT: TrainingLevelMinimums(
        visibility=0.5,
        ceiling=None,
        max_wind_speed=30,
        max_crosswind=15,
        max_tailwind=10,
        allow_imc=True,
    ),
    TrainingLevel.COMMERCIAL: TrainingLevelMinimums(
        visibility=0.5,
        ceiling=None,
        max_wind_speed=35,
        max_crosswind=18,
        max_tailwind=10,
        allow_imc=True,
    ),
}


def minimums_for(training_level) -> TrainingLevelMinimums:
    """Look up minimums by TrainingLevel or its string value."""
    return WEATHER_MINIMUMS[TrainingLevel(training_level)]
