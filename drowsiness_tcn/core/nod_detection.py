"""Head-nod rule combining prolonged eye closure with a downward head pitch."""

from typing import Optional

from ..utils.config import Config, config as default_config


class NodDetector:
    """Sticky nod flag with a wider release band than set band."""

    def __init__(self, cfg: Optional[Config] = None):
        nod = (cfg or default_config).nod
        self.set_pitch = nod.set_pitch_deg
        self.release_pitch = nod.release_pitch_deg
        self.max_roll = nod.max_roll_deg
        self.max_yaw = nod.max_yaw_deg
        self.active = False

    def reset(self) -> None:
        self.active = False

    def update(self, prolonged_eye: bool, eye_closed: bool,
               yaw: float, pitch: float, roll: float) -> bool:
        """Re-evaluate the rule for one tick.

        ``eye_closed`` is the raw (undebounced) closure of this tick.
        """
        if (prolonged_eye and pitch <= self.set_pitch
                and abs(roll) <= self.max_roll and abs(yaw) <= self.max_yaw):
            self.active = True
        if not eye_closed or abs(yaw) > self.max_yaw or pitch >= self.release_pitch:
            self.active = False
        return self.active
