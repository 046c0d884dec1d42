import random

import matplotlib
import pytest

from exhibot.events import RecordingSink
from exhibot.firmware import BehaviorEngine
from exhibot.models import BehaviorParams, FirmwareConfig

matplotlib.use("Agg")

DT = 1.0 / 30.0
FAR = {"front": 2000.0, "left": 2000.0, "right": 2000.0}


def make_engine(seed=7, **behavior):
    """Engine with a recording sink; keyword args override BehaviorParams."""
    config = FirmwareConfig(behavior=BehaviorParams(**behavior))
    sink = RecordingSink()
    engine = BehaviorEngine(config, rng=random.Random(seed), sink=sink)
    return engine, sink


@pytest.fixture
def engine_and_sink():
    return make_engine()
