from datetime import datetime, timedelta, timezone

import pytest

from app.core.interfaces import load_configuration
from app.core.partition import SizePartition

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def sizing_spec(limit=5, window="10m", increase="30s", decrease="10m", sizes=None):
    return {
        "metadata": {"name": "cluster"},
        "spec": {
            "sizes": sizes if sizes is not None else [
                {"name": "small", "criteria": {"from": 0, "to": 10},
                 "effects": {"kasMemoryRequest": "4Gi", "controlPlanePriorityClassName": "cp-small"}},
                {"name": "medium", "criteria": {"from": 11, "to": 100},
                 "effects": {"kasMemoryRequest": "8Gi", "etcdPriorityClassName": "etcd-medium"}},
                {"name": "large", "criteria": {"from": 101},
                 "effects": {"kasMemoryRequest": "16Gi", "kasGoMemLimit": "12Gi",
                             "APICriticalPriorityClassName": "api-critical"}},
            ],
            "concurrency": {"slidingWindow": window, "limit": limit},
            "transitionDelay": {"increase": increase, "decrease": decrease},
        },
    }


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def raw_config():
    return sizing_spec()


@pytest.fixture
def configuration(raw_config):
    return load_configuration(raw_config)


@pytest.fixture
def partition(configuration):
    return SizePartition.from_configuration(configuration.spec.sizes)


@pytest.fixture
def clock():
    return FakeClock()
