import random

import pytest

from geothermal_engine import Engine, SimulationSettings, SiteStatus


class FixedRandom(random.Random):
    """Random source whose random() always returns the same value"""

    def __init__(self, value):
        super().__init__(0)
        self.value = value

    def random(self):
        return self.value


@pytest.fixture
def engine():
    return Engine(seed=1234)


@pytest.fixture
def quiet_engine():
    """No events, no competitors: only the economic model moves cash"""
    return Engine(seed=1234, settings=SimulationSettings.calm())


def secure_site(eng, site_id=0):
    """Put a site into SECURED without going through cash checks"""
    site = eng.find_site(site_id)
    site.status = SiteStatus.SECURED
    return site
