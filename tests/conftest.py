import pytest

from .fakes import FakeDispatcher, FakePowerService, FakeSettings


@pytest.fixture
def settings():
    return FakeSettings(low_threshold=30, critical_threshold=10, sticky_notifications=False)


@pytest.fixture
def power():
    return FakePowerService()


@pytest.fixture
def dispatcher():
    return FakeDispatcher()
