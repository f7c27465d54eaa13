from __future__ import annotations

import pytest

from route_stubs import StubServices


@pytest.fixture
def services() -> StubServices:
    return StubServices()
