import itertools

import pytest

from front_desk import ledger as ledger_module


@pytest.fixture
def fixed_ids(monkeypatch):
    """Make reducer ids predictable: R0001, T0002, R0003, ... (one shared counter)."""
    counter = itertools.count(1)
    monkeypatch.setattr(ledger_module, "new_id", lambda prefix: f"{prefix}{next(counter):04d}")
