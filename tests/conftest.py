"""Shared pytest configuration for the mp-txscope test-suite."""
from __future__ import annotations

import os
from typing import Iterator

import pytest

from mp_txscope.config.settings import configure
from mp_txscope.transactions import ambient_scopes
from mp_txscope.transactions.ports import set_default_client

pytest_plugins = ["mp_txscope.testing.fixtures"]


@pytest.fixture(autouse=True)
def _reset_process_defaults() -> Iterator[None]:
    environ = dict(os.environ)
    yield
    os.environ.clear()
    os.environ.update(environ)
    configure(None)
    set_default_client(None)
    assert ambient_scopes.stack() == (), "test leaked an ambient transaction scope"
