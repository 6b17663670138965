import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import numpy as np
import pytest

from opwell import Graph, OperatorCatalog, init_catalog


@pytest.fixture
def catalog():
    """A freshly initialized catalog with the built-in operators."""
    return init_catalog()


@pytest.fixture
def empty_catalog():
    return OperatorCatalog()


@pytest.fixture
def graph(catalog):
    return Graph(catalog)


@pytest.fixture
def rng():
    return np.random.default_rng(0)
