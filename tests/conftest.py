"""
Pytest configuration and shared fixtures for regional cascade tests.
"""

import pytest
import tempfile
import shutil
from pathlib import Path
import pandas as pd
import numpy as np

from regional_cascade.data.reference import HierarchyReference



@pytest.fixture
def temp_dir():
    """Create temporary directory for config and log files."""
    path = tempfile.mkdtemp(prefix="rc_test_")
    yield Path(path)
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def mock_hierarchy_table():
    """Static hierarchy reference: two German macro-regions and one French."""
    return pd.DataFrame({
        'fine_id': ['DE11', 'DE12', 'DE21', 'FR10', 'FR20'],
        'intermediate_id': ['DE1', 'DE1', 'DE2', 'FR1', 'FR2'],
        'coarse_id': ['DE', 'DE', 'DE', 'FR', 'FR'],
    })


@pytest.fixture
def mock_hierarchy(mock_hierarchy_table):
    return HierarchyReference(mock_hierarchy_table)


@pytest.fixture
def mixed_level_data():
    """Rows at all three levels for 2020, matching the cascade priority example."""
    return pd.DataFrame({
        'entity_id': ['DE11', 'DE1', 'DE', 'FR'],
        'year': [2020, 2020, 2020, 2020],
        'value': [100.0, 200.0, 300.0, 300.0],
    })


@pytest.fixture
def indicator_data():
    """Hospital indicator rows at fine, intermediate and country level over two years."""
    rows = []
    for year in (2020, 2021):
        rows += [
            {'entity_id': 'DE11', 'year': year, 'disch_inp': 3000.0, 'disch_day': 1000.0,
             'beds': 256.0, 'physicians': 400.0, 'los': 8.0},
            {'entity_id': 'DE1', 'year': year, 'disch_inp': 6000.0, 'disch_day': 2000.0,
             'beds': 512.0, 'physicians': 800.0, 'los': 9.0},
            {'entity_id': 'DE', 'year': year, 'disch_inp': 20000.0, 'disch_day': 8000.0,
             'beds': 2048.0, 'physicians': 3000.0, 'los': 10.0},
            {'entity_id': 'FR', 'year': year, 'disch_inp': 15000.0, 'disch_day': 5000.0,
             'beds': 1024.0, 'physicians': 2500.0, 'los': 5.0},
        ]
    return pd.DataFrame(rows)


@pytest.fixture(autouse=True)
def reset_random_seed():
    """Reset random seed before each test for reproducibility."""
    np.random.seed(42)


# Pytest markers for different test categories
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
