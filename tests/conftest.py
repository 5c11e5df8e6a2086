"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from contextsmith.config import ContextsmithConfig, EmbeddingCfg
from contextsmith.estimator import TokenEstimator


@pytest.fixture
def estimator():
    """Fresh, uncalibrated estimator so tests never share calibration state."""
    return TokenEstimator()


@pytest.fixture
def offline_config():
    """Default config with the remote embedding provider switched off."""
    return ContextsmithConfig(embedding=EmbeddingCfg(offline=True))


@pytest.fixture
def isolated_config(tmp_path, monkeypatch):
    """Point the global config at tmp_path and run from an empty directory."""
    monkeypatch.setattr("contextsmith.config._GLOBAL_CONFIG_PATH", tmp_path / "global.yaml")
    for var in (
        "CONTEXTSMITH_GENERATION_MODEL",
        "CONTEXTSMITH_SUMMARY_MODEL",
        "CONTEXTSMITH_EMBEDDING_MODEL",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path
