"""Shared fixtures for gitea-mirror tests."""

import logging

import pytest

from gitea_mirror.config import MirrorConfig
from gitea_mirror.logging_config import ROOT_LOGGER_NAME
from gitea_mirror.models import Repository
from gitea_mirror.store import InMemoryStore

CONFIG_ID = "config-1"


@pytest.fixture
def make_config():
    """Factory for a complete, valid MirrorConfig with optional overrides."""

    def factory(github=None, gitea=None, **kwargs):
        github_settings = {"username": "alice", "token": "ghp_testtoken"}
        github_settings.update(github or {})
        gitea_settings = {"url": "https://gitea.example.com", "token": "gitea-token"}
        gitea_settings.update(gitea or {})
        kwargs.setdefault("id", CONFIG_ID)
        kwargs.setdefault("name", "test")
        return MirrorConfig(github=github_settings, gitea=gitea_settings, **kwargs)

    return factory


@pytest.fixture
def make_repo():
    """Factory for a Repository named ``owner/name``."""

    def factory(full_name, config_id=CONFIG_ID, **kwargs):
        owner, name = full_name.split("/")
        kwargs.setdefault("url", f"https://github.com/{full_name}")
        kwargs.setdefault("clone_url", f"https://github.com/{full_name}.git")
        return Repository(
            name=name, full_name=full_name, owner=owner, config_id=config_id, **kwargs
        )

    return factory


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop handlers installed by configure_logging so they do not outlive a test."""
    yield
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
