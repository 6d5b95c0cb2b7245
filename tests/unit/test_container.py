"""Unit tests for the engine container"""
import pytest

from progress_engine.exceptions import ConfigurationError
from progress_engine.services import container as container_module
from progress_engine.services.container import EngineContainer, get_container, init_container


def test_engines_are_lazy_singletons(container):
    assert container._habits is None
    assert container.habits is container.habits
    assert container.task_service.ledger is container.ledger
    assert container.challenge_engine.ledger is container.ledger
    assert container.routines.ledger is container.ledger


def test_engines_share_store_and_clock(container, store, clock):
    for engine in (
        container.habits,
        container.challenge_engine,
        container.goals,
        container.routines,
        container.task_service,
    ):
        assert engine.store is store
        assert engine.clock is clock


def test_injected_evaluator_is_used(container, mock_evaluator):
    assert container.user_task_service.evaluator is mock_evaluator


def test_default_evaluator_needs_api_key(monkeypatch, store, task_catalog, challenge_catalog):
    monkeypatch.setattr("progress_engine.agent.task_evaluator.OPENAI_API_KEY", "")
    container = EngineContainer(store=store, tasks=task_catalog, challenges=challenge_catalog)
    with pytest.raises(ConfigurationError):
        container.user_task_service


def test_default_evaluator_shares_rate_limiter(monkeypatch, store, task_catalog, challenge_catalog):
    monkeypatch.setattr("progress_engine.agent.task_evaluator.OPENAI_API_KEY", "sk-test")
    container = EngineContainer(store=store, tasks=task_catalog, challenges=challenge_catalog)
    assert container.user_task_service.evaluator.rate_limiter is container.rate_limiter


def test_global_container(monkeypatch, store, task_catalog, challenge_catalog):
    monkeypatch.setattr(container_module, "_container", None)
    with pytest.raises(RuntimeError):
        get_container()

    created = init_container(store, task_catalog, challenge_catalog)
    assert get_container() is created
