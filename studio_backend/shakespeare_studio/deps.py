import logging
from typing import Optional

from fastapi import Depends

from .llm import ScriptGenerator
from .metrics import MetricsCollector
from .repository import Repository
from .store import build_store
from .webhook import WebhookDispatcher
from .workflow import WorkflowEngine

logger = logging.getLogger(__name__)

_store = None
_generator: Optional[ScriptGenerator] = None
_dispatcher: Optional[WebhookDispatcher] = None
metrics = MetricsCollector()


def get_store():
    global _store
    if _store is None:
        _store = build_store()
    return _store


def get_repo(store=Depends(get_store)) -> Repository:
    return Repository(store)


def get_generator() -> ScriptGenerator:
    global _generator
    if _generator is None:
        _generator = ScriptGenerator(metrics=metrics)
    return _generator


def get_dispatcher() -> WebhookDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = WebhookDispatcher()
    return _dispatcher


def get_engine(
    repo: Repository = Depends(get_repo),
    generator: ScriptGenerator = Depends(get_generator),
    dispatcher: WebhookDispatcher = Depends(get_dispatcher),
) -> WorkflowEngine:
    return WorkflowEngine(repo, generator, dispatcher)
