from .abort_monitor import AbortMonitor
from .catalog import SearchTarget, TargetCatalog
from .dispatcher import WorkDispatcher
from .external_listing import MarkListedWorkflow
from .orchestrator import Orchestrator
from .registry import Session, SessionRegistry
from .scheduler import Scheduler, TimerHandle
from .sequential import SequentialLookup, SiteWorkflow
from .site_rules import PageKind, SiteRules
from .watcher import CompletionWatcher

__all__ = [
    "AbortMonitor",
    "SearchTarget",
    "TargetCatalog",
    "WorkDispatcher",
    "MarkListedWorkflow",
    "Orchestrator",
    "Session",
    "SessionRegistry",
    "Scheduler",
    "TimerHandle",
    "SequentialLookup",
    "SiteWorkflow",
    "PageKind",
    "SiteRules",
    "CompletionWatcher",
]
