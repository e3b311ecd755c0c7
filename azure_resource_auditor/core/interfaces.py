"""Core interfaces for the audit pipeline"""

import asyncio
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Tuple

from .configuration import AuditConfiguration
from .models import ModuleResult, ModuleState, ResourceRecord, utc_now
from ..reporting.writers import ReportWriter
from ..utils.logger import setup_logger
from ..utils.retry import RetryPolicy

logger = setup_logger(__name__)


@dataclass(frozen=True)
class AuditContext:
    """Read-only inputs shared by the analysis modules of one run"""
    config: AuditConfiguration
    subscription_id: str
    clients: Dict[str, Any]
    writer: ReportWriter
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    subscription_name: str = ""
    inventory: Tuple[ResourceRecord, ...] = ()
    clock: Callable[[], datetime] = utc_now


def run_in_daemon_thread(func: Callable[..., Any], *args: Any, name: str = "audit-worker") -> "asyncio.Future":
    """Run a blocking call on its own daemon thread and return a future for the result

    Cancelling the future abandons the thread; an abandoned thread does not
    hold up interpreter exit.
    """
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    def settle(outcome: Any, error: Any) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(outcome)

    def target() -> None:
        outcome, error = None, None
        try:
            outcome = func(*args)
        except Exception as e:
            error = e
        try:
            loop.call_soon_threadsafe(settle, outcome, error)
        except RuntimeError:
            logger.debug(f"{name} finished after its event loop closed")

    threading.Thread(target=target, name=name, daemon=True).start()
    return future


class IAuditModule(ABC):
    """Interface for independent analysis modules"""

    @abstractmethod
    def get_module_name(self) -> str:
        """Return module name"""
        pass

    @abstractmethod
    def run(self, context: AuditContext) -> ModuleResult:
        """Collect, analyze and write this module's reports"""
        pass

    async def execute(self, context: AuditContext) -> ModuleResult:
        """Run the blocking SDK work off the event loop"""
        start = time.monotonic()
        result = await run_in_daemon_thread(self.run, context, name=f"audit-{self.get_module_name()}")
        result.duration_seconds = time.monotonic() - start
        return result

    def failed(self, error: Exception) -> ModuleResult:
        return ModuleResult(name=self.get_module_name(), state=ModuleState.FAILED, error=str(error))
