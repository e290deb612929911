"""
Cooperative socket/timer dispatcher.

Components:
- resources.py: Task / Resource records and their enums
- poller.py: readiness polling (select)
- dispatcher.py: task registry, step/loop, deferred close/shutdown/detach
- sockets.py: accept/connect/send/receive wrappers that suspend instead of blocking
"""

from .dispatcher import Dispatcher
from .errors import DispatchTimeout
from .resources import Outcome, Shutdown, Task, TaskState

__all__ = ["Dispatcher", "DispatchTimeout", "Outcome", "Shutdown", "Task", "TaskState"]
