"""arq worker settings module.

Import path for arq CLI: arq coremine.workers.settings.WorkerSettings
"""

from __future__ import annotations

from coremine.workers.epoch_worker import WorkerSettings

__all__ = ["WorkerSettings"]
