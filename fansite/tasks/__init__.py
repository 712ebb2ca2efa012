"""
Celery tasks package.

- maintenance_tasks: expired pending confirmation cleanup
"""

from fansite.tasks import maintenance_tasks

__all__ = ["maintenance_tasks"]
