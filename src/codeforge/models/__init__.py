"""Data models shared by services and engines."""

from .plan import FileSpec, Plan, ProductionPlan, ProjectFile, Task, TestSpec

__all__ = ['FileSpec', 'Plan', 'ProductionPlan', 'ProjectFile', 'Task', 'TestSpec']
