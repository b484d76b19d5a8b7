"""
Task Graph - dependency graph construction and scheduled execution
"""

from .dag import TaskNode, DependencyGraph, GraphBuilder, build_graph, select_latest
from .executor import TaskScheduler

__all__ = [
    # DAG
    "TaskNode",
    "DependencyGraph",
    "GraphBuilder",
    "build_graph",
    "select_latest",
    # Scheduler
    "TaskScheduler",
]
