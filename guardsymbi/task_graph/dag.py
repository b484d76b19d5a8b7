"""
Directed Acyclic Graph (DAG) of tasks.

Nodes are task declarations, edges mean "consumes output of". The graph is
immutable once built; per-run state lives in the scheduler.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple
from dataclasses import dataclass, field

from ..errors import (
    CyclicDependency,
    DuplicateTaskName,
    EntryTaskMissing,
    MissingCapability,
    UnknownTaskReference,
)
from ..models import ModuleDecl, TaskDecl

logger = logging.getLogger(__name__)


@dataclass
class TaskNode:
    """
    A node in the task graph.

    `dependencies` keeps the declaration order of the task's inputs;
    `dependents` is filled in by the builder in declaration order.
    """
    name: str
    module: str
    decl: TaskDecl
    index: int
    dependencies: Tuple[str, ...] = ()
    dependents: List[str] = field(default_factory=list)

    @property
    def ai_enabled(self) -> bool:
        return self.decl.ai_enabled

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "module": self.module,
            "dependencies": list(self.dependencies),
            "dependents": list(self.dependents),
            "ai_enabled": self.ai_enabled,
        }


class DependencyGraph:
    """
    Validated dependency graph plus its topological ordering.

    Example:
        graph = GraphBuilder().build(modules)
        for name in graph.topological_order:
            ...
        closure = graph.closure("report")
    """

    def __init__(
        self,
        nodes: Dict[str, TaskNode],
        topological_order: List[str],
        run_target: Optional[str] = None,
    ):
        self._nodes = nodes
        self._order = topological_order
        self.run_target = run_target

    @property
    def topological_order(self) -> List[str]:
        return list(self._order)

    def get_node(self, name: str) -> Optional[TaskNode]:
        return self._nodes.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get_all_nodes(self) -> List[TaskNode]:
        return [self._nodes[name] for name in self._order]

    def edges(self) -> Set[Tuple[str, str]]:
        """Set of (producer, consumer) pairs."""
        return {
            (dep, node.name)
            for node in self._nodes.values()
            for dep in node.dependencies
        }

    def closure(self, target: str) -> List[str]:
        """
        The target plus all of its transitive dependencies, in topological order.

        Raises:
            EntryTaskMissing: If the target is not in the graph
        """
        if target not in self._nodes:
            raise EntryTaskMissing(target)

        seen: Set[str] = set()
        stack = [target]
        while stack:
            name = stack.pop()
            if name in seen:
                continue
            seen.add(name)
            stack.extend(self._nodes[name].dependencies)

        return [name for name in self._order if name in seen]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_target": self.run_target,
            "topological_order": self.topological_order,
            "nodes": {name: node.to_dict() for name, node in self._nodes.items()},
        }


class GraphBuilder:
    """
    Turns module declarations into a validated DependencyGraph.

    Validation order: duplicate names, unknown references, missing AI
    capability, cycles. Pure construction; nothing is executed.
    """

    def build(self, modules: Sequence[ModuleDecl]) -> DependencyGraph:
        """
        Build the graph.

        Args:
            modules: Parsed module declarations

        Returns:
            DependencyGraph with a deterministic topological order

        Raises:
            DuplicateTaskName: A task name is declared twice
            UnknownTaskReference: An input names an undeclared task
            MissingCapability: An unannotated task calls AI operations
            CyclicDependency: The inputs form a cycle
        """
        modules = select_latest(modules)
        nodes = self._collect_nodes(modules)

        for node in nodes.values():
            for dep in node.dependencies:
                if dep not in nodes:
                    raise UnknownTaskReference(node.name, dep)
                nodes[dep].dependents.append(node.name)
            self._check_capabilities(node)

        cycle = self._find_cycle(nodes)
        if cycle:
            raise CyclicDependency(cycle)

        order = self._topological_order(nodes)
        run_target = self._run_target(modules, nodes)

        logger.debug(
            f"Built graph with {len(nodes)} task(s) from {len(modules)} module(s); order={order}"
        )
        return DependencyGraph(nodes, order, run_target)

    def _collect_nodes(self, modules: Sequence[ModuleDecl]) -> Dict[str, TaskNode]:
        nodes: Dict[str, TaskNode] = {}
        index = 0
        for module in modules:
            for task in module.tasks:
                if task.name in nodes:
                    raise DuplicateTaskName(task.name, [nodes[task.name].module, module.name])
                nodes[task.name] = TaskNode(
                    name=task.name,
                    module=module.name,
                    decl=task,
                    index=index,
                    dependencies=tuple(task.dependency_names),
                )
                index += 1
        return nodes

    def _check_capabilities(self, node: TaskNode) -> None:
        if node.ai_enabled:
            return
        for step in node.decl.steps:
            for call in step.ai_operations():
                raise MissingCapability(node.name, step.name or "", call.qualified_name)

    def _find_cycle(self, nodes: Dict[str, TaskNode]) -> Optional[List[str]]:
        """Iterative DFS; returns the members of the first cycle found, in dependency order."""
        WHITE, GREY, BLACK = 0, 1, 2
        color = {name: WHITE for name in nodes}
        ordered = sorted(nodes.values(), key=lambda n: n.index)

        for root in ordered:
            if color[root.name] != WHITE:
                continue
            path: List[str] = [root.name]
            iters = [iter(root.dependencies)]
            color[root.name] = GREY

            while iters:
                dep = next(iters[-1], None)
                if dep is None:
                    color[path.pop()] = BLACK
                    iters.pop()
                    continue
                if color[dep] == GREY:
                    return path[path.index(dep):]
                if color[dep] == WHITE:
                    color[dep] = GREY
                    path.append(dep)
                    iters.append(iter(nodes[dep].dependencies))

        return None

    def _topological_order(self, nodes: Dict[str, TaskNode]) -> List[str]:
        # Kahn's algorithm, ties broken by declaration order
        in_degree = {name: len(set(node.dependencies)) for name, node in nodes.items()}
        ready = sorted(
            (node for node in nodes.values() if in_degree[node.name] == 0),
            key=lambda n: n.index,
        )
        result: List[str] = []

        while ready:
            node = ready.pop(0)
            result.append(node.name)
            for dependent in node.dependents:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    ready.append(nodes[dependent])
            ready.sort(key=lambda n: n.index)

        return result

    def _run_target(self, modules: Sequence[ModuleDecl], nodes: Dict[str, TaskNode]) -> Optional[str]:
        targets = [module.run for module in modules if module.run]
        if not targets:
            return None
        target = targets[-1]
        if target not in nodes:
            raise EntryTaskMissing(target)
        return target


def select_latest(modules: Sequence[ModuleDecl]) -> List[ModuleDecl]:
    """Keep only the highest version of each module name, preserving first-seen order."""
    chosen: Dict[str, ModuleDecl] = {}
    for module in modules:
        current = chosen.get(module.name)
        if current is None:
            chosen[module.name] = module
        elif module.version_key > current.version_key:
            logger.info(
                f"Module '{module.name}' {module.version} supersedes {current.version}"
            )
            chosen[module.name] = module
        elif module.version_key == current.version_key and module != current:
            logger.warning(
                f"Module '{module.name}' declared twice at version {module.version}; keeping the first"
            )
    return list(chosen.values())


def build_graph(modules: Sequence[ModuleDecl]) -> DependencyGraph:
    """Convenience wrapper around GraphBuilder().build()."""
    return GraphBuilder().build(modules)
