"""Partition of the configured nodes into one home node and its network nodes."""

from typing import Dict, Iterable, List

from .config import NodeSpec
from .errors import RegistryConfigurationError


class NodeRegistry:
    """
    Exactly one home node, addressed first and alone; every other enabled node
    is a network node that only ever receives best-effort mirrors.
    """

    def __init__(self, nodes: Iterable[NodeSpec]):
        self._nodes: Dict[str, NodeSpec] = {}
        for node in nodes:
            if node.id in self._nodes:
                raise RegistryConfigurationError(f"Node '{node.id}' is defined more than once.")
            self._nodes[node.id] = node

        homes = [n for n in self._nodes.values() if n.is_home]
        if len(homes) != 1:
            raise RegistryConfigurationError(
                f"Exactly one home node is required, found {len(homes)}: {[n.id for n in homes]}"
            )
        self._home = homes[0]

    def home_node(self) -> NodeSpec:
        return self._home

    def network_nodes(self) -> List[NodeSpec]:
        return [n for n in self._nodes.values() if n.enabled and not n.is_home]

    def get(self, node_id: str) -> NodeSpec:
        if node_id not in self._nodes:
            raise KeyError(f"Node '{node_id}' is not registered.")
        return self._nodes[node_id]

    def all_nodes(self) -> List[NodeSpec]:
        return list(self._nodes.values())

    def __len__(self) -> int:
        return len(self._nodes)
