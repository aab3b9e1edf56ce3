"""
Topology Scanner
================

Discovers the nodes reachable from a root by breadth-first traversal of
the host's neighbour relation.  Purchased nodes are not part of the
network and are skipped; the fleet manager supplies them separately.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Callable, Dict, List, Optional, Set

from fleet_kernel.host import HostEnvironment

logger = logging.getLogger(__name__)


class TopologyScanner:
    """
    Breadth-first network discovery.

    Pure with respect to a static topology: the same snapshot always gives
    the same result.
    """

    def __init__(
        self,
        host: HostEnvironment,
        exclude: Optional[Callable[[str], bool]] = None,
    ):
        self.host = host
        self._exclude = exclude if exclude is not None else host.is_purchased

    def _walk(self, root: str) -> Dict[str, Optional[str]]:
        """BFS from root; maps each reached node to its parent."""
        parent: Dict[str, Optional[str]] = {root: None}
        queue = deque([root])
        while queue:
            node = queue.popleft()
            for neighbor in self.host.list_neighbors(node):
                if neighbor in parent or self._exclude(neighbor):
                    continue
                parent[neighbor] = node
                queue.append(neighbor)
        return parent

    def discover(self, root: str) -> Set[str]:
        """All nodes transitively reachable from root, root included."""
        found = set(self._walk(root))
        logger.debug(f"Discovered {len(found)} nodes from {root}")
        return found

    def discover_order(self, root: str) -> List[str]:
        """Reachable nodes in the order the traversal visits them."""
        return list(self._walk(root))

    def remote_nodes(self, root: str) -> Set[str]:
        """Reachable nodes, excluding the root itself."""
        return self.discover(root) - {root}

    def shortest_path(self, source: str, target: str) -> List[str]:
        """
        Hop-by-hop route from source to target.

        Returns an empty list when target is unreachable.
        """
        parent = self._walk(source)
        if target not in parent:
            return []
        path = [target]
        while parent[path[-1]] is not None:
            path.append(parent[path[-1]])
        path.reverse()
        return path
