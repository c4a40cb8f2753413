from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from rcm.core.types import FlowRecord, InterfaceIndex, NodeId


class RoutingStateSource(ABC):
    """Read access to the routing tables computed by the simulated network."""

    @abstractmethod
    def has_routing(self, router: NodeId) -> bool:
        raise NotImplementedError

    @abstractmethod
    def routing_table_text(self, router: NodeId) -> str:
        """Render the router's table.

        Hosts that prefix the table with a line naming the current instant need
        trackers built with ``strip_header=True``; headerless hosts need
        ``strip_header=False``.
        """
        raise NotImplementedError


class InterfaceControl(ABC):
    @abstractmethod
    def set_interface_up(self, router: NodeId, interface: InterfaceIndex) -> None:
        raise NotImplementedError

    @abstractmethod
    def set_interface_down(self, router: NodeId, interface: InterfaceIndex) -> None:
        raise NotImplementedError

    @abstractmethod
    def is_interface_up(self, router: NodeId, interface: InterfaceIndex) -> bool:
        raise NotImplementedError


class FlowMonitor(ABC):
    @abstractmethod
    def check_for_lost_packets(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def flow_stats(self) -> List[FlowRecord]:
        raise NotImplementedError
