from __future__ import annotations

import logging
from typing import Dict, Iterable, Iterator, List, Mapping, Tuple

from rcm.core.collaborators import InterfaceControl
from rcm.core.errors import ConfigurationError
from rcm.core.logging import JsonlLogger
from rcm.core.scheduler import VirtualTimeScheduler
from rcm.core.types import InterfaceIndex, LinkEndpoints, NodeId

_log = logging.getLogger("rcm.faults")


class LinkInterfaceMap:
    """(node, peer) -> interface index on ``node`` facing ``peer``.

    Filled while the topology is built, then frozen. Every link is stored in
    both directions.
    """

    def __init__(self) -> None:
        self._index: Dict[Tuple[NodeId, NodeId], InterfaceIndex] = {}
        self._links: List[LinkEndpoints] = []
        self._frozen = False

    @classmethod
    def from_links(cls, rows: Iterable[Mapping[str, object]]) -> "LinkInterfaceMap":
        link_map = cls()
        for row in rows:
            try:
                link_map.register(
                    str(row["a"]),
                    str(row["b"]),
                    int(row["a_if"]),  # type: ignore[arg-type]
                    int(row["b_if"]),  # type: ignore[arg-type]
                )
            except KeyError as exc:
                raise ConfigurationError(f"Link entry {dict(row)} is missing {exc}") from exc
        link_map.freeze()
        return link_map

    def register(self, a: NodeId, b: NodeId, a_if: InterfaceIndex, b_if: InterfaceIndex) -> LinkEndpoints:
        if self._frozen:
            raise ConfigurationError("Link interface map is frozen after topology setup")
        if a == b:
            raise ConfigurationError(f"Link endpoints must differ, got {a!r} twice")
        if (a, b) in self._index or (b, a) in self._index:
            raise ConfigurationError(f"Link {a}<->{b} registered twice")
        self._index[(a, b)] = int(a_if)
        self._index[(b, a)] = int(b_if)
        link = LinkEndpoints(a, b)
        self._links.append(link)
        return link

    def freeze(self) -> None:
        self._frozen = True

    def interface(self, node: NodeId, peer: NodeId) -> InterfaceIndex:
        try:
            return self._index[(node, peer)]
        except KeyError:
            raise ConfigurationError(f"No link between {node!r} and {peer!r}") from None

    def require(self, link: LinkEndpoints) -> None:
        for node, peer in link.directions():
            self.interface(node, peer)

    def links(self) -> Iterator[LinkEndpoints]:
        return iter(list(self._links))

    def __len__(self) -> int:
        return len(self._links)


class LinkFaultInjector:
    """Takes both ends of a link down and back up through the interface collaborator."""

    def __init__(
        self,
        control: InterfaceControl,
        link_map: LinkInterfaceMap,
        scheduler: VirtualTimeScheduler | None = None,
        events: JsonlLogger | None = None,
    ) -> None:
        self._control = control
        self._map = link_map
        self._scheduler = scheduler
        self._events = events or JsonlLogger(path=None)
        self.applied = 0

    def check(self, link: LinkEndpoints) -> None:
        self._map.require(link)

    def tear_down(self, link: LinkEndpoints) -> None:
        for node, peer in link.directions():
            self._control.set_interface_down(node, self._map.interface(node, peer))
        self._record("link_down", link)

    def restore(self, link: LinkEndpoints) -> None:
        for node, peer in link.directions():
            self._control.set_interface_up(node, self._map.interface(node, peer))
        self._record("link_up", link)

    def _record(self, event: str, link: LinkEndpoints) -> None:
        self.applied += 1
        now = self._scheduler.now if self._scheduler is not None else None
        _log.info("%s %s at t=%s", event, link.label(), now)
        self._events.log(event, link=link.label(), t=now)
