# Scope Resolution
from collections.abc import Iterable, Mapping

from fleetheal.core.base import ScopeResolver
from fleetheal.core.exceptions import ScopeError
from fleetheal.core.logging import get_logger
from fleetheal.core.types import ScopeMode, ScopeSpec


class InventoryScopeResolver(ScopeResolver):
    """
    Resolves scopes against a static site -> nodes inventory.

    - ALL: every node of every site (forest scope)
    - SITE: the nodes of one site; unknown site is a ScopeError
    - EXPLICIT: the supplied nodes; none supplied is a ScopeError

    Example:
        >>> resolver = InventoryScopeResolver({"HQ": ["DC01", "DC02"], "Branch": ["DC03"]})
        >>> resolver.resolve(ScopeSpec.for_site("Branch"))
        ['DC03']
    """

    def __init__(self, inventory: Mapping[str, Iterable[str]] | None = None) -> None:
        self._inventory: dict[str, list[str]] = {
            site: list(dict.fromkeys(nodes)) for site, nodes in (inventory or {}).items()
        }
        self._logger = get_logger("fleetheal.scope")

    @property
    def sites(self) -> list[str]:
        return sorted(self._inventory)

    def resolve(self, spec: ScopeSpec) -> list[str]:
        if spec.mode is ScopeMode.EXPLICIT:
            nodes = [n.strip() for n in spec.nodes if n and n.strip()]
            if not nodes:
                raise ScopeError("Explicit scope requested without any nodes")
            resolved = list(dict.fromkeys(nodes))

        elif spec.mode is ScopeMode.SITE:
            if not spec.site:
                raise ScopeError("Site scope requested without a site name")
            if spec.site not in self._inventory:
                raise ScopeError(
                    f"Unknown site '{spec.site}'",
                    details={"site": spec.site, "known_sites": self.sites},
                )
            resolved = list(self._inventory[spec.site])

        else:
            resolved = list(
                dict.fromkeys(node for nodes in self._inventory.values() for node in nodes)
            )

        if not resolved:
            raise ScopeError(
                "Scope resolved to no nodes",
                details={"mode": spec.mode.name, "site": spec.site},
            )

        self._logger.info("Scope resolved", mode=spec.mode.name, site=spec.site, nodes=len(resolved))
        return resolved
