"""Selecting the targets of a run.

There are two kinds of target. Zones run most services and are the default
scope. Global zones are the top-level context of each compute node, used to
inspect or modify the operating system itself; ``use_host_context`` redirects
whatever zones were selected to the global zones of their compute nodes.

For safety there is no default scope: either all zones must be requested
explicitly, or some combination of zone, service and compute node filters
(never both). Filters are intersected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Collection, Iterable

from .errors import ConfigurationError
from .results import Target
from .topology import TopologySnapshot

logger = logging.getLogger(__name__)

# Compute zones must never be operated on: logging into them can hold up zone
# shutdown, and file transfers trust the contents of the zone's filesystem.
DISALLOWED_SERVICES = frozenset({"marlin"})


@dataclass(frozen=True)
class ScopeSpec:
    """Which targets a run applies to."""

    all_targets: bool = False
    zonenames: frozenset[str] | None = None
    services: frozenset[str] | None = None
    compute_nodes: frozenset[str] | None = None
    use_host_context: bool = False

    @classmethod
    def build(
        cls,
        all_targets: bool = False,
        zonenames: Iterable[str] | None = None,
        services: Iterable[str] | None = None,
        compute_nodes: Iterable[str] | None = None,
        use_host_context: bool = False,
    ) -> ScopeSpec:
        def _set(values: Iterable[str] | None) -> frozenset[str] | None:
            return frozenset(values) if values else None

        return cls(
            all_targets=all_targets,
            zonenames=_set(zonenames),
            services=_set(services),
            compute_nodes=_set(compute_nodes),
            use_host_context=use_host_context,
        )

    @property
    def has_filters(self) -> bool:
        return bool(self.zonenames or self.services or self.compute_nodes)


def validate_scope(spec: ScopeSpec) -> None:
    """Check that exactly one of "all targets" or a filter was requested."""
    if spec.all_targets and spec.has_filters:
        raise ConfigurationError(
            "cannot specify zones, services, or compute nodes when all "
            "zones were requested"
        )
    if not spec.all_targets and not spec.has_filters:
        raise ConfigurationError(
            "must explicitly request all zones to operate on all zones"
        )


def check_services_allowed(
    spec: ScopeSpec, disallowed_services: Collection[str] = DISALLOWED_SERVICES
) -> None:
    for service in sorted(spec.services or ()):
        if service in disallowed_services:
            raise ConfigurationError(f'unsupported service: "{service}"')


def resolve_scope(
    topology: TopologySnapshot,
    spec: ScopeSpec,
    disallowed_services: Collection[str] = DISALLOWED_SERVICES,
) -> list[Target]:
    """Turn a ScopeSpec into the list of targets to operate on."""
    validate_scope(spec)
    check_services_allowed(spec, disallowed_services)

    if spec.all_targets:
        zones = list(topology.all_zones())
    else:
        zones = topology.each_zone_by_filter(
            zones=spec.zonenames,
            services=spec.services,
            compute_nodes=spec.compute_nodes,
        )

    targets: list[Target] = []
    seen_nodes: set[str] = set()
    for zone in zones:
        cn = topology.compute_node(zone.server_uuid)
        if cn is None:
            logger.debug("ignoring zone %s (in a different DC)", zone.zonename)
            continue

        if zone.service in disallowed_services:
            logger.debug("ignoring zone %s (disallowed service)", zone.zonename)
            continue

        if spec.use_host_context:
            if cn.server_uuid in seen_nodes:
                continue
            seen_nodes.add(cn.server_uuid)
            targets.append(Target(compute_node_id=cn.server_uuid, hostname=cn.hostname))
        else:
            targets.append(
                Target(
                    compute_node_id=cn.server_uuid,
                    hostname=cn.hostname,
                    zonename=zone.zonename,
                    service=zone.service,
                )
            )

    if not targets:
        raise ConfigurationError("no matching targets")

    logger.debug("resolved %d targets", len(targets))
    return targets
