"""Decide which bundles carry each external dependency, and how.

The splitter is a pure function of the import records and the bundle
configuration.  Output order is independent of record order: assignments are
sorted by (specifier, package name, package root) and bundle tuples follow
bundle-declaration order.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Tuple

from .bundle_config import BundleConfig
from .errors import UnresolvedImportError
from .models import EAGER, Assignment, ImportRecord, ImportStyle
from .package import Package, package_name_of

logger = logging.getLogger(__name__)

AssignmentKey = Tuple[str, str]


def assignment_key(specifier: str, package: Package) -> AssignmentKey:
    return (specifier, str(package.root))


class Splitter:
    """Groups import records per (specifier, owning package) and assigns bundles.

    With *share_bases* enabled, a bundle whose base bundle also references a
    specifier does not carry its own copy; the base is the sole carrier.
    """

    def __init__(self, bundles: BundleConfig, share_bases: bool = True) -> None:
        self.bundles = bundles
        self.share_bases = share_bases

    def compute_assignments(
        self, records: Iterable[ImportRecord],
    ) -> Dict[AssignmentKey, Assignment]:
        groups: Dict[AssignmentKey, List[ImportRecord]] = {}
        for record in records:
            if record.package.excludes(record.specifier):
                logger.debug(
                    "%s excludes %r", record.package.name, record.specifier,
                )
                continue
            groups.setdefault(assignment_key(record.specifier, record.package), []).append(record)

        ordered = sorted(
            groups.items(),
            key=lambda item: (item[0][0], item[1][0].package.name, item[0][1]),
        )
        assignments: Dict[AssignmentKey, Assignment] = {}
        for key, group in ordered:
            assignments[key] = self._assign(group)
        failed = sum(1 for a in assignments.values() if not a.ok)
        logger.info(
            "Split %d dependencies across %d bundles (%d unresolved)",
            len(assignments), len(self.bundles), failed,
        )
        return assignments

    def _assign(self, group: List[ImportRecord]) -> Assignment:
        package = group[0].package
        specifier = group[0].specifier

        # eager dominates lazy inside one bundle
        modes: Dict[str, ImportStyle] = {}
        for record in group:
            bundle = self.bundles.bundle_for_path(record.consuming_path).name
            if modes.get(bundle) != EAGER:
                modes[bundle] = record.style
        referenced = tuple(sorted(modes, key=self.bundles.order))
        carriers, shared = self._carriers(referenced)

        carrier_modes: List[Tuple[str, ImportStyle]] = []
        for carrier in carriers:
            mode = modes[carrier]
            for user, via in shared:
                if via == carrier and modes[user] == EAGER:
                    mode = EAGER
            carrier_modes.append((carrier, mode))

        consumers = tuple(sorted({r.consuming_path for r in group}))
        resolved = package.resolve(specifier)
        unresolved_from = None
        if resolved is None:
            unresolved_from = consumers[0]
            logger.warning("%s", UnresolvedImportError(specifier, unresolved_from, package.name))
        elif not package.has_dependency(package_name_of(package.aliased(specifier))):
            logger.warning(
                "%s imports '%s' without declaring it as a dependency (resolved %s@%s)",
                package.name, specifier, resolved.package_name, resolved.version,
            )

        return Assignment(
            specifier=specifier,
            package=package,
            bundles=carriers,
            modes=tuple(carrier_modes),
            referenced_by=referenced,
            consumers=consumers,
            shared=shared,
            resolved=resolved,
            unresolved_from=unresolved_from,
        )

    def _carriers(
        self, referenced: Tuple[str, ...],
    ) -> Tuple[Tuple[str, ...], Tuple[Tuple[str, str], ...]]:
        """Split referencing bundles into carriers and (user, carrier) pairs."""
        if len(referenced) == 1 or not self.share_bases:
            return referenced, ()
        present = set(referenced)
        carriers: List[str] = []
        shared: List[Tuple[str, str]] = []
        for name in referenced:
            # the furthest base that also references the specifier carries it
            via = [base for base in self.bundles.bases_of(name) if base in present]
            if via:
                shared.append((name, via[-1]))
            else:
                carriers.append(name)
        return tuple(carriers), tuple(shared)


def by_bundle(
    assignments: Mapping[AssignmentKey, Assignment], bundle: str,
) -> List[Assignment]:
    """Assignments carried by *bundle*, in assignment order."""
    return [a for a in assignments.values() if bundle in a.bundles]
