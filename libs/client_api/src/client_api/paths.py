"""Resolve typed keys into REST resource paths.

Path names are configured parent -> child, one per nesting level plus the leaf
collection, e.g. ``("orders", "orderPhases", "orderSteps")``. Location keys are
supplied child -> parent. The resolver pairs the reversed locations with the
path names by index and renders::

    /orders/{orderId}/orderPhases/{phaseId}/orderSteps[/{stepId}]

Path names may contain ``/`` (``"fjell/order"``); they are emitted verbatim as a
single segment and matched against key types by their last part.
"""

import logging
from collections.abc import Sequence

from client_api.errors import configuration_error
from client_api.keys import ItemKey, LocKey, LocKeyArray, PriKey, generate_key_array

logger = logging.getLogger(__name__)


def _name_forms(path_name: str) -> frozenset[str]:
    """Return lower-cased key-type spellings that refer to ``path_name``."""
    last = path_name.rstrip("/").split("/")[-1].lower()
    forms = {last}
    if last.endswith("ies"):
        forms.add(last[:-3] + "y")
    if last.endswith("es"):
        forms.add(last[:-2])
    if last.endswith("s"):
        forms.add(last[:-1])
    return frozenset(forms)


class PathResolver:
    """Turn keys and location arrays into paths for one entity type.

    Args:
        pk_type: Key type of the leaf entity (used in diagnostics).
        path_names: Collection names, parent -> child.

    Raises:
        ClientApiError: ``configuration`` kind if ``path_names`` is empty or
            contains a blank name.
    """

    def __init__(self, pk_type: str | None, path_names: Sequence[str]) -> None:
        if isinstance(path_names, str) or not path_names:
            raise configuration_error(
                "path_names must be a non-empty sequence of collection names",
                path_names=path_names,
            )
        if any(not isinstance(name, str) or not name.strip("/ ") for name in path_names):
            raise configuration_error(
                "path_names must not contain blank names", path_names=list(path_names)
            )
        self.pk_type = pk_type
        self.path_names: tuple[str, ...] = tuple(path_names)
        self._forms = tuple(_name_forms(name) for name in self.path_names)

    @property
    def location_depth(self) -> int:
        """Number of location keys an item or collection of this entity needs."""
        return len(self.path_names) - 1

    def _candidates(self, key_type: str) -> set[int]:
        lowered = key_type.lower()
        return {index for index, forms in enumerate(self._forms) if lowered in forms}

    def _check_count(self, locations: Sequence[LocKey]) -> None:
        count, depth = len(locations), self.location_depth
        if count < depth:
            raise configuration_error(
                f"Not enough locations for path names: locations={count} "
                f"path_names={len(self.path_names)} {list(self.path_names)}",
                locations=[loc.to_wire() for loc in locations],
                path_names=list(self.path_names),
            )
        if count > depth:
            raise configuration_error(
                f"Too many locations for path names: locations={count} "
                f"path_names={len(self.path_names)} {list(self.path_names)}",
                locations=[loc.to_wire() for loc in locations],
                path_names=list(self.path_names),
            )

    def _check_order(self, primary: PriKey | None, locations: Sequence[LocKey]) -> None:
        received = [loc.key_type for loc in locations]
        expected_order = list(reversed(self.path_names[:-1]))
        for position, location in enumerate(locations):
            expected_index = len(locations) - 1 - position
            candidates = self._candidates(location.key_type)
            if candidates and expected_index not in candidates:
                logger.error(
                    "Location key %r out of place: position %d, matches %s, path names %s",
                    location.key_type,
                    position,
                    sorted(candidates),
                    self.path_names,
                )
                raise configuration_error(
                    f"Location key '{location.key_type}' is out of place at position "
                    f"{position}. Locations must be ordered child -> parent (immediate "
                    f"parent first); expected collections in order: {expected_order}, "
                    f"received key types: {received}",
                    key_type=location.key_type,
                    position=position,
                    expected_order=expected_order,
                    received=received,
                )

        if primary is not None:
            candidates = self._candidates(primary.key_type)
            leaf = len(self.path_names) - 1
            if candidates and leaf not in candidates:
                raise configuration_error(
                    f"Primary key type '{primary.key_type}' refers to an ancestor "
                    f"collection, not the leaf '{self.path_names[-1]}'",
                    key_type=primary.key_type,
                    path_names=list(self.path_names),
                )

    def verify_locations(self, locations: LocKeyArray) -> bool:
        """Validate a location array for collection-level calls.

        Raises:
            ClientApiError: ``configuration`` kind on a count or order mismatch.
        """
        locations = list(locations)
        self._check_count(locations)
        self._check_order(None, locations)
        return True

    def resolve(self, key: ItemKey | LocKeyArray) -> str:
        """Resolve an item key or a location array into a resource path.

        Args:
            key: :class:`PriKey`/:class:`ComKey` for an item path, or a child ->
                parent location array for a collection path.

        Returns:
            ``/<name>/<id>/.../<leaf>[/<id>]`` ordered root -> leaf.

        Raises:
            ClientApiError: ``configuration`` kind when the key does not fit the
                configured hierarchy.
        """
        try:
            keys = generate_key_array(key)
        except TypeError as error:
            raise configuration_error(str(error)) from error

        primary = keys[0] if keys and isinstance(keys[0], PriKey) else None
        locations = [k for k in keys if isinstance(k, LocKey)]
        self._check_count(locations)
        self._check_order(primary, locations)

        parents = self.path_names[:-1]
        segments = [
            f"/{name}/{location.id}"
            for name, location in zip(parents, reversed(locations), strict=True)
        ]
        leaf = self.path_names[-1]
        segments.append(f"/{leaf}/{primary.id}" if primary is not None else f"/{leaf}")
        path = "".join(segments)
        logger.debug("Resolved %s -> %s", keys, path)
        return path


def resolve_path(path_names: Sequence[str], key: ItemKey | LocKeyArray) -> str:
    """Resolve ``key`` against ``path_names`` (see :meth:`PathResolver.resolve`)."""
    return PathResolver(None, path_names).resolve(key)
