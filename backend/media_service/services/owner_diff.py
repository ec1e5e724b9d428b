"""Per-owner-type set difference between the stored and the desired owner sets."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from media_service.schemas.metadata import Owner

OwnerMap = dict[str, set[str]]


def group_owners(owners: Iterable[Owner]) -> OwnerMap:
    grouped: OwnerMap = {}
    for owner in owners:
        grouped.setdefault(owner.owner_type, set()).add(owner.owner_id)
    return grouped


def _copy(owner_map: Mapping[str, Iterable[str]]) -> OwnerMap:
    return {owner_type: set(ids) for owner_type, ids in owner_map.items() if ids}


@dataclass(slots=True)
class OwnerDiff:
    to_add: OwnerMap = field(default_factory=dict)
    to_delete: OwnerMap = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.to_add and not self.to_delete

    def owner_types(self) -> list[str]:
        return sorted(set(self.to_add) | set(self.to_delete))

    def apply(self, current: Mapping[str, Iterable[str]]) -> OwnerMap:
        result = _copy(current)
        for owner_type, ids in self.to_add.items():
            result.setdefault(owner_type, set()).update(ids)
        for owner_type, ids in self.to_delete.items():
            remaining = result.get(owner_type, set()) - ids
            if remaining:
                result[owner_type] = remaining
            else:
                result.pop(owner_type, None)
        return result


def diff_owner_maps(old: Mapping[str, Iterable[str]], new: Mapping[str, Iterable[str]]) -> OwnerDiff:
    old_map = _copy(old)
    new_map = _copy(new)
    diff = OwnerDiff()
    for owner_type in set(old_map) | set(new_map):
        before = old_map.get(owner_type, set())
        after = new_map.get(owner_type, set())
        added = after - before
        removed = before - after
        if added:
            diff.to_add[owner_type] = added
        if removed:
            diff.to_delete[owner_type] = removed
    return diff


def diff_owners(old: Iterable[Owner], new: Iterable[Owner]) -> OwnerDiff:
    return diff_owner_maps(group_owners(old), group_owners(new))


def remove_all(owners: Iterable[Owner]) -> OwnerDiff:
    return diff_owners(owners, [])


def add_all(owners: Iterable[Owner]) -> OwnerDiff:
    return diff_owners([], owners)
