"""Structural patches computed by value comparison.

Provides:
- Patch: a single ``add``/``remove``/``replace`` operation at a path
- diff(): patches turning one plain snapshot into another
- apply_patches(): apply patches without mutating the input
- produce_with_patches(): run a recipe on a copy, return result and patches
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Literal, TypeVar

T = TypeVar("T")

PatchPath = tuple[str | int, ...]


@dataclass(frozen=True, slots=True)
class Patch:
    """One structural edit. An empty path addresses the root value."""

    op: Literal["add", "remove", "replace"]
    path: PatchPath
    value: Any = None


def diff(before: Any, after: Any, path: PatchPath = ()) -> list[Patch]:
    """Compute the patches that turn ``before`` into ``after``."""
    if isinstance(before, dict) and isinstance(after, dict):
        patches: list[Patch] = []
        for key in before:
            if key not in after:
                patches.append(Patch("remove", (*path, key)))
        for key, value in after.items():
            if key not in before:
                patches.append(Patch("add", (*path, key), value))
            else:
                patches.extend(diff(before[key], value, (*path, key)))
        return patches

    if isinstance(before, list) and isinstance(after, list):
        patches = []
        shared = min(len(before), len(after))
        for index in range(shared):
            patches.extend(diff(before[index], after[index], (*path, index)))
        for index in range(shared, len(after)):
            patches.append(Patch("add", (*path, index), after[index]))
        # Highest index first so each removal leaves earlier indices valid
        for index in range(len(before) - 1, shared - 1, -1):
            patches.append(Patch("remove", (*path, index)))
        return patches

    if type(before) is not type(after) or before != after:
        return [Patch("replace", path, after)]
    return []


def _apply(target: Any, patch: Patch, depth: int) -> Any:
    if depth == len(patch.path):
        if patch.op == "remove":
            raise ValueError("Cannot remove the root value")
        return copy.deepcopy(patch.value)

    key = patch.path[depth]
    if isinstance(target, list):
        updated: Any = list(target)
    elif isinstance(target, dict):
        updated = dict(target)
    else:
        raise ValueError(f"Cannot apply patch at {patch.path!r}: not a container")

    if depth + 1 < len(patch.path):
        updated[key] = _apply(updated[key], patch, depth + 1)
        return updated

    value = copy.deepcopy(patch.value)
    if patch.op == "remove":
        del updated[key]
    elif patch.op == "add" and isinstance(updated, list):
        updated.insert(int(key), value)
    else:
        updated[key] = value
    return updated


def apply_patches(base: T, patches: Iterable[Patch]) -> T:
    """Apply patches in order, copying only the containers along each path."""
    result: Any = base
    for patch in patches:
        result = _apply(result, patch, 0)
    return result


def produce_with_patches(
    base: T,
    recipe: Callable[[T], T | None],
) -> tuple[T, list[Patch], list[Patch]]:
    """Run ``recipe`` against a deep copy of ``base``.

    The recipe may mutate its argument in place or return a replacement.
    ``base`` itself is never modified.

    Returns:
        (next value, forward patches, inverse patches)
    """
    draft = copy.deepcopy(base)
    returned = recipe(draft)
    result = draft if returned is None else returned
    return result, diff(base, result), diff(result, base)


def copy_with_structural_sharing(old: Any, new: Any) -> Any:
    """Return ``new``, reusing every subtree of ``old`` that is equal to it."""
    if old is new or (type(old) is type(new) and old == new):
        return old
    if isinstance(old, dict) and isinstance(new, dict):
        return {
            key: copy_with_structural_sharing(old[key], value) if key in old else value
            for key, value in new.items()
        }
    if isinstance(old, list) and isinstance(new, list):
        return [
            copy_with_structural_sharing(old[index], value) if index < len(old) else value
            for index, value in enumerate(new)
        ]
    return new
