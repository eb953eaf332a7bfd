# Upsert-by-name reconciliation for pyNSXT

################################################################################
### Copyright (C) 2019-2022 VMware, Inc.  All rights reserved.
### SPDX-License-Identifier: BSD-2-Clause
################################################################################

"""
Decides and applies the minimal action that makes a named NSX-T object match
a desired spec:

    not found                       -> create      (Created / DryRun)
    found, identical                -> nothing     (Found)
    found, different, no force      -> nothing     (Conflict)
    found, different, force         -> replace     (Updated / DryRun)

The remote collection is listed on every call; nothing is cached between calls.
A dry run never issues a create or update call.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from deepdiff import DeepDiff

from pynsxt_errors import AmbiguousName, InvalidArgument, NsxtError

logger = logging.getLogger(__name__)

DRY_RUN_ID = "(dry-run)"


class Action(str, Enum):
    FOUND = "Found"
    CREATED = "Created"
    UPDATED = "Updated"
    CONFLICT = "Conflict"
    DRY_RUN = "DryRun"
    ERROR = "Error"


@dataclass(frozen=True)
class ApplyOptions:
    force: bool = False
    dry_run: bool = False
    strict_names: bool = False


@dataclass
class Outcome:
    """What apply() did, or would have done under a dry run."""
    action: Action
    remote_id: str = None
    resource_url: str = None
    message: str = ""
    error: Exception = None

    @property
    def ok(self):
        return self.action not in (Action.CONFLICT, Action.ERROR)


@dataclass
class ComparisonResult:
    matches: bool
    differences: list = field(default_factory=list)


def compare(desired, remote):
    """Compares a spec with the remote object carrying its name.

    Collections (expression clauses, IP lists, tags) are compared as sets, so
    ordering never produces a mismatch. An absent description equals an empty one.
    """
    diff = DeepDiff(remote.comparable(), desired.comparable(), ignore_order=True)
    differences = set()
    for paths in diff.values():
        for path in paths:
            # paths look like "root['expression'][0]['value']"
            differences.add(path.split("'")[1] if "'" in path else path)
    return ComparisonResult(matches=not diff, differences=sorted(differences))


def find_by_name(name, collection, strict=False):
    """Returns the first object named `name` in listing order, or None.

    With strict=True, more than one object carrying the name raises AmbiguousName.
    Transport errors from the collection propagate.
    """
    matches = [obj for obj in collection.list() if obj.name == name]
    if not matches:
        return None
    if len(matches) > 1:
        if strict:
            raise AmbiguousName(name, [m.remote_id for m in matches])
        logger.warning('%d objects are named "%s"; using %s', len(matches), name, matches[0].remote_id)
    return matches[0]


def apply(desired, collection, options=None):
    """Reconciles one desired spec against a remote collection and returns an Outcome.

    Raises InvalidArgument for an invalid spec before any remote call; every
    other failure is returned as an Outcome with action=Error.
    """
    if desired is None:
        raise InvalidArgument("A desired spec is required.")
    desired.validate()
    options = options or ApplyOptions()
    name = desired.name

    try:
        existing = find_by_name(name, collection, strict=options.strict_names)
    except NsxtError as e:
        logger.debug("Lookup of %s failed: %s", name, e)
        return Outcome(action=Action.ERROR, message=f"Lookup of {name} failed: {e}", error=e)

    if existing is None:
        if options.dry_run:
            logger.debug("%s not found; dry run, not creating", name)
            return Outcome(action=Action.DRY_RUN, remote_id=DRY_RUN_ID, message=f"would create {name}")
        try:
            created = collection.create(desired)
        except NsxtError as e:
            return Outcome(action=Action.ERROR, message=f"Creation of {name} failed: {e}", error=e)
        logger.info("Created %s %s as %s", desired.kind, name, created.remote_id)
        return Outcome(action=Action.CREATED, remote_id=created.remote_id, resource_url=created.resource_url,
                       message=f"{name} created")

    comparison = compare(desired, existing)
    logger.debug("%s exists as %s; matches=%s differences=%s", name, existing.remote_id,
                 comparison.matches, comparison.differences)

    if comparison.matches:
        return Outcome(action=Action.FOUND, remote_id=existing.remote_id, resource_url=existing.resource_url,
                       message=f"{name} already exists, identical")

    fields = ", ".join(comparison.differences)
    if not options.force:
        return Outcome(action=Action.CONFLICT, remote_id=existing.remote_id, resource_url=existing.resource_url,
                       message=f"{name} exists with different parameters ({fields}); Conflict")

    if options.dry_run:
        return Outcome(action=Action.DRY_RUN, remote_id=existing.remote_id, resource_url=existing.resource_url,
                       message=f"would update {name} ({fields})")
    try:
        updated = collection.update(existing.remote_id, desired)
    except NsxtError as e:
        return Outcome(action=Action.ERROR, remote_id=existing.remote_id, message=f"Update of {name} failed: {e}", error=e)
    logger.info("Updated %s %s (%s)", desired.kind, name, fields)
    return Outcome(action=Action.UPDATED, remote_id=updated.remote_id, resource_url=updated.resource_url,
                   message=f"{name} updated ({fields})")


def apply_all(desired_list, collection_for, options=None, prepare=None):
    """Applies each spec in turn and returns [(spec, Outcome), ...].

    `collection_for(spec)` returns the collection for a spec's kind and domain.
    `prepare(spec)`, when given, runs just before each apply and returns the spec to use.
    A failure on one item is recorded as an Error outcome and the next item is processed.
    """
    results = []
    for desired in desired_list:
        try:
            if prepare is not None:
                desired = prepare(desired)
            collection = collection_for(desired)
            outcome = apply(desired, collection, options)
        except NsxtError as e:
            outcome = Outcome(action=Action.ERROR, message=f"{getattr(desired, 'name', desired)}: {e}", error=e)
        results.append((desired, outcome))
    return results
