"""
Author: Emmett Butler
"""
__license__ = """
Copyright 2015 Parse.ly, Inc.

Licensed under the Apache License, Version 2.0 (the "License");
you may not use this file except in compliance with the License.
You may obtain a copy of the License at

    http://www.apache.org/licenses/LICENSE-2.0

Unless required by applicable law or agreed to in writing, software
distributed under the License is distributed on an "AS IS" BASIS,
WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
See the License for the specific language governing permissions and
limitations under the License.
"""
__all__ = ["agony", "valid_replicaset", "safe_reassignment", "steps"]
import logging

from .exceptions import ReassignmentPlanError

log = logging.getLogger(__name__)


def agony(from_replicas, to_replicas):
    """The number of brokers that have to start replicating to go from
    `from_replicas` to `to_replicas`
    """
    return len([b for b in to_replicas if b not in from_replicas])


def valid_replicaset(replicas, minimum_replicas=1):
    """Whether `replicas` holds no duplicates and at least `minimum_replicas` brokers"""
    return len(set(replicas)) == len(replicas) and len(replicas) >= minimum_replicas


def safe_reassignment(from_replicas, to_replicas, max_agony=1, minimum_replicas=1):
    """Whether a partition can move from one replica set to the other in one step

    At least one broker has to stay in the replica set, the target has to be a
    valid replica set and no more than `max_agony` brokers may be added.
    """
    if not set(from_replicas) & set(to_replicas):
        return False
    if not valid_replicaset(to_replicas, minimum_replicas):
        return False
    return agony(from_replicas, to_replicas) <= max_agony


def _take_last(replicas, count):
    """Remove and return the last `count` items of `replicas`"""
    if count <= 0:
        return []
    taken = replicas[-count:]
    del replicas[-count:]
    return taken


def steps(from_replicas, to_replicas, max_agony=1, minimum_replicas=None,
          include_initial=False):
    """Plan a sequence of replica sets leading from `from_replicas` to `to_replicas`

    Every consecutive pair of replica sets in the plan satisfies
    :func:`safe_reassignment`. The last element is `to_replicas`, in its order.

    :param from_replicas: The current replica set
    :type from_replicas: list
    :param to_replicas: The desired replica set
    :type to_replicas: list
    :param max_agony: The maximum number of brokers added by a single step
    :type max_agony: int
    :param minimum_replicas: The smallest replica set any step may produce.
        Defaults to the size of the smaller of the two sets.
    :type minimum_replicas: int
    :param include_initial: Whether to start the plan with `from_replicas`
    :type include_initial: bool
    """
    from_replicas, to_replicas = list(from_replicas), list(to_replicas)
    if minimum_replicas is None:
        minimum_replicas = min(len(from_replicas), len(to_replicas))

    missing = [b for b in to_replicas if b not in from_replicas]
    unneeded = [b for b in from_replicas if b not in to_replicas]

    plan = [from_replicas] if include_initial else []
    current = from_replicas
    while missing or unneeded:
        add = _take_last(missing, max_agony)
        drop = _take_last(unneeded, min(len(current) - 1, max_agony))
        if not add and not drop:
            raise ReassignmentPlanError(
                "Cannot make progress from {} to {} with max_agony={}".format(
                    current, to_replicas, max_agony))
        next_step = [b for b in current if b not in drop] + add
        if not safe_reassignment(current, next_step, max_agony, minimum_replicas):
            raise ReassignmentPlanError(
                "Cannot generate a safe reassignment from {} to {}".format(current, next_step))
        log.debug("Reassignment step %s -> %s", current, next_step)
        plan.append(next_step)
        current = next_step

    if set(current) != set(to_replicas):
        raise ReassignmentPlanError(
            "Planned replica set {} does not match {}".format(current, to_replicas))
    if len(plan) > (1 if include_initial else 0):
        # same membership, so only the order changes
        plan[-1] = to_replicas
    elif current != to_replicas:
        plan.append(to_replicas)
    return plan
