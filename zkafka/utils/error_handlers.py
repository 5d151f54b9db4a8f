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
__all__ = ["coordination_error", "valid_int", "valid_count", "ZOOKEEPER_ERRORS"]
from kazoo.exceptions import KazooException
from kazoo.handlers.threading import KazooTimeoutError

from ..exceptions import CoordinationError, ValidationError

# everything a KazooClient call can raise besides a plain return
ZOOKEEPER_ERRORS = (KazooException, KazooTimeoutError)


def coordination_error(action, path, error, error_cls=CoordinationError):
    """Build the exception describing a ZooKeeper request that failed

    :param action: What was attempted, e.g. "read" or "create"
    :type action: str
    :param path: The znode the request addressed
    :type path: str
    :param error: The exception raised by kazoo
    :type error: Exception
    :param error_cls: The :class:`zkafka.exceptions.CoordinationError` subclass
        to instantiate
    """
    status = error.__class__.__name__
    return error_cls("Failed to {action} {path}: {status}".format(
        action=action, path=path, status=status), path=path, status=status)


def valid_int(param, allow_zero=False, allow_negative=False):
    """Validate that param is an integer, raise an exception if not"""
    pt = param
    try:  # a very permissive integer typecheck
        pt += 1
    except TypeError:
        raise TypeError(
            "Expected integer but found argument of type '{}'".format(type(param)))
    if not allow_negative and param < 0:
        raise ValueError("Expected nonnegative number but got '{}'".format(param))
    if not allow_zero and param == 0:
        raise ValueError("Expected nonzero number but got '{}'".format(param))
    return param


def valid_count(param, name):
    """Validate that param is a positive integer count of partitions or replicas"""
    if isinstance(param, bool) or not isinstance(param, int) or param <= 0:
        raise ValidationError(
            "{} must be a positive integer, got {!r}".format(name, param))
    return param
