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
__all__ = ["get_bytes", "get_string", "load_json", "dump_json"]
import json

from ..exceptions import VersionNotSupported


def get_bytes(value):
    if hasattr(value, 'encode'):
        try:
            value = value.encode('utf-8')
        except Exception:
            # if we can't encode the value just pass it along
            pass
    return value


def get_string(value):
    if getattr(value, 'decode', False):
        try:
            value = value.decode('utf-8')
        except Exception:
            # if we can't decode the value just pass it along
            pass
    return value


def load_json(data, versions=None):
    """Parse a znode payload, optionally checking its `version` field

    :param data: The raw payload as returned by `KazooClient.get`
    :type data: bytes
    :param versions: The schema versions the caller understands. If `None`,
        the version field is not inspected.
    :type versions: Container of int
    """
    payload = json.loads(get_string(data))
    if versions is not None and payload.get('version') not in versions:
        raise VersionNotSupported(
            "Unsupported payload version: {}".format(payload.get('version')))
    return payload


def dump_json(payload):
    """Serialize a payload for storage in a znode"""
    return get_bytes(json.dumps(payload, separators=(',', ':')))
