# - coding: utf-8 -
"""
Author: Keith Bourgoin
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
__all__ = ["PatternType", "TopicPreload", "EPOCH", "datetime_to_ms",
           "ms_to_datetime"]
import datetime as dt


EPOCH = dt.datetime(1970, 1, 1, tzinfo=dt.timezone.utc)


class PatternType(object):
    """Enum for the kinds of consumer group subscriptions.

    :cvar STATIC: An explicit list of topic names
    :cvar WHITE_LIST: A regular expression; matching topics are included
    :cvar BLACK_LIST: A regular expression; matching topics are excluded
    """
    STATIC = 'static'
    WHITE_LIST = 'white_list'
    BLACK_LIST = 'black_list'
    ALL = (STATIC, WHITE_LIST, BLACK_LIST)


class TopicPreload(object):
    """Enum for the topic attributes `Cluster.topics` can load eagerly.

    :cvar PARTITIONS: The replica assignment stored under /brokers/topics
    :cvar CONFIG: The topic overrides stored under /config/topics
    """
    PARTITIONS = 'partitions'
    CONFIG = 'config'
    DEFAULT = (PARTITIONS, )


def datetime_to_ms(timestamp):
    """Milliseconds since the epoch for an aware datetime"""
    return (timestamp - EPOCH) // dt.timedelta(milliseconds=1)


def ms_to_datetime(milliseconds):
    """Aware UTC datetime for a count of milliseconds since the epoch"""
    return EPOCH + dt.timedelta(milliseconds=int(milliseconds))
