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
__all__ = ["Subscription", "StaticSubscription", "PatternSubscription"]
import datetime as dt
import json
import logging
import re

from .common import PatternType, datetime_to_ms, ms_to_datetime
from .exceptions import InvalidSubscription
from .utils import get_string

log = logging.getLogger(__name__)


class Subscription(object):
    """The set of topics a consumer group instance wants to consume

    Serialized into the ids node of every registered instance, in the format
    the Kafka ZooKeeper consumers use.
    """
    pattern_type = None

    def __init__(self, timestamp=None, version=1):
        """
        :param timestamp: When this subscription was made. Defaults to now.
        :type timestamp: :class:`datetime.datetime`
        :param version: The schema version of the serialized subscription
        :type version: int
        """
        if timestamp is None:
            timestamp = dt.datetime.now(dt.timezone.utc)
        self.timestamp = timestamp
        self.version = version

    @classmethod
    def static(cls, topics, **kwargs):
        """A subscription to an explicit list of topics

        :param topics: Topic names, or :class:`zkafka.topic.Topic` instances
        :type topics: Iterable
        """
        return StaticSubscription([getattr(t, 'name', t) for t in topics], **kwargs)

    @classmethod
    def pattern(cls, regex, pattern_type=PatternType.WHITE_LIST, **kwargs):
        """A subscription to every topic matching (or not matching) a regex

        :param regex: The pattern to match topic names against
        :type regex: str or compiled regular expression
        :param pattern_type: `PatternType.WHITE_LIST` or `PatternType.BLACK_LIST`
        :type pattern_type: str
        """
        return PatternSubscription(regex, pattern_type=pattern_type, **kwargs)

    @classmethod
    def everything(cls):
        """A subscription to all topics"""
        return cls.pattern('.*')

    @classmethod
    def build(cls, subscription, pattern_type=PatternType.WHITE_LIST):
        """Make a Subscription out of whatever the caller has at hand

        Prefer :meth:`static` and :meth:`pattern` where the kind of
        subscription is known.

        :param subscription: An existing Subscription (returned as is), a
            compiled regex, or one or more topic names or Topic instances
        :param pattern_type: The pattern type used for compiled regexes
        """
        if isinstance(subscription, Subscription):
            return subscription
        if isinstance(subscription, re.Pattern):
            return cls.pattern(subscription, pattern_type=pattern_type)
        if isinstance(subscription, (str, bytes)) or hasattr(subscription, 'name'):
            return cls.static([subscription])
        if isinstance(subscription, (list, tuple, set, frozenset)):
            return cls.static(subscription)
        raise InvalidSubscription(
            "Don't know how to subscribe to {!r}".format(subscription))

    @classmethod
    def from_json(cls, payload):
        """Parse a subscription from the contents of an instance's ids node

        :param payload: The raw node contents
        :type payload: bytes or str
        """
        try:
            json_payload = json.loads(get_string(payload))
            version = json_payload['version']
            if version != 1:
                raise InvalidSubscription("Unsupported subscription version {}".format(version))
            timestamp = ms_to_datetime(json_payload['timestamp'])
            pattern_type = json_payload['pattern']
            body = json_payload['subscription']
        except (ValueError, KeyError, TypeError) as e:
            raise InvalidSubscription("Malformed subscription: {}".format(e))
        if not isinstance(body, dict):
            raise InvalidSubscription(
                "Subscription body must be an object, got {!r}".format(body))

        if pattern_type == PatternType.STATIC:
            if any(streams != 1 for streams in body.values()):
                raise InvalidSubscription("Only one stream per topic is supported")
            return StaticSubscription(list(body.keys()), timestamp=timestamp, version=version)
        elif pattern_type in (PatternType.WHITE_LIST, PatternType.BLACK_LIST):
            if len(body) != 1:
                raise InvalidSubscription("Only one subscription pattern is supported")
            regex, streams = next(iter(body.items()))
            if streams != 1:
                raise InvalidSubscription("Only one stream per pattern is supported")
            # the JVM consumers join alternatives with commas
            return PatternSubscription(regex.replace(',', '|'),
                                       pattern_type=pattern_type,
                                       timestamp=timestamp,
                                       version=version)
        raise InvalidSubscription("Unsupported subscription pattern {!r}".format(pattern_type))

    def to_json(self):
        return json.dumps({
            'version': self.version,
            'pattern': self.pattern_type,
            'timestamp': datetime_to_ms(self.timestamp),
            'subscription': self.watchlist(),
        })

    def watchlist(self):
        """The subscription body: topic names or the pattern, each with one stream"""
        raise NotImplementedError

    def has_topic(self, topic):
        """Whether this subscription includes the given topic

        :param topic: A topic name or :class:`zkafka.topic.Topic`
        """
        raise NotImplementedError

    def topics(self, cluster):
        """The topics of the cluster included by this subscription"""
        return [t for t in cluster.topics().values() if self.has_topic(t)]

    def partitions(self, cluster):
        """The partitions of every topic included by this subscription"""
        return [p for t in self.topics(cluster) for p in t.partitions]

    def __eq__(self, other):
        return (isinstance(other, Subscription) and
                self.pattern_type == other.pattern_type and
                self.watchlist() == other.watchlist())

    def __ne__(self, other):
        return not self == other

    def __hash__(self):
        return hash((self.pattern_type, frozenset(self.watchlist())))

    def __repr__(self):
        return "<{module}.{name} at {id_} (pattern={pattern}, subscription={sub})>".format(
            module=self.__class__.__module__,
            name=self.__class__.__name__,
            id_=hex(id(self)),
            pattern=self.pattern_type,
            sub=list(self.watchlist())
        )


class StaticSubscription(Subscription):
    """A subscription to an explicit set of topic names"""
    pattern_type = PatternType.STATIC

    def __init__(self, topic_names, **kwargs):
        super(StaticSubscription, self).__init__(**kwargs)
        self.topic_names = frozenset(get_string(t) for t in topic_names)

    def watchlist(self):
        return dict((name, 1) for name in sorted(self.topic_names))

    def has_topic(self, topic):
        return getattr(topic, 'name', topic) in self.topic_names


class PatternSubscription(Subscription):
    """A subscription to the topics whose names match (white list) or don't
    match (black list) a regular expression
    """
    def __init__(self, regex, pattern_type=PatternType.WHITE_LIST, **kwargs):
        super(PatternSubscription, self).__init__(**kwargs)
        if pattern_type not in (PatternType.WHITE_LIST, PatternType.BLACK_LIST):
            raise InvalidSubscription("Invalid pattern type {!r}".format(pattern_type))
        try:
            self.regex = re.compile(regex) if isinstance(regex, str) else regex
        except re.error as e:
            raise InvalidSubscription("Invalid subscription pattern {!r}: {}".format(regex, e))
        self._pattern_type = pattern_type

    @property
    def pattern_type(self):
        return self._pattern_type

    def watchlist(self):
        return {self.regex.pattern: 1}

    def has_topic(self, topic):
        matches = self.regex.search(getattr(topic, 'name', topic)) is not None
        if self._pattern_type == PatternType.WHITE_LIST:
            return matches
        return not matches
