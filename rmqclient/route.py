"""Topic route data returned by name servers and what is derived from it."""

from __future__ import annotations

import json
import re
import threading
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from rmqclient.model import MessageQueue
from rmqclient.perm import queue_is_readable, queue_is_writeable

MASTER_ID = 0
DEFAULT_TOPIC = "TBW102"
DEFAULT_QUEUE_NUMS = 4

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1
_NUMERIC_KEY = re.compile(r"(-?\d+)\s*:")
_DECIMAL = re.compile(r"[+-]?[0-9]+")


@dataclass
class QueueData:
    broker_name: str = ""
    read_queue_nums: int = 0
    write_queue_nums: int = 0
    perm: int = 0
    topic_syn_flag: int = 0

    def _to_dict(self) -> dict[str, Any]:
        return {
            "brokerName": self.broker_name,
            "readQueueNums": self.read_queue_nums,
            "writeQueueNums": self.write_queue_nums,
            "perm": self.perm,
            "topicSynFlag": self.topic_syn_flag,
        }


@dataclass
class BrokerData:
    cluster: str = ""
    broker_name: str = ""
    broker_addresses: dict[int, str] = field(default_factory=dict)

    def _to_dict(self) -> dict[str, Any]:
        return {
            "cluster": self.cluster,
            "brokerName": self.broker_name,
            "brokerAddrs": {str(k): v for k, v in sorted(self.broker_addresses.items())},
        }


def _quote_numeric_keys(text: str) -> str:
    """Quote bare integer object keys, which name servers emit for broker ids."""
    out = []
    i, n = 0, len(text)
    in_string = False
    while i < n:
        ch = text[i]
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < n:
                out.append(text[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
            continue
        out.append(ch)
        i += 1
        if ch in "{,":
            j = i
            while j < n and text[j].isspace():
                j += 1
            match = _NUMERIC_KEY.match(text, j)
            if match:
                out.append(text[i:j])
                out.append(f'"{match.group(1)}"')
                i = match.end(1)
    return "".join(out)


def _int_field(document: dict, key: str) -> int:
    value = document.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field {key!r} must be an integer, got {value!r}")
    return value


def _str_field(document: dict, key: str) -> str:
    value = document.get(key)
    if value is None:
        return ""
    return value if isinstance(value, str) else json.dumps(value)


def _broker_id(text: str) -> int:
    return int(text) if _DECIMAL.fullmatch(text.strip()) else 0


@dataclass
class TopicRouteData:
    """Queues and brokers serving a topic."""

    order_topic_conf: str = ""
    queue_data_list: list[QueueData] = field(default_factory=list)
    broker_data_list: list[BrokerData] = field(default_factory=list)

    @classmethod
    def decode(cls, data: Union[str, bytes]) -> "TopicRouteData":
        """Parse route data as sent by a name server; raises ValueError on bad input."""
        if isinstance(data, (bytes, bytearray)):
            data = bytes(data).decode("utf-8")
        document = json.loads(_quote_numeric_keys(data))
        if not isinstance(document, dict):
            raise ValueError("route data must be a JSON object")

        raw_queues = document.get("queueDatas")
        if not isinstance(raw_queues, list):
            raise ValueError("route data has no queueDatas list")
        queues = []
        for item in raw_queues:
            if not isinstance(item, dict):
                raise ValueError(f"queue data must be an object, got {item!r}")
            queues.append(
                QueueData(
                    broker_name=_str_field(item, "brokerName"),
                    read_queue_nums=_int_field(item, "readQueueNums"),
                    write_queue_nums=_int_field(item, "writeQueueNums"),
                    perm=_int_field(item, "perm"),
                    topic_syn_flag=_int_field(item, "topicSynFlag"),
                )
            )

        raw_brokers = document.get("brokerDatas")
        brokers = []
        for item in raw_brokers if isinstance(raw_brokers, list) else []:
            if not isinstance(item, dict):
                continue
            addrs = item.get("brokerAddrs")
            addresses = {}
            if isinstance(addrs, dict):
                for key, value in addrs.items():
                    addr = value if isinstance(value, str) else json.dumps(value)
                    addresses[_broker_id(key)] = addr.replace('"', "")
            brokers.append(
                BrokerData(
                    cluster=_str_field(item, "cluster"),
                    broker_name=_str_field(item, "brokerName"),
                    broker_addresses=addresses,
                )
            )
        return cls(queue_data_list=queues, broker_data_list=brokers)

    def clone(self) -> "TopicRouteData":
        """Copy with new lists that share the queue and broker entries."""
        return TopicRouteData(
            order_topic_conf=self.order_topic_conf,
            queue_data_list=list(self.queue_data_list),
            broker_data_list=list(self.broker_data_list),
        )

    def to_json(self) -> str:
        return json.dumps(
            {
                "OrderTopicConf": self.order_topic_conf,
                "queueDatas": [q._to_dict() for q in self.queue_data_list],
                "brokerDatas": [b._to_dict() for b in self.broker_data_list],
            },
            separators=(",", ":"),
        )

    def __str__(self) -> str:
        return self.to_json()


@dataclass
class TopicPublishInfo:
    """Queues a producer may send a topic's messages to."""

    order_topic: bool = False
    have_topic_router_info: bool = False
    mq_list: list[MessageQueue] = field(default_factory=list)
    route_data: Optional[TopicRouteData] = None
    topic_queue_index: int = 0
    _lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    def is_ok(self) -> bool:
        return len(self.mq_list) > 0

    def fetch_queue_index(self) -> int:
        """Next queue index in round-robin order, or -1 when there are no queues."""
        length = len(self.mq_list)
        if length <= 0:
            return -1
        with self._lock:
            value = self.topic_queue_index + 1
            if value > _INT32_MAX:
                value = _INT32_MIN
            self.topic_queue_index = value
        remainder = abs(value) % length
        return remainder if value >= 0 else -remainder


def _lists_equal(old: TopicRouteData, new: TopicRouteData) -> bool:
    return old.broker_data_list == new.broker_data_list and old.queue_data_list == new.queue_data_list


def route_data_changed(old: Optional[TopicRouteData], new: Optional[TopicRouteData]) -> bool:
    """True unless both carry the same queues and brokers, in any order."""
    if old is None or new is None:
        return True

    def normalised(data: TopicRouteData) -> TopicRouteData:
        return TopicRouteData(
            queue_data_list=sorted(data.queue_data_list, key=lambda q: q.broker_name, reverse=True),
            broker_data_list=sorted(data.broker_data_list, key=lambda b: b.broker_name, reverse=True),
        )

    return not _lists_equal(normalised(old), normalised(new))


def route_data_to_publish_info(topic: str, data: TopicRouteData) -> TopicPublishInfo:
    """Writable queues of brokers that have a master, or the ordered-topic layout."""
    info = TopicPublishInfo(route_data=data, order_topic=False)

    if data.order_topic_conf:
        for broker in data.order_topic_conf.split(";"):
            name, sep, nums = broker.partition(":")
            if not sep:
                raise ValueError(f"malformed order topic entry: {broker!r}")
            count = int(nums) if _DECIMAL.fullmatch(nums) else 0
            info.mq_list.extend(MessageQueue(topic, name, i) for i in range(count))
        info.order_topic = True
        return info

    # Queue data is visited last to first.
    for qd in reversed(data.queue_data_list):
        if not queue_is_writeable(qd.perm):
            continue
        broker = next((b for b in data.broker_data_list if b.broker_name == qd.broker_name), None)
        if broker is None or not broker.broker_addresses.get(MASTER_ID):
            continue
        info.mq_list.extend(MessageQueue(topic, qd.broker_name, i) for i in range(qd.write_queue_nums))
    return info


def route_data_to_subscribe_info(topic: str, data: TopicRouteData) -> list[MessageQueue]:
    """All queues of readable queue data."""
    return [
        MessageQueue(topic, qd.broker_name, i)
        for qd in data.queue_data_list
        if queue_is_readable(qd.perm)
        for i in range(qd.read_queue_nums)
    ]