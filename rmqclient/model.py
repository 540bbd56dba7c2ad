"""Client-side data exchanged with brokers: heartbeats and running info."""

from __future__ import annotations

import functools
import json
import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Iterable

logger = logging.getLogger(__name__)

PROP_NAMESERVER_ADDR = "PROP_NAMESERVER_ADDR"
PROP_THREADPOOL_CORE_SIZE = "PROP_THREADPOOL_CORE_SIZE"
PROP_CONSUME_ORDERLY = "PROP_CONSUMEORDERLY"
PROP_CONSUME_TYPE = "PROP_CONSUME_TYPE"
PROP_CLIENT_VERSION = "PROP_CLIENT_VERSION"
PROP_CONSUMER_START_TIMESTAMP = "PROP_CONSUMER_START_TIMESTAMP"


def _escape_html(text: str) -> str:
    return text.replace("<", "\\u003c").replace(">", "\\u003e").replace("&", "\\u0026")


def _dumps(value: Any) -> str:
    """Compact JSON with HTML-sensitive characters escaped."""
    text = json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    return _escape_html(text)


def _number(value: float) -> Any:
    """Render integral floats without a fraction, as the broker side expects."""
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return int(value)
    return value


def _set_to_list(values: Iterable[Any]) -> list[Any]:
    return sorted(values, key=lambda v: json.dumps(v, sort_keys=True))


@dataclass(frozen=True)
class MessageQueue:
    """One queue of a topic on a broker."""

    topic: str = ""
    broker_name: str = ""
    queue_id: int = 0

    def _to_dict(self) -> dict[str, Any]:
        return {"topic": self.topic, "brokerName": self.broker_name, "queueId": self.queue_id}


class ServiceState(IntEnum):
    CREATE_JUST = 0
    START_FAILED = 1
    RUNNING = 2
    SHUTDOWN = 3


@dataclass
class FindBrokerResult:
    broker_addr: str = ""
    slave: bool = False
    broker_version: int = 0


@dataclass(eq=False)
class SubscriptionData:
    """What a consumer subscribes to on one topic."""

    class_filter_mode: bool = False
    topic: str = ""
    sub_string: str = ""
    tags: set = field(default_factory=set)
    codes: set = field(default_factory=set)
    sub_version: int = 0
    exp_type: str = ""

    def _to_dict(self) -> dict[str, Any]:
        return {
            "classFilterMode": self.class_filter_mode,
            "topic": self.topic,
            "subString": self.sub_string,
            "tagsSet": _set_to_list(self.tags),
            "codeSet": _set_to_list(self.codes),
            "subVersion": self.sub_version,
            "expressionType": self.exp_type,
        }


@dataclass
class ProducerData:
    group_name: str = ""

    def _to_dict(self) -> dict[str, Any]:
        return {"groupName": self.group_name}


@dataclass
class ConsumerData:
    group_name: str = ""
    consume_type: str = ""
    message_model: str = ""
    where: str = ""
    subscription_datas: list[SubscriptionData] = field(default_factory=list)
    unit_mode: bool = False

    def _to_dict(self) -> dict[str, Any]:
        return {
            "groupName": self.group_name,
            "consumeType": self.consume_type,
            "messageModel": self.message_model,
            "consumeFromWhere": self.where,
            "subscriptionDataSet": [s._to_dict() for s in self.subscription_datas],
            "unitMode": self.unit_mode,
        }


@dataclass
class HeartbeatData:
    """Heartbeat sent to every broker; producers and consumers are unique by group."""

    client_id: str = ""
    producer_datas: dict[str, ProducerData] = field(default_factory=dict)
    consumer_datas: dict[str, ConsumerData] = field(default_factory=dict)

    def add_producer(self, data: ProducerData) -> None:
        self.producer_datas.setdefault(data.group_name, data)

    def add_consumer(self, data: ConsumerData) -> None:
        self.consumer_datas.setdefault(data.group_name, data)

    def encode(self) -> bytes:
        text = _dumps(
            {
                "clientID": self.client_id,
                "producerDataSet": [p._to_dict() for p in self.producer_datas.values()],
                "consumerDataSet": [c._to_dict() for c in self.consumer_datas.values()],
            }
        )
        logger.debug("heartbeat: %s", text)
        return text.encode("utf-8")


@dataclass
class ProcessQueueInfo:
    commit_offset: int = 0
    cached_msg_min_offset: int = 0
    cached_msg_max_offset: int = 0
    cached_msg_count: int = 0
    cached_msg_size_in_mib: int = 0
    transaction_msg_min_offset: int = 0
    transaction_msg_max_offset: int = 0
    transaction_msg_count: int = 0
    locked: bool = False
    try_unlock_times: int = 0
    last_lock_timestamp: int = 0
    dropped: bool = False
    last_pull_timestamp: int = 0
    last_consume_timestamp: int = 0

    def _to_dict(self) -> dict[str, Any]:
        return {
            "commitOffset": self.commit_offset,
            "cachedMsgMinOffset": self.cached_msg_min_offset,
            "cachedMsgMaxOffset": self.cached_msg_max_offset,
            "cachedMsgCount": self.cached_msg_count,
            "cachedMsgSizeInMiB": self.cached_msg_size_in_mib,
            "transactionMsgMinOffset": self.transaction_msg_min_offset,
            "transactionMsgMaxOffset": self.transaction_msg_max_offset,
            "transactionMsgCount": self.transaction_msg_count,
            "locked": self.locked,
            "tryUnlockTimes": self.try_unlock_times,
            "lastLockTimestamp": self.last_lock_timestamp,
            "dropped": self.dropped,
            "lastPullTimestamp": self.last_pull_timestamp,
            "lastConsumeTimestamp": self.last_consume_timestamp,
        }


@dataclass
class ConsumeStatus:
    pull_rt: float = 0.0
    pull_tps: float = 0.0
    consume_rt: float = 0.0
    consume_ok_tps: float = 0.0
    consume_failed_tps: float = 0.0
    consume_failed_msgs: int = 0

    def _to_dict(self) -> dict[str, Any]:
        return {
            "pullRT": _number(self.pull_rt),
            "pullTPS": _number(self.pull_tps),
            "consumeRT": _number(self.consume_rt),
            "consumeOKTPS": _number(self.consume_ok_tps),
            "consumeFailedTPS": _number(self.consume_failed_tps),
            "consumeFailedMsgs": self.consume_failed_msgs,
        }


def _compare_subscriptions(a: SubscriptionData, b: SubscriptionData) -> int:
    if a.class_filter_mode != b.class_filter_mode:
        return -1 if not a.class_filter_mode else 1
    if a.sub_version != b.sub_version:
        return -1 if a.sub_version > b.sub_version else 1
    for attr in ("tags", "codes"):
        va = _dumps(_set_to_list(getattr(a, attr))).encode()
        vb = _dumps(_set_to_list(getattr(b, attr))).encode()
        if va != vb:
            return -1 if va > vb else 1
    return 0


@dataclass
class ConsumerRunningInfo:
    """Snapshot of a consumer's state, reported to the broker on request."""

    properties: dict[str, str] = field(default_factory=dict)
    subscription_data: list[SubscriptionData] = field(default_factory=list)
    mq_table: dict[MessageQueue, ProcessQueueInfo] = field(default_factory=dict)
    status_table: dict[str, ConsumeStatus] = field(default_factory=dict)

    def encode(self) -> bytes:
        """Serialise in the broker's format; ``mqTable`` keys are JSON objects."""
        properties = _dumps(dict(sorted(self.properties.items())))
        status = _dumps({k: v._to_dict() for k, v in sorted(self.status_table.items())})
        subs = sorted(self.subscription_data, key=functools.cmp_to_key(_compare_subscriptions))
        subscriptions = _dumps([s._to_dict() for s in subs])

        keys = sorted(self.mq_table, key=lambda q: (q.topic, q.broker_name, q.queue_id))
        table = ",".join(
            f"{_dumps(key._to_dict())}:{_dumps(self.mq_table[key]._to_dict())}" for key in keys
        )
        text = (
            f'{{"properties":{properties},"statusTable":{status},'
            f'"subscriptionSet":{subscriptions},"mqTable":{{{table}}}}}'
        )
        return text.encode("utf-8")