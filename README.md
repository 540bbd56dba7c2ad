# rmqclient

Building blocks for the client side of a broker-based message queue. The
package has no third-party dependencies. It contains these modules:

- **`rmqclient.codec`** implements the remoting wire format. A `RemotingCommand`
  is framed as `| frame_size | codec + header_length | header | body |`, and its
  header is either JSON or the compact binary form (`CodecType.JSON`,
  `CodecType.ROCKETMQ`). Functions: `new_command`, `encode`, `decode`,
  `encode_json_header` / `decode_json_header`, `encode_rocketmq_header` /
  `decode_rocketmq_header`. Malformed input raises `CodecError`.
- **`rmqclient.future`** provides `ResponseFuture`, the pending response to a
  request. `set_response` records the outcome. `wait_response` blocks until the
  outcome arrives or until the optional timeout passes, in which case it raises
  `RequestTimeoutError`. `execute_invoke_callback` runs the callback no more than once.
- **`rmqclient.perm`** holds the queue permission helpers `queue_is_readable`,
  `queue_is_writeable`, `queue_is_inherited` and `perm_to_string`. It also has
  `get_retry_topic` and the well-known group and topic names.
- **`rmqclient.headers`** defines the `RequestCode` and `ResponseCode` enumerations
  and the request header dataclasses. Each header's `encode()` returns the
  `ext_fields` dictionary. `CheckTransactionStateRequestHeader.decode` and
  `GetConsumerRunningInfoHeader.decode` work in the other direction.
- **`rmqclient.model`** contains `MessageQueue`, `SubscriptionData`,
  `ProducerData`, `ConsumerData` and `HeartbeatData`, whose entries are unique
  by group. It also has `ProcessQueueInfo`, `ConsumeStatus` and
  `ConsumerRunningInfo`, which serialises in the broker's JSON layout.
- **`rmqclient.route`** contains `QueueData`, `BrokerData` and `TopicRouteData`.
  `TopicRouteData.decode` accepts name-server JSON, including bare integer broker-id
  keys. There is also `TopicPublishInfo` with round-robin `fetch_queue_index`.
  `route_data_changed` compares route data, and `route_data_to_publish_info` and
  `route_data_to_subscribe_info` turn it into queue lists.

## Installing

```
pip install .
```

## Encoding and decoding a command

```python
from rmqclient.codec import CodecType, decode, encode, new_command
from rmqclient.headers import GetRouteInfoRequestHeader, RequestCode

cmd = new_command(RequestCode.GET_ROUTE_INFO_BY_TOPIC,
                  GetRouteInfoRequestHeader(topic="orders"), None)
frame = encode(cmd, CodecType.ROCKETMQ)
# The first four bytes hold the frame size; decode takes what follows them.
same = decode(frame[4:])
assert same.ext_fields == {"topic": "orders"}
assert same.opaque == cmd.opaque
```

## Working with route data

```python
from rmqclient.route import (
    TopicRouteData, route_data_to_publish_info, route_data_to_subscribe_info,
)

route = TopicRouteData.decode(
    '{"queueDatas":[{"brokerName":"b1","readQueueNums":2,"writeQueueNums":2,"perm":6}],'
    '"brokerDatas":[{"cluster":"c1","brokerName":"b1","brokerAddrs":{0:"127.0.0.1:10911"}}]}'
)
publish = route_data_to_publish_info("orders", route)
assert publish.is_ok() and len(publish.mq_list) == 2
assert len(route_data_to_subscribe_info("orders", route)) == 2
```

## Waiting for a response

```python
from rmqclient.future import RequestTimeoutError, ResponseFuture

future = ResponseFuture(opaque=7, callback=None, timeout=0.1)
try:
    future.wait_response()
except RequestTimeoutError:
    pass
```

## What the package does not do

The package handles data only. It does not include:

- a network transport: it opens no connections and sends or receives no frames;
- a name-server client: it resolves, queries and caches no routes;
- a client runtime: there is no producer, consumer, heartbeat schedule or
  rebalancing loop;
- any command-line program.

It supplies the formats and the bookkeeping that such pieces would be built on.

## Tests

```
pip install .[test]
pytest
```