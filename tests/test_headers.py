from datetime import timedelta

import pytest

from rmqclient.codec import CodecType, decode, encode, new_command
from rmqclient.headers import (
    CheckTransactionStateRequestHeader,
    ConsumerSendMsgBackRequestHeader,
    CreateTopicRequestHeader,
    DeleteTopicRequestHeader,
    EndTransactionRequestHeader,
    GetConsumerListRequestHeader,
    GetConsumerRunningInfoHeader,
    GetMaxOffsetRequestHeader,
    GetRouteInfoRequestHeader,
    PullMessageRequestHeader,
    PullMessageResponse,
    QueryConsumerOffsetRequestHeader,
    QueryMessageRequestHeader,
    RequestCode,
    ResponseCode,
    SearchOffsetRequestHeader,
    SendMessageRequestHeader,
    SendMessageRequestV2Header,
    SendMessageResponse,
    TopicListRequestHeader,
    UpdateConsumerOffsetRequestHeader,
    ViewMessageRequestHeader,
)


def _send_header():
    return SendMessageRequestHeader(
        producer_group="pg",
        topic="orders",
        queue_id=3,
        sys_flag=2,
        born_timestamp=1574791577504,
        flag=7,
        properties="a\x01b\x02",
        reconsume_times=1,
        unit_mode=True,
        max_reconsume_times=16,
        batch=False,
        default_topic="dt",
        default_topic_queue_nums="8",
    )


@pytest.mark.parametrize(
    "code, wire_value",
    [
        (RequestCode.SEND_MESSAGE, 10),
        (RequestCode.HEART_BEAT, 34),
        (RequestCode.GET_ROUTE_INFO_BY_TOPIC, 105),
        (RequestCode.SEND_BATCH_MESSAGE, 320),
    ],
)
def test_request_codes_travel_with_protocol_values(code, wire_value):
    command = new_command(code, None, None)
    decoded = decode(encode(command, CodecType.ROCKETMQ)[4:])
    assert decoded.code == wire_value


@pytest.mark.parametrize(
    "code, wire_value",
    [
        (ResponseCode.SUCCESS, 0),
        (ResponseCode.TOPIC_NOT_EXIST, 17),
        (ResponseCode.PULL_OFFSET_MOVED, 21),
    ],
)
def test_response_codes_travel_with_protocol_values(code, wire_value):
    command = new_command(code, None, None)
    decoded = decode(encode(command, CodecType.JSON)[4:])
    assert decoded.code == wire_value


def test_send_header_uses_fixed_default_topic():
    fields = _send_header().encode()
    assert fields["defaultTopic"] == "TBW102"
    assert fields["defaultTopicQueueNums"] == "4"
    assert fields["unitMode"] == "true"
    assert fields["batch"] == "false"
    assert fields["bornTimestamp"] == "1574791577504"
    assert fields["queueId"] == "3"
    assert fields["properties"] == "a\x01b\x02"
    assert len(fields) == 13


def test_send_v2_header_uses_short_keys_and_own_default_topic():
    header = _send_header()
    fields = SendMessageRequestV2Header(header).encode()
    assert sorted(fields) == list("abcdefghijklm")
    assert fields["a"] == header.producer_group
    assert fields["c"] == header.default_topic
    assert fields["d"] == header.default_topic_queue_nums
    assert fields["g"] == str(header.born_timestamp)
    assert fields["k"] == "true"
    assert fields["m"] == "false"


def test_v1_and_v2_carry_same_values():
    header = _send_header()
    v1 = header.encode()
    v2 = SendMessageRequestV2Header(header).encode()
    pairs = {"a": "producerGroup", "b": "topic", "e": "queueId", "f": "sysFlag",
             "g": "bornTimestamp", "h": "flag", "i": "properties", "j": "reconsumeTimes",
             "k": "unitMode", "l": "maxReconsumeTimes", "m": "batch"}
    for short, long in pairs.items():
        assert v2[short] == v1[long]


def test_end_transaction_header():
    fields = EndTransactionRequestHeader(
        producer_group="pg", tran_state_table_offset=5, commit_log_offset=99,
        commit_or_rollback=8, from_transaction_check=True, msg_id="m", transaction_id="t",
    ).encode()
    assert fields == {
        "producerGroup": "pg",
        "tranStateTableOffset": "5",
        "commitLogOffset": "99",
        "commitOrRollback": "8",
        "fromTransactionCheck": "true",
        "msgId": "m",
        "transactionId": "t",
    }


def test_check_transaction_state_decode_reads_ids_into_msg_id():
    original = CheckTransactionStateRequestHeader(
        tran_state_table_offset=12, commit_log_offset=-4,
        msg_id="mid", transaction_id="tid", offset_msg_id="oid",
    )
    decoded = CheckTransactionStateRequestHeader.decode(original.encode())
    assert decoded.tran_state_table_offset == 12
    assert decoded.commit_log_offset == -4
    assert decoded.msg_id == "oid"
    assert decoded.transaction_id == ""
    assert decoded.offset_msg_id == ""


def test_check_transaction_state_decode_only_msg_id():
    decoded = CheckTransactionStateRequestHeader.decode({"msgId": "mid"})
    assert decoded.msg_id == "mid"
    assert decoded.commit_log_offset == 0


def test_check_transaction_state_decode_empty_and_malformed():
    assert CheckTransactionStateRequestHeader.decode({}) == CheckTransactionStateRequestHeader()
    decoded = CheckTransactionStateRequestHeader.decode(
        {"tranStateTableOffset": "abc", "commitLogOffset": "99999999999999999999999"}
    )
    assert decoded.tran_state_table_offset == 0
    assert decoded.commit_log_offset == 2**63 - 1


def test_consumer_send_msg_back_header():
    fields = ConsumerSendMsgBackRequestHeader(
        group="g", offset=100, delay_level=3, origin_msg_id="o",
        origin_topic="t", unit_mode=False, max_reconsume_times=16,
    ).encode()
    assert fields["offset"] == "100"
    assert fields["delayLevel"] == "3"
    assert fields["unitMode"] == "false"
    assert fields["maxReconsumeTimes"] == "16"
    assert fields["originTopic"] == "t"


def test_pull_header_reports_timeout_in_millis():
    fields = PullMessageRequestHeader(
        consumer_group="cg", topic="t", queue_id=1, queue_offset=20, max_msg_nums=32,
        sys_flag=3, commit_offset=10, suspend_timeout=timedelta(milliseconds=1500),
        sub_expression="*", sub_version=7, expression_type="TAG",
    ).encode()
    assert fields["suspendTimeoutMillis"] == "1500"
    assert fields["subscription"] == "*"
    assert fields["maxMsgNums"] == "32"
    assert fields["expressionType"] == "TAG"
    assert len(fields) == 11


def test_pull_header_truncates_sub_millisecond_timeout():
    fields = PullMessageRequestHeader(
        suspend_timeout=timedelta(milliseconds=20, microseconds=999)
    ).encode()
    assert fields["suspendTimeoutMillis"] == "20"


def test_consumer_running_info_round_trip():
    original = GetConsumerRunningInfoHeader(consumer_group="cg", client_id="10.0.0.1@1")
    fields = original.encode()
    assert fields == {"consumerGroup": "cg", "clientId": "10.0.0.1@1"}
    assert GetConsumerRunningInfoHeader.decode(fields) == original
    assert GetConsumerRunningInfoHeader.decode({}) == GetConsumerRunningInfoHeader()


@pytest.mark.parametrize(
    "header, expected",
    [
        (GetConsumerListRequestHeader("cg"), {"consumerGroup": "cg"}),
        (GetMaxOffsetRequestHeader("t", 2), {"topic": "t", "queueId": "2"}),
        (QueryConsumerOffsetRequestHeader("cg", "t", 1),
         {"consumerGroup": "cg", "topic": "t", "queueId": "1"}),
        (SearchOffsetRequestHeader("t", 0, 1574791579221),
         {"topic": "t", "queueId": "0", "timestamp": "1574791579221"}),
        (UpdateConsumerOffsetRequestHeader("cg", "t", 1, 42),
         {"consumerGroup": "cg", "topic": "t", "queueId": "1", "commitOffset": "42"}),
        (GetRouteInfoRequestHeader("t"), {"topic": "t"}),
        (ViewMessageRequestHeader(77), {"offset": "77"}),
        (TopicListRequestHeader("t"), {"topic": "t"}),
        (DeleteTopicRequestHeader("t"), {"topic": "t"}),
        (QueryMessageRequestHeader("t", "k", 32, 1, 2),
         {"topic": "t", "key": "k", "maxNum": "32", "beginTimestamp": "1", "endTimestamp": "2"}),
    ],
)
def test_simple_headers(header, expected):
    assert header.encode() == expected


def test_create_topic_header():
    fields = CreateTopicRequestHeader(
        topic="t", default_topic="TBW102", read_queue_nums=8, write_queue_nums=8,
        perm=6, topic_filter_type="SINGLE_TAG", topic_sys_flag=0, order=True,
    ).encode()
    assert fields["perm"] == "6"
    assert fields["order"] == "true"
    assert fields["readQueueNums"] == "8"
    assert fields["topicFilterType"] == "SINGLE_TAG"


@pytest.mark.parametrize("codec", [CodecType.JSON, CodecType.ROCKETMQ])
def test_header_survives_command_round_trip(codec):
    header = _send_header()
    command = new_command(RequestCode.SEND_MESSAGE, header, b"payload")
    decoded = decode(encode(command, codec)[4:])
    assert decoded.code == RequestCode.SEND_MESSAGE
    assert decoded.ext_fields == header.encode()
    assert decoded.body == b"payload"


def test_response_models_default_to_zero():
    assert SendMessageResponse().queue_offset == 0
    assert PullMessageResponse(max_offset=9).max_offset == 9
    assert PullMessageResponse().next_begin_offset == 0