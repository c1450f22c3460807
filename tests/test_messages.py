import json

import pytest

from tvreceiver.messages import (
    Answer,
    Candidate,
    Identified,
    Identify,
    Offer,
    PeerStatus,
    Ping,
    Pong,
    decode,
    encode,
)
from tvreceiver.types import IceCandidate, Identity, MalformedMessage


def test_identify_wire_form():
    data = json.loads(encode(Identify(Identity("tv-1", "AndroidTV"))))
    assert data == {"type": "identify", "from": "tv", "payload": {"tvId": "tv-1", "name": "AndroidTV"}}


def test_identify_without_name_sends_empty_name():
    data = json.loads(encode(Identify(Identity("tv-2"))))
    assert data["payload"] == {"tvId": "tv-2", "name": ""}


def test_pong_and_answer_wire_form():
    assert json.loads(encode(Pong())) == {"type": "pong"}
    assert json.loads(encode(Answer("v=0...ans"))) == {"type": "answer", "sdp": "v=0...ans"}


def test_candidate_wire_form():
    msg = Candidate(IceCandidate("candidate:1 1 udp 1 10.0.0.1 5000 typ host", "0", 0))
    assert json.loads(encode(msg)) == {
        "type": "candidate",
        "sdpMid": "0",
        "sdpMLineIndex": 0,
        "candidate": "candidate:1 1 udp 1 10.0.0.1 5000 typ host",
    }


@pytest.mark.parametrize("raw,expected", [
    ('{"type":"ping"}', Ping()),
    ('{"type":"identified","tvId":"tv-1"}', Identified()),
    ('{"type":"offer","sdp":"v=0..."}', Offer("v=0...")),
    ('{"type":"peer-status","status":"online"}', PeerStatus("online")),
    ('{"type":"peer-status"}', PeerStatus("")),
    ('{"type":"candidate","sdpMid":"video","sdpMLineIndex":1,"candidate":"candidate:x"}',
     Candidate(IceCandidate("candidate:x", "video", 1))),
    (b'{"type":"pong"}', Pong()),
])
def test_decode_known_types(raw, expected):
    assert decode(raw) == expected


def test_decode_unknown_type_is_ignored():
    assert decode('{"type":"viewer-joined","id":3}') is None


@pytest.mark.parametrize("raw", [
    "not json",
    "[1, 2]",
    '"ping"',
    "{}",
    '{"type": 5}',
    '{"type":"offer"}',
    '{"type":"offer","sdp":""}',
    '{"type":"offer","sdp":42}',
    '{"type":"answer"}',
    '{"type":"candidate","sdpMid":"0","sdpMLineIndex":"0","candidate":"c"}',
    '{"type":"candidate","sdpMid":"0","sdpMLineIndex":true,"candidate":"c"}',
    '{"type":"candidate","sdpMid":"0","sdpMLineIndex":-1,"candidate":"c"}',
    '{"type":"candidate","sdpMid":"0","sdpMLineIndex":0,"candidate":""}',
    '{"type":"candidate","sdpMLineIndex":0,"candidate":"c"}',
    '{"type":"peer-status","status":1}',
    '{"type":"identify","payload":{"name":"x"}}',
    b"\xff\xfe",
])
def test_decode_rejects_malformed(raw):
    with pytest.raises(MalformedMessage):
        decode(raw)
