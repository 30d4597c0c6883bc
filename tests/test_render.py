import json

from callpipe.channels.base import CallResult, Incoming
from callpipe.parser import parse_command
from callpipe.render import Renderer


def test_raw_reply_is_one_compact_line() -> None:
    text = Renderer().reply("1:hello/ping", CallResult(body={"a": [1, 2]}))
    assert text == '{"a":[1,2]}\n'


def test_human_reply_has_header_and_pretty_body() -> None:
    renderer = Renderer(human=True)
    text = renderer.reply("3:hello/ping", CallResult(body={"a": 1}, info="pong"))
    header, _, body = text.partition("\n")
    assert header == "ON-REPLY 3:hello/ping: OK pong"
    assert json.loads(body) == {"a": 1}
    assert "\n  " in body


def test_human_error_reply() -> None:
    text = Renderer(human=True).reply("1:x/y", CallResult(body=None, error="invalid-request"))
    assert text.startswith("ON-REPLY 1:x/y: ERROR invalid-request\n")
    assert text.endswith("null\n")


def test_raw_and_human_together() -> None:
    text = Renderer(human=True, raw=True).reply("1:x/y", CallResult(body=[1]))
    assert text.startswith("[1]\nON-REPLY 1:x/y: OK\n")


def test_quiet_hides_successful_replies_only() -> None:
    renderer = Renderer(quiet=True)
    assert renderer.reply("1:x/y", CallResult(body=1)) == ""
    assert renderer.reply("2:x/y", CallResult.failed("boom")) == "null\n"


def test_incoming_event_in_human_mode() -> None:
    text = Renderer(human=True).incoming(Incoming(kind="event", name="hello/tick", body={"n": 1}))
    assert text.startswith("ON-EVENT hello/tick:\n")


def test_echo_lines() -> None:
    renderer = Renderer()
    assert renderer.echo(parse_command('hello ping {"x":1}')) == 'SEND-CALL hello/ping {"x":1}\n'
    assert renderer.echo(parse_command("! tick")) == "SEND-EVENT: tick null\n"


def test_human_alone_prints_no_raw_line() -> None:
    renderer = Renderer(human=True)
    assert not renderer.raw
    assert Renderer().raw
    text = renderer.reply("1:x/y", CallResult(body=[1]))
    assert text.startswith("ON-REPLY 1:x/y: OK\n")
