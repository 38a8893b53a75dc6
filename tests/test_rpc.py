# File: tests/test_rpc.py
import json

import pytest
from selenium.common.exceptions import WebDriverException

from site_compare.browser.session import BrowserSession
from site_compare.capture import Capture
from site_compare.config import RpcTimeouts
from site_compare.context import Context
from site_compare.crawler.models import ClickTarget, FormOutcome, QueueItem
from site_compare.exceptions import ContractError, RemoteDriverError, RpcError, SessionError
from site_compare.rpc.client import WorkerClient, execute
from site_compare.rpc.protocol import (
    AnswerBuffer,
    Err,
    Ok,
    Replay,
    decode_answer,
    encode_request,
    frame_answer,
    parse_request,
)
from site_compare.rpc.remote import RemotePair
from site_compare.rpc.server import RELOGIN, UNEXPECTED, Worker, WorkerServer

from conftest import free_port, page

FAST = RpcTimeouts(send_command=0.3, get_answer=1.0, execute=1.0)


def client_for(port, name="ref", timeouts=FAST):
    return WorkerClient(port, name=name, timeouts=timeouts, poll=0.01)


# --------------------------------------------------------------------------- #
#                                  Framing                                    #
# --------------------------------------------------------------------------- #


def test_request_encoding():
    assert encode_request("ping") == b"ping {}"
    assert parse_request(b'navigate_and_capture {"path": "/"}') == ("navigate_and_capture", {"path": "/"})
    assert parse_request(b"stats\n") == ("stats", {})
    with pytest.raises(ContractError):
        encode_request("two words")


@pytest.mark.parametrize("raw", [b"", b"   ", b"cmd {broken", b"cmd [1, 2]"])
def test_bad_requests(raw):
    with pytest.raises(RpcError):
        parse_request(raw)


def test_frame_answer():
    assert frame_answer({"a": 1}, pid=42) == b'42 {"answer": {"a": 1}}\n42 OK\n'
    assert frame_answer(None) == b"OK\n"


def test_answer_buffer_joins_fragments_and_strips_pid():
    buffer = AnswerBuffer()
    assert buffer.feed(b'12 {"ans') is False
    assert buffer.feed(b'wer": "pong"}\n12 O') is False
    assert buffer.feed(b"K\n") is True
    assert buffer.response == '{"answer": "pong"}'


def test_answer_buffer_last_line_without_newline():
    buffer = AnswerBuffer()
    assert buffer.feed(b'{"answer": 1}\r\nOK') is False
    assert buffer.close() is True
    assert decode_answer(buffer.response) == Ok(1)


def test_decode_answer():
    assert decode_answer("") == Ok(True)
    assert decode_answer("not json") == Err("decode")
    assert decode_answer("[1]") == Err("decode")
    assert decode_answer('{"answer": "relogin"}', ("relogin",)) == Replay("relogin")
    assert decode_answer('{"answer": "relogin"}') == Ok("relogin")


# --------------------------------------------------------------------------- #
#                                   Client                                    #
# --------------------------------------------------------------------------- #


def test_call_round_trip(stub_worker):
    server = stub_worker(lambda request: frame_answer("pong", pid=1))
    assert client_for(server.port).call("ping") == Ok("pong")
    assert server.requests == ["ping {}"]


def test_get_answer_closes_socket(stub_worker):
    server = stub_worker(lambda request: frame_answer(True))
    client = client_for(server.port)
    sock = client.send_command("stats")
    assert client.get_answer(sock) == Ok(True)
    assert sock.fileno() == -1


def test_connection_refused_is_socket_error():
    assert client_for(free_port()).call("ping") == Err("socket")
    with pytest.raises(RpcError):
        client_for(free_port()).send_command("ping")


def test_missing_ok_line_is_socket_error(stub_worker):
    server = stub_worker(lambda request: b'{"answer": 1}\n')
    assert client_for(server.port).call("ping") == Err("socket")


def test_get_answer_timeout(stub_worker):
    server = stub_worker(lambda request: None)
    client = client_for(server.port, timeouts=RpcTimeouts(send_command=0.3, get_answer=0.2, execute=0.2))
    assert client.call("ping") == Err("timeout")


def test_execute_broadcasts_to_every_worker(stub_worker):
    ref = stub_worker(lambda request: frame_answer("ref", pid=1))
    new = stub_worker(lambda request: frame_answer("new", pid=2))
    clients = {"ref": client_for(ref.port, "ref"), "new": client_for(new.port, "new")}

    results = execute("ping", None, clients)

    assert results == {"ref": Ok("ref"), "new": Ok("new")}
    assert ref.requests == new.requests == ["ping {}"]


def test_execute_reports_each_failure_separately(stub_worker):
    ok = stub_worker(lambda request: frame_answer("fine"))
    silent = stub_worker(lambda request: None)
    clients = {
        "ref": client_for(ok.port, "ref"),
        "new": client_for(silent.port, "new"),
        "gone": client_for(free_port(), "gone"),
    }

    results = execute("ping", None, clients, timeout=0.2)

    assert results == {"ref": Ok("fine"), "new": Err("timeout"), "gone": Err("socket")}


def test_replay_handler_then_resend(stub_worker):
    def responder(request):
        args = json.loads(request.split(" ", 1)[1])
        return frame_answer({"path": args["path"]} if "replayed" in args else RELOGIN)

    server = stub_worker(responder)
    calls = []

    def handler(name, command, args):
        calls.append((name, command, args))
        return True

    results = execute("navigate_and_capture", {"path": "/"}, {"ref": client_for(server.port)}, {RELOGIN: handler})

    assert results == {"ref": Ok({"path": "/"})}
    assert calls == [("ref", "navigate_and_capture", {"path": "/"})]
    assert json.loads(server.requests[1].split(" ", 1)[1]) == {"path": "/", "replayed": RELOGIN}


def test_replay_loop_is_detected(stub_worker):
    server = stub_worker(lambda request: frame_answer(RELOGIN))
    calls = []

    def handler(name, command, args):
        calls.append(name)
        return True

    results = execute("navigate_and_capture", {"path": "/"}, {"ref": client_for(server.port)}, {RELOGIN: handler})

    assert results == {"ref": Err(f"replay:{RELOGIN}")}
    assert calls == ["ref"]
    assert len(server.requests) == 2


def test_replay_handler_failure(stub_worker):
    server = stub_worker(lambda request: frame_answer(RELOGIN))
    results = execute(
        "navigate_and_capture", {"path": "/"}, {"ref": client_for(server.port)}, {RELOGIN: lambda *a: False}
    )
    assert results == {"ref": Err(f"handler:{RELOGIN}")}
    assert len(server.requests) == 1


# --------------------------------------------------------------------------- #
#                              Worker over TCP                                #
# --------------------------------------------------------------------------- #


@pytest.fixture()
def start_worker(make_config, fake_driver, serve):
    """Serve a real Worker over a FakeDriver; returns (server, driver)."""

    def _start(config=None, which="ref", pages=None, authenticator=None):
        config = config or make_config()
        context = Context.for_worker(config, "default", which, 0)
        driver = fake_driver(which, pages)
        worker = Worker(context, BrowserSession(context, which, driver), authenticator)
        server = serve(WorkerServer(worker, 0))
        return server, driver

    return _start


def test_worker_commands(start_worker):
    server, driver = start_worker(pages={"/": (200, page("home"))})
    client = client_for(server.port)

    assert client.call("ping") == Ok("pong")
    status = client.call("internal_status").value
    assert status["which"] == "ref"
    assert status["role"] == "default"

    capture = Capture.from_dict(client.call("navigate_and_capture", {"path": "/"}).value)
    assert capture.status == 200
    assert capture.screenshot == b"png"
    assert client.call("signature") == Ok("top:http://ref.test/|doc:1#1")
    assert client.call("stats").value["navigations"] == 1


def test_worker_reports_errors_as_answers(start_worker):
    server, _ = start_worker()
    client = client_for(server.port)

    assert client.call("unknown").value["error"] == "request"
    assert client.call("navigate_and_capture", {}).value["error"] == "contract"
    missing = client.call("click_and_capture", {"target": {"locator": "//none"}}).value
    assert missing["error"] == "no_capture"


def test_worker_reports_driver_errors(start_worker):
    server, driver = start_worker()
    driver.get_error = WebDriverException("chrome not reachable")

    answer = client_for(server.port).call("navigate_and_capture", {"path": "/"})

    assert isinstance(answer, Ok)
    assert answer.value["error"] == UNEXPECTED
    assert answer.value["exception"] == "WebDriverException"
    assert "chrome not reachable" in answer.value["message"]


def test_worker_handles_forms(start_worker):
    server, driver = start_worker()
    driver.forms["select#lang"] = ["en", "fr"]
    client = client_for(server.port)
    client.call("navigate_and_capture", {"path": "/"})

    outcome = client.call("handle_form", {"selector": "select#lang"}).value
    assert FormOutcome.from_dict(outcome) == FormOutcome("select#lang", found=True, applied=("en", "fr"))
    assert client.call("handle_form", {}).value["error"] == "contract"


def test_worker_discovers_clickables(start_worker):
    server, driver = start_worker()
    driver.discovered = [{"locator": "//button[1]", "text": "Go", "kind": "button"}, {"text": "no locator"}]
    targets = client_for(server.port).call("discover_clickables").value
    assert targets == [ClickTarget(locator="//button[1]", text="Go", kind="button").to_dict()]


# --------------------------------------------------------------------------- #
#                                 RemotePair                                  #
# --------------------------------------------------------------------------- #


@pytest.fixture()
def remote_pair(make_config, start_worker):
    def _make(ref_authenticator=None):
        config = make_config(roles={"default": {"login_pattern": "/login", "workers": {"ref": 1, "new": 2}}})
        pages = {"/": (200, page("home")), "/private": (200, page("private")), "/login": (200, page("login"))}
        ref, ref_driver = start_worker(config, "ref", dict(pages), ref_authenticator)
        new, new_driver = start_worker(config, "new", dict(pages))
        clients = {"ref": client_for(ref.port, "ref"), "new": client_for(new.port, "new")}
        pair = RemotePair(Context.for_role(config, "default"), clients)
        return pair, ref_driver, new_driver

    return _make


def test_remote_pair_navigates_both_sides(remote_pair):
    pair, ref_driver, new_driver = remote_pair()
    both = pair.navigate_and_capture("/")
    assert (both.ref.final_url, both.new.final_url) == ("http://ref.test/", "http://new.test/")
    assert pair.status().new["which"] == "new"
    assert pair.signature("new") == "top:http://new.test/|doc:1#1"


def test_remote_pair_relogs_in_and_replays(remote_pair):
    def login(session):
        session.driver.redirects.clear()
        return True

    pair, ref_driver, new_driver = remote_pair(login)
    ref_driver.redirects["/private"] = "/login"

    both = pair.navigate_and_capture("/private")

    assert both.ref.final_url == "http://ref.test/private"
    assert ref_driver.visited == ["/login", "/private"]
    assert new_driver.visited == ["/private"]


def test_remote_pair_gives_up_when_still_on_login(remote_pair):
    pair, ref_driver, _ = remote_pair(lambda session: True)
    ref_driver.redirects["/private"] = "/login"

    with pytest.raises(SessionError) as excinfo:
        pair.navigate_and_capture("/private")
    assert excinfo.value.reason == f"replay:{RELOGIN}"


def test_remote_pair_click_errors_carry_reason(remote_pair):
    pair, ref_driver, new_driver = remote_pair()
    pair.navigate_and_capture("/")
    with pytest.raises(SessionError) as excinfo:
        pair.click_and_capture(QueueItem.click("top:x", ClickTarget(locator="//none")))
    assert excinfo.value.reason == "no_capture"


def test_remote_pair_replays_hops(remote_pair):
    pair, ref_driver, new_driver = remote_pair()
    shots = pair.replay_hop(QueueItem.link("/private"))
    assert (shots.ref, shots.new) == (b"png", b"png")
    assert ref_driver.visited == new_driver.visited == ["/private"]


def test_remote_pair_replays_equivalent_hop_on_new_side(remote_pair):
    pair, ref_driver, new_driver = remote_pair()
    ref_driver.clickables["//go"] = "/private"
    new_driver.clickables["//go-new"] = "/private"
    new_driver.equivalent = {"locator": "//go-new", "score": 3.0}

    shots = pair.replay_hop(QueueItem.click("top:x", ClickTarget(locator="//go", text="Go")))

    assert (shots.ref, shots.new) == (b"png", b"png")
    assert ref_driver.visited == new_driver.visited == ["/private"]


def test_remote_pair_driver_error_is_unexpected(remote_pair):
    pair, ref_driver, _ = remote_pair()
    ref_driver.get_error = WebDriverException("chrome not reachable")

    with pytest.raises(RemoteDriverError) as excinfo:
        pair.navigate_and_capture("/")
    assert excinfo.value.name == "WebDriverException"


def test_remote_pair_handles_forms(remote_pair):
    pair, ref_driver, _ = remote_pair()
    ref_driver.forms["select#lang"] = ["en"]
    pair.navigate_and_capture("/")

    outcome = pair.handle_form("select#lang", "button.apply")

    # no submit button on the page: the option is not counted as applied
    assert outcome.ref == FormOutcome("select#lang", found=True)
    assert outcome.new == FormOutcome("select#lang")


def test_remote_pair_ready(make_config, remote_pair):
    pair, _, _ = remote_pair()
    assert pair.ready() is True

    config = make_config(roles={"default": {"workers": {"ref": 1, "new": 2}}})
    clients = {"ref": client_for(free_port(), "ref"), "new": client_for(free_port(), "new")}
    assert RemotePair(Context.for_role(config, "default"), clients).ready() is False
