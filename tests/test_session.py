# File: tests/test_session.py
import pytest
from selenium.common.exceptions import TimeoutException, WebDriverException

from site_compare.browser.session import BrowserSession, build_chrome_options
from site_compare.crawler.models import ClickTarget, FormOutcome, QueueItem
from site_compare.context import Context
from site_compare.exceptions import ContractError, NoCapture, SessionTimeout

from conftest import page


@pytest.fixture()
def session_for(context, fake_driver):
    def _make(which="ref", pages=None, png=b"png"):
        driver = fake_driver(which, pages, png)
        return BrowserSession(context, which, driver), driver

    return _make


def test_navigate_and_capture(session_for):
    session, driver = session_for(pages={"/": (200, page("home", "/a"))})
    capture = session.navigate_and_capture("/")

    assert capture.which == "ref"
    assert capture.status == 200
    assert capture.content_type == "text/html"
    assert capture.final_url == "http://ref.test/"
    assert capture.signature == "top:http://ref.test/|doc:1#1"
    assert capture.screenshot == b"png"
    assert len(capture.dom_hash) == 32
    assert session.stats["navigations"] == 1
    assert session.stats["captures"] == 1


def test_same_page_same_hash_across_sites(session_for):
    ref, _ = session_for("ref")
    new, _ = session_for("new")
    assert ref.navigate_and_capture("/").dom_hash == new.navigate_and_capture("/").dom_hash


def test_missing_page_reports_404(session_for):
    session, _ = session_for()
    assert session.navigate_and_capture("/missing").status == 404


def test_signature_is_cached_until_navigation(session_for):
    session, driver = session_for(pages={"/": (200, page("home")), "/a": (200, page("a"))})
    session.navigate_and_capture("/")
    session.signature()
    session.signature()
    assert driver.script_calls.count("signature") == 1

    session.navigate_and_capture("/a")
    assert session.signature() == "top:http://ref.test/a|doc:1#1"
    assert driver.script_calls.count("signature") == 2


def test_click_and_capture(session_for):
    session, driver = session_for(pages={"/": (200, page("home")), "/next": (200, page("next"))})
    driver.clickables["//a[1]"] = "/next"
    session.navigate_and_capture("/")

    capture = session.click_and_capture(ClickTarget(locator="//a[1]", text="next"))
    assert capture.final_url == "http://ref.test/next"
    assert session.stats["clicks"] == 1


def test_click_falls_back_to_equivalent_when_allowed(session_for):
    session, driver = session_for("new", pages={"/": (200, page("home")), "/next": (200, page("next"))})
    driver.clickables["//b"] = "/next"
    driver.equivalent = {"locator": "//b", "score": 0.9}
    target = ClickTarget(locator="//a[1]", text="next")

    with pytest.raises(NoCapture):
        session.click_and_capture(target)
    capture = session.click_and_capture(target, allow_equivalent=True)
    assert capture.final_url == "http://new.test/next"
    assert driver.script_calls[-2:] == ["click //a[1]", "click //b"]


def test_click_without_equivalent(session_for):
    session, driver = session_for()
    with pytest.raises(NoCapture) as excinfo:
        session.click_and_capture(ClickTarget(locator="//nothing"), allow_equivalent=True)
    assert excinfo.value.reason == "no_capture"


def test_navigation_timeout_retried_then_raised(session_for):
    session, driver = session_for()
    driver.get_error = TimeoutException("page load timed out")
    with pytest.raises(SessionTimeout) as excinfo:
        session.navigate("/")
    assert excinfo.value.reason == "timeout"
    # three attempts, two retries
    assert session.stats["retries"] == 2


def test_other_webdriver_errors_propagate(session_for):
    session, driver = session_for()
    driver.get_error = WebDriverException("chrome not reachable")
    with pytest.raises(WebDriverException) as excinfo:
        session.navigate("/")
    assert not isinstance(excinfo.value, SessionTimeout)
    assert session.stats["retries"] == 0


def test_page_without_body_is_not_captured(session_for):
    session, _ = session_for(pages={"/": (200, "")})
    with pytest.raises(NoCapture):
        session.navigate_and_capture("/")


def test_replay_hop(session_for):
    session, driver = session_for(pages={"/": (200, page("home")), "/next": (200, page("next"))}, png=b"shot")
    driver.clickables["//go"] = "/next"

    assert session.replay_hop(QueueItem.link("/")) == b"shot"
    assert session.replay_hop(QueueItem.click("top:x", ClickTarget(locator="//go"))) == b"shot"
    assert driver.visited == ["/", "/next"]

    with pytest.raises(NoCapture):
        session.replay_hop(QueueItem.click("top:x", ClickTarget(locator="//gone")))


def test_replay_hop_uses_equivalent_element_when_allowed(session_for):
    session, driver = session_for("new", pages={"/": (200, page("home")), "/private": (200, page("private"))})
    driver.clickables["//go-new"] = "/private"
    driver.equivalent = {"locator": "//go-new", "score": 3.0}
    hop = QueueItem.click("top:x", ClickTarget(locator="//go", text="Go"))

    with pytest.raises(NoCapture):
        session.replay_hop(hop)
    assert session.replay_hop(hop, allow_equivalent=True) == b"png"
    assert driver.visited == ["/private"]
    assert driver.script_calls[-2:] == ["click //go", "click //go-new"]


def test_handle_select_form(session_for):
    session, driver = session_for(pages={"/": (200, page("home")), "/list": (200, page("list"))})
    driver.forms["select#lang"] = ["en", "fr"]
    driver.submits["button.apply"] = "/list"
    session.navigate("/")

    outcome = session.handle_form("select#lang", "button.apply")

    assert outcome == FormOutcome("select#lang", found=True, applied=("en", "fr"))
    assert driver.script_calls[-4:] == ["select en", "submit button.apply", "select fr", "submit button.apply"]
    assert driver.visited == ["/", "/list", "/list"]
    assert session.stats["forms"] == 1


def test_handle_form_change_event_only(session_for):
    session, driver = session_for()
    driver.forms["select.sort"] = ["asc", "desc"]
    session.navigate("/")

    assert session.handle_form("select.sort").applied == ("asc", "desc")
    assert not any(call.startswith("submit") for call in driver.script_calls)


def test_handle_form_missing_submit_skips_options(session_for):
    session, driver = session_for()
    driver.forms["select.sort"] = ["asc"]
    session.navigate("/")

    outcome = session.handle_form("select.sort", "#nowhere")
    assert outcome.found is True
    assert outcome.applied == ()


@pytest.mark.parametrize("selector", ["select#absent", "form#login"])
def test_handle_form_not_handled(session_for, selector):
    session, driver = session_for()
    session.navigate("/")
    assert session.handle_form(selector) == FormOutcome(selector)
    assert not any(call.startswith("select") for call in driver.script_calls)


def test_reset_and_close(session_for):
    session, driver = session_for()
    session.reset("/")
    assert "reset" in driver.script_calls
    assert driver.visited == ["/"]
    assert "__screset=" in driver.current_url

    session.close()
    assert driver.quit_called


def test_rejects_unknown_side(context, fake_driver):
    with pytest.raises(ContractError):
        BrowserSession(context, "other", fake_driver())


def test_chrome_options(make_config):
    config = make_config(browser={"headless": True, "extra_args": ["--lang=en"], "workdir": "/tmp/profiles"})
    options = build_chrome_options(Context.for_role(config, "default"), "new")
    assert "--headless=new" in options.arguments
    assert "--lang=en" in options.arguments
    assert "--user-data-dir=/tmp/profiles/default-new" in options.arguments
