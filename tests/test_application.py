"""Tests for the running application handle."""

import pytest

from calabash_android.application import Application
from calabash_android.errors import CalabashError, ErrorCode, OperationTimedOutError
from calabash_android.models import WaitOptions
from calabash_android.polling import PollingEngine
from tests.mocks import MOCK_DEVICE_ID, MOCK_PACKAGE


@pytest.fixture
def application(ready_bridge, configuration, fake_clock):
    polling = PollingEngine(clock=fake_clock, sleep=fake_clock.sleep)
    return Application(MOCK_PACKAGE, MOCK_DEVICE_ID, ready_bridge, configuration, polling)


NEVER = WaitOptions(
    timeout_seconds=2,
    retry_frequency_seconds=1,
    failure_message="element never appeared",
    screenshot_on_failure=True,
)


class TestApplication:
    def test_properties(self, application, ready_bridge):
        assert application.package_name == MOCK_PACKAGE
        assert application.installed_on_serial == MOCK_DEVICE_ID
        assert application.bridge is ready_bridge
        assert MOCK_DEVICE_ID in repr(application)

    def test_properties_are_read_only(self, application):
        with pytest.raises(AttributeError):
            application.installed_on_serial = "emulator-5556"

    @pytest.mark.asyncio
    async def test_query_and_preferences(self, application):
        assert (await application.query("edittext")).first().resource_id == "name"
        preferences = await application.get_shared_preferences("my_preferences")
        assert preferences["an int"] == "123"

    @pytest.mark.asyncio
    async def test_inspect(self, application):
        depths = [depth async for _, depth in application.inspect()]
        assert depths[0] == 0
        assert max(depths) == 5

    @pytest.mark.asyncio
    async def test_close_closes_bridge(self, application, ready_bridge):
        async with application:
            pass
        assert not ready_bridge.is_open


class TestWaitFor:
    @pytest.mark.asyncio
    async def test_wait_for_element(self, application):
        elements = await application.wait_for_element("button marked:'Greet'")
        assert elements.size() == 1
        assert elements.first().text == "Greet"

    @pytest.mark.asyncio
    async def test_wait_for_greeting(self, application):
        await (await application.query("edittext")).first().set_text("foo")
        await (await application.query("button")).first().touch()

        async def greeted():
            greeting = (await application.query("* marked:'greeting'")).first()
            return greeting.text == "Hi there foo"

        assert await application.wait_for(greeted) is True

    @pytest.mark.asyncio
    async def test_timeout_takes_screenshot(self, application, configuration, fake_adb):
        with pytest.raises(OperationTimedOutError) as exc_info:
            await application.wait_for_element("button marked:'nope'", NEVER)

        assert str(exc_info.value) == "element never appeared"
        screenshot = configuration.logs_directory / "screenshots" / "wait_for_failure_0.png"
        assert fake_adb.screenshots == [screenshot]
        assert screenshot.is_file()

    @pytest.mark.asyncio
    async def test_no_screenshot_by_default(self, application, fake_adb):
        options = WaitOptions(timeout_seconds=2, throw_on_timeout=False)
        assert await application.wait_for(lambda: False, options) is False
        assert fake_adb.screenshots == []

    @pytest.mark.asyncio
    async def test_screenshot_on_failure_without_return_error(self, application, fake_adb):
        options = NEVER.model_copy(update={"throw_on_timeout": False})
        assert await application.wait_for(lambda: False, options) is False
        assert len(fake_adb.screenshots) == 1

    @pytest.mark.asyncio
    async def test_screenshot_failure_does_not_mask_timeout(self, application, fake_adb):
        async def broken_capture(serial, local_path):
            raise CalabashError("no screen", ErrorCode.SCREENSHOT_FAILED)

        fake_adb.capture_screenshot = broken_capture
        with pytest.raises(OperationTimedOutError):
            await application.wait_for(lambda: False, NEVER)

    @pytest.mark.asyncio
    async def test_default_wait_from_configuration(self, ready_bridge, configuration, fake_clock):
        configuration = configuration.model_copy(
            update={
                "default_wait": WaitOptions(
                    timeout_seconds=3, retry_frequency_seconds=1, throw_on_timeout=False
                )
            }
        )
        polling = PollingEngine(clock=fake_clock, sleep=fake_clock.sleep)
        application = Application(
            MOCK_PACKAGE, MOCK_DEVICE_ID, ready_bridge, configuration, polling
        )

        assert await application.wait_for(lambda: False) is False
        assert polling.attempts == 3

    @pytest.mark.asyncio
    async def test_nested_wait_reports_outer_attempts(self, application):
        async def greeted():
            greeting = (await application.wait_for_element("* marked:'greeting'")).first()
            return greeting.text == "Hi there nobody"

        options = WaitOptions(
            timeout_seconds=3, retry_frequency_seconds=1, failure_message="never greeted"
        )
        with pytest.raises(OperationTimedOutError) as exc_info:
            await application.wait_for(greeted, options)

        assert exc_info.value.details["attempts"] == 3
        assert application.polling.attempts == 3
