"""Tests for the in-process change-feed notifier."""

from notequeue.core.notifier import JobEventNotifier


async def test_notify_wakes_matching_and_global_listeners():
    notifier = JobEventNotifier()

    with notifier.listen("user-1") as mine, notifier.listen("user-2") as theirs:
        with notifier.listen() as everyone:
            notifier.notify("user-1")

            assert mine.is_set()
            assert everyone.is_set()
            assert not theirs.is_set()


async def test_listeners_are_removed_on_exit():
    notifier = JobEventNotifier()

    with notifier.listen("user-1"):
        with notifier.listen("user-1"):
            assert notifier.listener_count == 2
        assert notifier.listener_count == 1
    assert notifier.listener_count == 0

    notifier.notify("user-1")
