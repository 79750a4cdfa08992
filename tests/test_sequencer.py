"""Test the step sequencer state machine on a virtual clock."""

import unittest

from tone_deployer.orchestrator import (
    CompletionPayload,
    EntryStatus,
    FailurePolicy,
    InvalidReactivation,
    ReactivationPolicy,
    SequencerPhase,
    StepCatalog,
    StepDefinition,
    StepOutcome,
    StepSequencer,
    VirtualScheduler,
)


def _catalog() -> StepCatalog:
    return StepCatalog([
        StepDefinition("Analyze", "read the request", 100),
        StepDefinition("Build", "render manifests", 50),
        StepDefinition("Ship", "apply manifests", 10),
    ])


class SequencerTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.scheduler = VirtualScheduler()
        self.payloads = []
        self.events = []
        self.sequencer = self._make()

    def _make(self, **kwargs) -> StepSequencer:
        sequencer = StepSequencer(
            catalog=kwargs.pop("catalog", _catalog()),
            scheduler=self.scheduler,
            on_complete=self.payloads.append,
            **kwargs,
        )
        sequencer.log_store.subscribe(self._record)
        return sequencer

    def _record(self, event, entry, store) -> None:
        self.events.append((
            event,
            entry.id if entry else None,
            [e.status for e in store.entries],
            self.scheduler.now_ms,
        ))


class StepSequencerTests(SequencerTestCase):
    def test_three_step_run_completes_in_order(self) -> None:
        self.sequencer.activate("deploy a chat app")
        self.scheduler.run_until_idle()

        entries = self.sequencer.log_store.entries
        self.assertEqual([e.id for e in entries], ["step-0", "step-1", "step-2"])
        self.assertEqual([e.message for e in entries], ["Analyze", "Build", "Ship"])
        self.assertTrue(all(e.status == EntryStatus.COMPLETED for e in entries))
        self.assertEqual(len(self.payloads), 1)
        self.assertEqual(self.sequencer.phase, SequencerPhase.COMPLETED)
        self.assertEqual(self.sequencer.current_step_index, 3)

    def test_timeline_includes_settle_and_completion_delays(self) -> None:
        self.sequencer.activate("x")
        self.scheduler.run_until_idle()

        timeline = [(event, entry_id, now) for event, entry_id, _, now in self.events]
        self.assertEqual(timeline, [
            ("reset", None, 0.0),
            ("appended", "step-0", 0.0),
            ("completed", "step-0", 100.0),
            ("appended", "step-1", 600.0),
            ("completed", "step-1", 650.0),
            ("appended", "step-2", 1150.0),
            ("completed", "step-2", 1160.0),
        ])
        # 最后一步之后: settle 500 + completion 1000
        self.assertEqual(self.scheduler.now_ms, 2660.0)

    def test_phases_follow_running_settling_completing(self) -> None:
        self.sequencer.activate("x")
        self.assertEqual(self.sequencer.phase, SequencerPhase.RUNNING)

        self.scheduler.advance(100)
        self.assertEqual(self.sequencer.phase, SequencerPhase.SETTLING)
        self.assertEqual(self.sequencer.snapshot().display_step, 1)

        self.scheduler.advance(500)
        self.assertEqual(self.sequencer.phase, SequencerPhase.RUNNING)
        self.assertEqual(self.sequencer.current_step_index, 1)
        self.assertEqual(self.sequencer.snapshot().display_step, 2)

        self.scheduler.advance(50 + 500 + 10)
        # 最后一步完成后仍先进入 settling
        self.assertEqual(self.sequencer.phase, SequencerPhase.SETTLING)
        self.assertEqual(self.sequencer.current_step_index, 3)
        self.assertEqual(self.sequencer.snapshot().display_step, 3)

        self.scheduler.advance(499)
        self.assertEqual(self.sequencer.phase, SequencerPhase.SETTLING)
        self.scheduler.advance(1)
        self.assertEqual(self.sequencer.phase, SequencerPhase.COMPLETING)
        self.assertEqual(self.payloads, [])

        self.scheduler.advance(999)
        self.assertEqual(self.payloads, [])
        self.scheduler.advance(1)
        self.assertEqual(len(self.payloads), 1)

    def test_single_running_entry_and_ordering_hold_at_every_event(self) -> None:
        self.sequencer.activate("x")
        self.scheduler.run_until_idle()

        for event, _, statuses, _ in self.events:
            self.assertLessEqual(statuses.count(EntryStatus.RUNNING), 1)
            if event == "appended":
                # 新条目之前的所有条目都已完成
                self.assertTrue(all(s == EntryStatus.COMPLETED for s in statuses[:-1]))
                self.assertEqual(statuses[-1], EntryStatus.RUNNING)

    def test_exactly_one_timer_outstanding_while_live(self) -> None:
        self.sequencer.activate("x")
        while self.sequencer.is_live:
            self.assertEqual(self.scheduler.pending, 1)
            self.scheduler.run_once()
        self.assertEqual(self.scheduler.pending, 0)

    def test_callback_only_after_last_entry_completed(self) -> None:
        statuses_at_callback = []

        def on_complete(payload: CompletionPayload) -> None:
            statuses_at_callback.append([e.status for e in sequencer.log_store.entries])

        sequencer = StepSequencer(catalog=_catalog(), scheduler=self.scheduler, on_complete=on_complete)
        sequencer.activate("x")
        self.scheduler.run_until_idle()
        self.assertEqual(statuses_at_callback, [[EntryStatus.COMPLETED] * 3])

    def test_callback_waits_for_last_settle_then_completion_delay(self) -> None:
        fired_at = []
        sequencer = StepSequencer(
            catalog=_catalog(),
            scheduler=self.scheduler,
            on_complete=lambda payload: fired_at.append(self.scheduler.now_ms),
        )
        sequencer.activate("x")
        self.scheduler.run_until_idle()
        # 最后一步在 1160 完成，+500 settle，+1000 completion
        self.assertEqual(fired_at, [2660.0])

    def test_prompt_does_not_affect_steps_or_timing(self) -> None:
        timelines = []
        for prompt in ("", "a much longer prompt " * 50):
            scheduler = VirtualScheduler()
            seen = []
            sequencer = StepSequencer(catalog=_catalog(), scheduler=scheduler)
            sequencer.log_store.subscribe(
                lambda event, entry, store, seen=seen, scheduler=scheduler: seen.append(
                    (event, entry.id if entry else None, scheduler.now_ms)
                )
            )
            sequencer.activate(prompt)
            scheduler.run_until_idle()
            self.assertEqual(sequencer.prompt, prompt)
            timelines.append(seen)
        self.assertEqual(timelines[0], timelines[1])

    def test_payload_is_default_static_result(self) -> None:
        self.sequencer.activate("x")
        self.scheduler.run_until_idle()
        payload = self.payloads[0]
        self.assertEqual(payload.to_dict(), {
            "liveUrl": "https://chat.my-app.com",
            "sourceRepo": "https://github.com/tone-platform/my-chat-app",
            "configRepo": "https://github.com/tone-platform/my-chat-app-config",
            "services": ["Frontend", "Backend", "Redis", "Database"],
            "status": "deployed",
        })
        self.assertIs(self.sequencer.result, payload)

    def test_payload_factory_is_injected(self) -> None:
        calls = []

        def factory(prompt, entries):
            calls.append((prompt, len(entries)))
            return CompletionPayload("https://x", "src", "cfg", ["Api"], "custom")

        sequencer = self._make(payload_factory=factory)
        sequencer.activate("hello")
        self.scheduler.run_until_idle()
        self.assertEqual(calls, [("hello", 3)])
        self.assertEqual(self.payloads[-1].status, "custom")

    def test_empty_catalog_completes_without_entries(self) -> None:
        sequencer = self._make(catalog=StepCatalog([]))
        sequencer.activate("x")
        self.scheduler.run_until_idle()
        self.assertEqual(len(sequencer.log_store), 0)
        self.assertEqual(len(self.payloads), 1)
        self.assertEqual(sequencer.snapshot().display_step, 0)


class ReactivationTests(SequencerTestCase):
    def test_reset_on_fresh_and_finished_engine(self) -> None:
        sizes_after_reset = []
        self.sequencer.log_store.subscribe(
            lambda event, entry, store: sizes_after_reset.append(len(store)) if event == "reset" else None
        )
        self.sequencer.activate("first")
        self.scheduler.run_until_idle()
        self.sequencer.activate("second")
        self.scheduler.run_until_idle()

        self.assertEqual(sizes_after_reset, [0, 0])
        self.assertEqual(len(self.sequencer.log_store), 3)
        self.assertEqual(len(self.payloads), 2)

    def test_restart_policy_discards_in_flight_run(self) -> None:
        self.sequencer.activate("first")
        self.scheduler.advance(650)  # step-1 已完成，正在等待 step-2
        self.assertEqual(self.sequencer.current_step_index, 2)

        self.sequencer.activate("second")
        self.scheduler.run_until_idle()

        entries = self.sequencer.log_store.entries
        self.assertEqual([e.id for e in entries], ["step-0", "step-1", "step-2"])
        self.assertTrue(all(e.status == EntryStatus.COMPLETED for e in entries))
        self.assertEqual(len(self.payloads), 1)
        self.assertEqual(self.sequencer.generation, 2)

    def test_restart_while_step_running_leaves_no_stale_mutation(self) -> None:
        self.sequencer.activate("first")
        self.scheduler.advance(50)  # step-0 仍在运行
        self.sequencer.activate("second")
        self.scheduler.run_until_idle()

        appended = [entry_id for event, entry_id, _, _ in self.events if event == "appended"]
        # 第一次运行的 step-0 + 第二次运行的三个步骤
        self.assertEqual(appended, ["step-0", "step-0", "step-1", "step-2"])
        self.assertEqual(len(self.sequencer.log_store), 3)
        self.assertEqual(len(self.payloads), 1)

    def test_stale_timer_is_ignored_even_if_not_cancelled(self) -> None:
        self.sequencer.activate("first")
        stale = self.sequencer._timer
        self.sequencer.activate("second")
        # 模拟未取消的旧定时器仍然触发
        stale.callback()
        self.assertEqual(len(self.sequencer.log_store), 1)
        self.assertEqual(self.sequencer.log_store.entries[0].status, EntryStatus.RUNNING)

    def test_reject_policy_raises_while_live(self) -> None:
        sequencer = self._make(reactivation_policy=ReactivationPolicy.REJECT)
        sequencer.activate("first")
        self.scheduler.advance(120)
        with self.assertRaises(InvalidReactivation):
            sequencer.activate("second")

        self.scheduler.run_until_idle()
        self.assertEqual(sequencer.prompt, "first")
        self.assertEqual(len(sequencer.log_store), 3)
        self.assertEqual(len(self.payloads), 1)

        # 运行结束后允许再次启动
        sequencer.activate("third")
        self.scheduler.run_until_idle()
        self.assertEqual(len(self.payloads), 2)

    def test_reject_policy_also_covers_completion_delay(self) -> None:
        sequencer = self._make(reactivation_policy="reject")
        sequencer.activate("first")
        self.scheduler.advance(1160)
        self.assertEqual(sequencer.phase, SequencerPhase.SETTLING)
        with self.assertRaises(InvalidReactivation):
            sequencer.activate("second")

        self.scheduler.advance(500)
        self.assertEqual(sequencer.phase, SequencerPhase.COMPLETING)
        with self.assertRaises(InvalidReactivation):
            sequencer.activate("second")

    def test_teardown_cancels_without_callback(self) -> None:
        self.sequencer.activate("x")
        self.scheduler.advance(120)
        self.sequencer.teardown()
        self.assertEqual(self.scheduler.run_until_idle(), 0)
        self.assertEqual(self.payloads, [])
        self.assertEqual(self.sequencer.phase, SequencerPhase.IDLE)


class StepOutcomeTests(SequencerTestCase):
    def _failing_runner(self, failing_index: int):
        def runner(step, index):
            if index == failing_index:
                return StepOutcome.failure(f"{step.message} exploded")
            return StepOutcome.success()
        return runner

    def test_halt_policy_stops_run(self) -> None:
        failures = []
        sequencer = self._make(step_runner=self._failing_runner(1), on_failure=failures.append)
        sequencer.activate("x")
        self.scheduler.run_until_idle()

        statuses = [e.status for e in sequencer.log_store.entries]
        self.assertEqual(statuses, [EntryStatus.COMPLETED, EntryStatus.FAILED])
        self.assertEqual(sequencer.phase, SequencerPhase.FAILED)
        self.assertEqual(self.payloads, [])
        self.assertEqual([f.error for f in failures], ["Build exploded"])

    def test_continue_policy_reports_degraded(self) -> None:
        sequencer = self._make(
            step_runner=self._failing_runner(0),
            failure_policy=FailurePolicy.CONTINUE,
        )
        sequencer.activate("x")
        self.scheduler.run_until_idle()

        statuses = [e.status for e in sequencer.log_store.entries]
        self.assertEqual(statuses, [EntryStatus.FAILED, EntryStatus.COMPLETED, EntryStatus.COMPLETED])
        self.assertEqual(len(self.payloads), 1)
        self.assertEqual(self.payloads[0].status, "degraded")

    def test_runner_exception_counts_as_failure(self) -> None:
        def runner(step, index):
            raise RuntimeError("network down")

        sequencer = self._make(step_runner=runner)
        with self.assertLogs("tone_deployer.orchestrator.sequencer", level="ERROR"):
            sequencer.activate("x")
            self.scheduler.run_until_idle()
        self.assertEqual(sequencer.log_store.entries[0].error, "network down")
        self.assertEqual(sequencer.phase, SequencerPhase.FAILED)

    def test_failed_run_can_be_reactivated_under_reject(self) -> None:
        sequencer = self._make(
            step_runner=self._failing_runner(0),
            reactivation_policy=ReactivationPolicy.REJECT,
        )
        sequencer.activate("x")
        self.scheduler.run_until_idle()
        sequencer.step_runner = lambda step, index: StepOutcome.success()
        sequencer.activate("retry by hand")
        self.scheduler.run_until_idle()
        self.assertEqual(len(self.payloads), 1)


class ObserverErrorTests(SequencerTestCase):
    """观察者（例如写日志文件）抛错时，运行必须终止而不是卡在 running"""

    def _flaky_observer(self, on_event: str):
        state = {"raised": False}

        def observer(event, entry, store):
            if event == on_event and not state["raised"]:
                state["raised"] = True
                raise OSError("No space left on device")
        return observer

    def test_observer_error_on_completion_fails_run(self) -> None:
        sequencer = self._make(reactivation_policy=ReactivationPolicy.REJECT)
        sequencer.log_store.subscribe(self._flaky_observer("completed"))
        sequencer.activate("x")

        with self.assertLogs("tone_deployer.orchestrator.sequencer", level="ERROR"):
            with self.assertRaises(OSError):
                self.scheduler.run_until_idle()

        self.assertEqual(sequencer.phase, SequencerPhase.FAILED)
        self.assertFalse(sequencer.is_live)
        self.assertEqual(self.scheduler.pending, 0)
        self.assertEqual(self.payloads, [])

        # 失败的运行不再阻塞 reject 策略下的新运行
        sequencer.activate("y")
        self.scheduler.run_until_idle()
        self.assertEqual(sequencer.prompt, "y")
        self.assertEqual(len(self.payloads), 1)
        self.assertEqual(sequencer.phase, SequencerPhase.COMPLETED)

    def test_observer_error_during_activate_propagates(self) -> None:
        sequencer = self._make()
        sequencer.log_store.subscribe(self._flaky_observer("appended"))

        with self.assertLogs("tone_deployer.orchestrator.sequencer", level="ERROR"):
            with self.assertRaises(OSError):
                sequencer.activate("x")

        self.assertEqual(sequencer.phase, SequencerPhase.FAILED)
        self.assertEqual(self.scheduler.pending, 0)

    def test_on_complete_error_leaves_run_terminal(self) -> None:
        def on_complete(payload):
            raise RuntimeError("result screen crashed")

        sequencer = StepSequencer(catalog=_catalog(), scheduler=self.scheduler, on_complete=on_complete)
        sequencer.activate("x")
        with self.assertLogs("tone_deployer.orchestrator.sequencer", level="ERROR"):
            with self.assertRaises(RuntimeError):
                self.scheduler.run_until_idle()
        self.assertFalse(sequencer.is_live)
        self.assertEqual(self.scheduler.pending, 0)


if __name__ == "__main__":
    unittest.main()
