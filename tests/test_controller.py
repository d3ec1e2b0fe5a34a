from __future__ import annotations

import logging
import threading

import pytest

from conftest import FakeAnalysis, FakePlanning, FakeScript, make_analysis, make_plan
from manju.pipeline.errors import CapabilityFailure, ControllerBusyError, SchemaViolation, ValidationError
from manju.pipeline.events import Messages
from manju.pipeline.factory import build_controller
from manju.pipeline.result import SCRIPT_FAILURE_PLACEHOLDER
from manju.pipeline.state import PipelineStage

IDLE, ANALYZING, PLANNING, WRITING, COMPLETE = (
    PipelineStage.IDLE,
    PipelineStage.ANALYZING,
    PipelineStage.PLANNING,
    PipelineStage.WRITING,
    PipelineStage.COMPLETE,
)


def test_successful_start_runs_each_stage_once(make_controller) -> None:
    analysis, planning = FakeAnalysis(), FakePlanning()
    controller = make_controller(analysis, planning)

    result = controller.start("第一章 叶尘觉醒剑骨。")

    assert result.ok
    assert [entry.episode_number for entry in result.value] == [1, 2]
    assert controller.stage is WRITING
    assert controller.state.history == [IDLE, ANALYZING, PLANNING, WRITING]
    assert len(analysis.calls) == 1
    assert len(planning.calls) == 1
    assert planning.calls[0][0] == controller.analysis
    assert controller.text == "第一章 叶尘觉醒剑骨。"
    assert controller.busy is False
    assert controller.last_error is None
    assert controller.log.messages() == [
        "架构生成完毕。已规划 2 集内容。",
        Messages.BUILDING_STRUCTURE,
        "提取关键词: 逆袭, 成长",
        "分析完成。识别题材: 玄幻",
        Messages.SENDING_TO_ANALYSIS,
        Messages.QUEUE_INITIALISED,
    ]


def test_worked_example(make_controller) -> None:
    script = FakeScript()
    controller = make_controller(script=script)
    controller.start("玄幻小说正文")

    first = controller.generate_script(1)
    assert first.ok
    assert controller.artifacts.as_dict() == {1: "SCRIPT 1"}
    assert controller.log[0].message == "第 1 集剧本编译成功。"
    assert controller.stage is WRITING

    again = controller.generate_script(1)
    assert again.value is first.value
    assert script.calls == [1]

    with pytest.raises(ValidationError):
        controller.generate_script(99)
    assert script.calls == [1]
    assert controller.artifacts.as_dict() == {1: "SCRIPT 1"}


def test_start_rejects_empty_text(make_controller) -> None:
    analysis = FakeAnalysis()
    controller = make_controller(analysis)

    with pytest.raises(ValidationError):
        controller.start("   ")

    assert analysis.calls == []
    assert controller.stage is IDLE
    assert len(controller.log) == 0


@pytest.mark.parametrize(
    ("error", "kind"),
    [
        (CapabilityFailure("quota exhausted", capability="analysis"), "capability_failure"),
        (RuntimeError("socket closed"), "capability_failure"),
        (SchemaViolation("bad genre", capability="analysis"), "schema_violation"),
    ],
)
def test_analysis_failure_rewinds_to_idle(make_controller, error, kind) -> None:
    planning = FakePlanning()
    controller = make_controller(FakeAnalysis(error=error), planning)

    result = controller.start("正文")

    assert not result.ok
    assert controller.stage is IDLE
    assert controller.state.history == [IDLE, ANALYZING, IDLE]
    assert controller.analysis is None
    assert controller.plan == ()
    assert planning.calls == []
    assert controller.log[0].message.startswith("错误: ")
    assert controller.last_error.kind == kind
    assert controller.last_error.stage is ANALYZING
    assert controller.busy is False


def test_planning_failure_discards_analysis(make_controller) -> None:
    controller = make_controller(planning=FakePlanning(error=CapabilityFailure("timeout", capability="planning")))

    result = controller.start("正文")

    assert isinstance(result.error, CapabilityFailure)
    assert controller.analysis is None
    assert controller.state.history == [IDLE, ANALYZING, PLANNING, IDLE]
    assert controller.log[0].message == "错误: timeout"
    assert controller.last_error.stage is PLANNING
    assert controller.last_error.capability == "planning"


def test_duplicate_episode_numbers_are_rejected_by_default(make_controller) -> None:
    controller = make_controller(planning=FakePlanning(make_plan(1, 1, 2)))

    result = controller.start("正文")

    assert isinstance(result.error, SchemaViolation)
    assert controller.stage is IDLE
    assert controller.plan == ()


def test_duplicate_episode_numbers_can_be_renumbered(make_controller) -> None:
    controller = make_controller(planning=FakePlanning(make_plan(1, 1, 2)), duplicate_policy="renumber")

    result = controller.start("正文")

    assert result.ok
    assert [entry.episode_number for entry in controller.plan] == [1, 2, 3]
    assert any("检测到重复集数 1" in message for message in controller.log.messages())


def test_capabilities_may_return_plain_payloads(make_controller) -> None:
    analysis = FakeAnalysis({"genre": "悬疑", "title": "雾城", "themes": ["真相"]})
    planning = FakePlanning([{"episodeNumber": 1, "title": "雾起"}])
    controller = make_controller(analysis, planning)

    assert controller.start("正文").ok
    assert controller.analysis.genre.value == "悬疑"
    assert controller.plan[0].title == "雾起"


def test_malformed_list_entries_do_not_abort_the_run(make_controller, caplog) -> None:
    analysis = FakeAnalysis(
        {
            "genre": "穿越",
            "title": "回到大唐",
            "themes": ["穿越", None, "  "],
            "characters": [{"name": "叶尘", "traits": ["机敏", 3]}, {"role": "路人"}, "旁白"],
        }
    )
    controller = make_controller(analysis)

    with caplog.at_level(logging.WARNING, logger="manju.pipeline.schema"):
        result = controller.start("正文")

    assert result.ok
    assert controller.stage is WRITING
    assert controller.analysis.themes == ["穿越"]
    assert [character.name for character in controller.analysis.characters] == ["叶尘"]
    assert controller.analysis.characters[0].traits == ["机敏"]
    dropped = [record for record in caplog.records if record.name == "manju.pipeline.schema"]
    assert len(dropped) == 5


def test_malformed_plan_is_a_schema_violation(make_controller) -> None:
    controller = make_controller(planning=FakePlanning("not a plan"))

    result = controller.start("正文")

    assert isinstance(result.error, SchemaViolation)
    assert controller.stage is IDLE


def test_generate_script_requires_a_plan(make_controller) -> None:
    script = FakeScript()
    controller = make_controller(script=script)

    with pytest.raises(ValidationError):
        controller.generate_script(1)
    with pytest.raises(ValidationError):
        controller.generate_all()
    assert script.calls == []


@pytest.mark.parametrize(
    "failure",
    [CapabilityFailure("model overloaded", capability="script"), SCRIPT_FAILURE_PLACEHOLDER, ""],
)
def test_script_failure_is_isolated(make_controller, failure) -> None:
    controller = make_controller(script=FakeScript(failures={2: failure}))
    controller.start("正文")
    controller.generate_script(1)

    result = controller.generate_script(2)

    assert not result.ok
    assert controller.artifacts.as_dict() == {1: "SCRIPT 1"}
    assert controller.stage is WRITING
    assert controller.log[0].message == "第 2 集剧本生成失败"
    assert controller.last_error.episode_number == 2
    assert controller.last_error.stage is WRITING
    assert controller.pending_episodes() == [2]


def test_failed_episode_can_be_retried(make_controller) -> None:
    script = FakeScript(failures={1: CapabilityFailure("flaky", capability="script")})
    controller = make_controller(script=script)
    controller.start("正文")

    assert not controller.generate_script(1).ok
    del script.failures[1]
    assert controller.generate_script(1).ok
    assert script.calls == [1, 1]


def test_restart_purges_artifacts_by_default(make_controller) -> None:
    controller = make_controller()
    controller.start("正文")
    controller.generate_script(1)

    assert controller.start("新正文").ok

    assert len(controller.artifacts) == 0
    assert Messages.ARTIFACTS_PURGED.format(count=1) in controller.log.messages()
    assert controller.text == "新正文"


def test_restart_reconcile_keeps_matching_episodes(make_controller) -> None:
    planning = FakePlanning(make_plan(1, 2))
    controller = make_controller(planning=planning, artifact_policy="reconcile")
    controller.start("正文")
    controller.generate_all()

    planning.plan_result = make_plan(2, 3)
    controller.start("正文")

    assert controller.artifacts.episode_numbers == [2]
    assert controller.pending_episodes() == [3]


def test_restart_keep_policy_leaves_artifacts(make_controller) -> None:
    controller = make_controller(artifact_policy="keep")
    controller.start("正文")
    controller.generate_script(1)
    controller.start("正文")

    assert controller.artifacts.episode_numbers == [1]


def test_failed_restart_leaves_artifacts_untouched(make_controller) -> None:
    analysis = FakeAnalysis()
    controller = make_controller(analysis)
    controller.start("正文")
    controller.generate_script(1)

    analysis.error = CapabilityFailure("down", capability="analysis")
    result = controller.start("正文")

    assert not result.ok
    assert controller.artifacts.as_dict() == {1: "SCRIPT 1"}
    assert controller.plan == ()
    assert controller.stage is IDLE
    with pytest.raises(ValidationError):
        controller.generate_script(1)


def _run_blocked(controller, episode_number: int) -> threading.Thread:
    worker = threading.Thread(target=controller.generate_script, args=(episode_number,))
    worker.start()
    return worker


def test_serial_mode_rejects_concurrent_operations(make_controller) -> None:
    gate = threading.Event()
    script = FakeScript(gate=gate)
    controller = make_controller(script=script)
    controller.start("正文")

    worker = _run_blocked(controller, 1)
    try:
        assert script.started.wait(timeout=5)
        assert controller.busy is True
        with pytest.raises(ControllerBusyError):
            controller.generate_script(2)
        with pytest.raises(ControllerBusyError):
            controller.start("正文")
    finally:
        gate.set()
        worker.join(timeout=5)

    assert controller.busy is False
    assert script.calls == [1]
    assert controller.artifacts.episode_numbers == [1]


def test_per_episode_mode_rejects_same_episode_twice(make_controller) -> None:
    gate = threading.Event()
    script = FakeScript(gate=gate)
    controller = make_controller(script=script, script_concurrency="per_episode")
    controller.start("正文")

    worker = _run_blocked(controller, 1)
    try:
        assert script.started.wait(timeout=5)
        with pytest.raises(ControllerBusyError):
            controller.generate_script(1)
        with pytest.raises(ControllerBusyError):
            controller.start("正文")
    finally:
        gate.set()
        worker.join(timeout=5)

    assert script.calls == [1]
    assert controller.busy is False


def test_scripts_are_rejected_while_start_is_running(make_controller) -> None:
    analysis = FakeAnalysis()
    controller = make_controller(analysis)
    controller.start("正文")
    controller.generate_script(1)

    gate, entered = threading.Event(), threading.Event()

    def blocking_analyze(text: str):
        entered.set()
        gate.wait(timeout=5)
        return make_analysis()

    analysis.analyze = blocking_analyze
    worker = threading.Thread(target=controller.start, args=("新正文",))
    worker.start()
    try:
        assert entered.wait(timeout=5)
        assert controller.busy is True
        assert controller.stage is ANALYZING
        with pytest.raises(ControllerBusyError):
            controller.generate_script(1)
        with pytest.raises(ControllerBusyError):
            controller.generate_all()
    finally:
        gate.set()
        worker.join(timeout=5)

    assert controller.busy is False
    assert controller.text == "新正文"
    assert len(controller.artifacts) == 0


def test_generate_all_holds_the_controller_for_the_whole_batch(make_controller) -> None:
    gate = threading.Event()
    script = FakeScript(gate=gate)
    controller = make_controller(planning=FakePlanning(make_plan(1, 2, 3)), script=script)
    controller.start("正文")

    outcome: dict = {}
    worker = threading.Thread(target=lambda: outcome.update(controller.generate_all()))
    worker.start()
    try:
        assert script.started.wait(timeout=5)
        assert controller.busy is True
        with pytest.raises(ControllerBusyError):
            controller.generate_script(3)
        with pytest.raises(ControllerBusyError):
            controller.generate_all([2])
        with pytest.raises(ControllerBusyError):
            controller.start("正文")
    finally:
        gate.set()
        worker.join(timeout=5)

    assert list(outcome) == [1, 2, 3]
    assert all(result.ok for result in outcome.values())
    assert script.calls == [1, 2, 3]
    assert controller.busy is False


def test_generate_all_per_episode_fans_out(make_controller) -> None:
    script = FakeScript()
    controller = make_controller(
        planning=FakePlanning(make_plan(1, 2, 3)),
        script=script,
        script_concurrency="per_episode",
        max_workers=3,
    )
    controller.start("正文")

    results = controller.generate_all()

    assert list(results) == [1, 2, 3]
    assert all(result.ok for result in results.values())
    assert sorted(script.calls) == [1, 2, 3]
    assert controller.artifacts.as_dict() == {1: "SCRIPT 1", 2: "SCRIPT 2", 3: "SCRIPT 3"}


def test_generate_all_reports_failures_per_episode(make_controller) -> None:
    controller = make_controller(
        planning=FakePlanning(make_plan(1, 2, 3)),
        script=FakeScript(failures={2: RuntimeError("boom")}),
    )
    controller.start("正文")
    controller.generate_script(3)

    results = controller.generate_all([3, 2, 1, 2])

    assert list(results) == [3, 2, 1]
    assert results[3].ok and results[1].ok
    assert isinstance(results[2].error, CapabilityFailure)
    assert controller.pending_episodes() == [2]

    with pytest.raises(ValidationError):
        controller.generate_all([1, 42])


def test_complete_stage_is_opt_in(make_controller) -> None:
    default = make_controller()
    default.start("正文")
    default.generate_all()
    assert default.stage is WRITING

    opted_in = make_controller(complete_when_all_scripted=True)
    opted_in.start("正文")
    opted_in.generate_script(1)
    assert opted_in.stage is WRITING
    opted_in.generate_script(2)
    assert opted_in.stage is COMPLETE
    assert opted_in.log[0].message == Messages.ALL_SCRIPTED.format(count=2)


def test_log_cap_applies_to_controller(make_controller) -> None:
    controller = make_controller(max_log_entries=3)
    controller.start("正文")

    assert len(controller.log) == 3
    assert controller.log[0].message == "架构生成完毕。已规划 2 集内容。"


def test_snapshot_is_json_friendly(make_controller) -> None:
    controller = make_controller()
    controller.start("正文")
    controller.generate_script(2)

    snapshot = controller.snapshot()

    assert snapshot["stage"] == "WRITING"
    assert snapshot["busy"] is False
    assert snapshot["history"] == ["IDLE", "ANALYZING", "PLANNING", "WRITING"]
    assert snapshot["analysis"]["genre"] == "玄幻"
    assert [entry["episodeNumber"] for entry in snapshot["plan"]] == [1, 2]
    assert snapshot["scripts"] == {"2": "SCRIPT 2"}
    assert snapshot["log"][0]["message"] == "第 2 集剧本编译成功。"


def test_mock_pipeline_end_to_end() -> None:
    controller = build_controller(provider="mock", seed=7, mock_episodes=3)

    started = controller.start("第一章 林青被逐出宗门。")
    assert started.ok
    assert len(controller.plan) == 3

    results = controller.generate_all()
    assert all(result.ok for result in results.values())
    script = controller.artifacts.content(2)
    assert "[SCENE]" in script
    assert "第 2 集" in script
    assert "青云逆途" in script


def test_mock_pipeline_failure_is_reported() -> None:
    controller = build_controller(provider="mock", fail_stages=["planning"])

    result = controller.start("正文")

    assert not result.ok
    assert "Mock failure injected" in str(result.error)
    assert controller.stage is IDLE
