"""
Engine Unit Tests

End-to-end runs of the sample report pipeline against fake modules and a
scripted MCP collaborator.
"""

import asyncio
import json

import pytest

from guardsymbi.config import EngineConfig
from guardsymbi.engine import Engine
from guardsymbi.errors import BuildError, EntryTaskMissing, MissingCapability
from guardsymbi.execution_log import EventKind
from guardsymbi.loader import load_modules
from guardsymbi.models import TaskState
from guardsymbi.report import RunStatus

from conftest import PIPELINE, Counter, call, make_module, task


@pytest.fixture
def pipeline():
    return load_modules(PIPELINE)


class TestReportPipeline:

    @pytest.mark.asyncio
    async def test_malformed_input_is_repaired(self, engine, registry, assistant, pipeline):
        registry.files["input.json"] = '{"title": "Q3", "rows": [1, 2, 3'
        assistant.responses["fix"] = {"status": "ok", "value": '{"title": "Q3", "rows": [1, 2, 3]}'}

        report = await engine.run(pipeline)

        assert report.status == RunStatus.SUCCEEDED
        assert report.states() == {
            "load": TaskState.SUCCEEDED,
            "validateAndOptimize": TaskState.SUCCEEDED,
            "report": TaskState.SUCCEEDED,
        }
        assert report.output == "report-Q3.pdf"
        assert assistant.count("fix") == 1
        assert assistant.count("suggestFix") == 0

        load = report.tasks["load"]
        assert load.attempts == 3  # read once, parse twice
        assert [r.action for r in load.recovery] == ["ai_fix"]

    @pytest.mark.asyncio
    async def test_optimized_value_flows_downstream(self, engine, assistant, pipeline):
        assistant.responses["optimize"] = {"status": "ok", "value": {"title": "Q3-tuned", "rows": [6]}}

        report = await engine.run(pipeline)

        assert report.tasks["validateAndOptimize"].output == {"title": "Q3-tuned", "rows": [6]}
        assert report.output == "report-Q3-tuned.pdf"
        assert assistant.count("fix") == 0

    @pytest.mark.asyncio
    async def test_invalid_input_fails_guard(self, engine, registry, assistant, pipeline):
        registry.files["input.json"] = '{"rows": [1, 2, 3]}'
        assistant.responses["suggestFix"] = {"status": "ok", "explanation": "add a title field"}

        report = await engine.run(pipeline)

        assert report.status == RunStatus.FAILED
        assert report.states() == {
            "load": TaskState.SUCCEEDED,
            "validateAndOptimize": TaskState.FAILED,
            "report": TaskState.ABORTED,
        }
        assert assistant.kinds() == ["suggestFix"]

        validate = report.tasks["validateAndOptimize"]
        assert validate.failure.kind == "GuardFailure"
        assert validate.attempts == 0
        assert len(validate.recovery) == 1
        assert validate.recovery[0].mcp_status == "ok"

        assert report.tasks["report"].failure.kind == "AbortedDependency"
        assert report.output is None

    @pytest.mark.asyncio
    async def test_report_lists_mcp_calls_of_this_run(self, engine, registry, assistant, pipeline):
        registry.files["input.json"] = '{"rows": []}'

        first = await engine.run(pipeline)
        second = await engine.run(pipeline)

        assert len(first.mcp_calls) == 1
        assert len(second.mcp_calls) == 1
        assert first.mcp_calls[0]["request_id"] != second.mcp_calls[0]["request_id"]
        assert first.mcp_calls[0]["kind"] == "suggestFix"

    @pytest.mark.asyncio
    async def test_report_is_json_serializable(self, engine, pipeline):
        report = await engine.run(pipeline, run_id="r-json")

        data = json.loads(report.to_json())

        assert data["run_id"] == "r-json"
        assert data["status"] == "succeeded"
        assert data["tasks"]["report"]["output"] == "report-Q3.pdf"
        kinds = [event["kind"] for event in data["events"]]
        assert kinds[0] == "run_started"
        assert kinds[-1] == "run_finished"

    @pytest.mark.asyncio
    async def test_same_declarations_run_twice(self, engine, pipeline):
        graph = engine.build(pipeline)

        first = await engine.run(graph)
        second = await engine.run(graph)

        assert first.states() == second.states()
        assert first.run_id != second.run_id

    @pytest.mark.asyncio
    async def test_failed_task_produces_report(self, engine, registry):
        fetch = Counter(10, ConnectionError("reset"))
        registry.register("Net", "get", fetch)
        module = make_module([
            task("fetch", call("Net.get", let="page", onError={"actions": ["retry"], "max_attempts": 3}), output="page"),
            task("store", call("JSON.dump", "$fetch"), inputs=["fetch"]),
        ], run="store")

        report = await engine.run([module])

        assert report.status == RunStatus.FAILED
        assert report.states() == {"fetch": TaskState.FAILED, "store": TaskState.ABORTED}
        assert fetch.calls == 3

        failed = report.tasks["fetch"]
        assert failed.attempts == 3
        assert failed.failure.kind == "IOError"
        assert report.tasks["store"].failure.kind == "AbortedDependency"

        failed_events = [event for event in report.events if event["kind"] == EventKind.TASK_FAILED.value]
        assert failed_events[0]["detail"]["failure_kind"] == "IOError"


class TestBuildErrors:

    @pytest.mark.asyncio
    async def test_build_error_raised_before_execution(self, engine, assistant):
        module = make_module([task("t", call("AI.optimize", 1))], run="t")

        with pytest.raises(MissingCapability):
            await engine.run([module])

        assert engine.active_runs == []
        assert assistant.requests == []

    @pytest.mark.asyncio
    async def test_missing_entry(self, engine):
        module = make_module([task("t", call("File.read", "input.json"))])

        with pytest.raises(EntryTaskMissing):
            await engine.run([module])
        with pytest.raises(BuildError):
            await engine.run([module], entry="ghost")

    @pytest.mark.asyncio
    async def test_explicit_entry_overrides_run_directive(self, engine, pipeline):
        report = await engine.run(pipeline, entry="load")

        assert list(report.tasks) == ["load"]
        assert report.output == {"title": "Q3", "rows": [1, 2, 3]}


class TestRunControl:

    def _blocking_module(self, registry):
        started = asyncio.Event()

        async def forever():
            started.set()
            await asyncio.Event().wait()

        registry.register("Wait", "forever", forever)
        module = make_module([
            task("slow", call("Wait.forever")),
            task("after", call("File.read", "input.json"), inputs=["slow"]),
        ], run="after")
        return module, started

    @pytest.mark.asyncio
    async def test_run_timeout_cancels_run(self, registry, gateway):
        module, _ = self._blocking_module(registry)
        engine = Engine(registry, gateway=gateway, config=EngineConfig(run_timeout=0.05))

        report = await engine.run([module])

        assert report.status == RunStatus.CANCELLED
        assert report.states() == {"slow": TaskState.ABORTED, "after": TaskState.ABORTED}
        assert "run timeout" in report.tasks["slow"].failure.message
        assert any(event["kind"] == EventKind.RUN_CANCELLED.value for event in report.events)

    @pytest.mark.asyncio
    async def test_operator_cancel(self, engine, registry):
        module, started = self._blocking_module(registry)

        run = asyncio.ensure_future(engine.run([module], run_id="r-cancel"))
        await started.wait()

        assert engine.active_runs == ["r-cancel"]
        assert engine.get_progress("r-cancel")["states"]["slow"] == "running"
        assert engine.cancel("r-cancel") is True

        report = await run

        assert report.status == RunStatus.CANCELLED
        assert engine.get_report("r-cancel") is report
        assert engine.cancel("r-cancel") is False
        assert engine.get_progress("r-cancel") is None

    @pytest.mark.asyncio
    async def test_duplicate_active_run_id_rejected(self, engine, registry):
        module, started = self._blocking_module(registry)

        run = asyncio.ensure_future(engine.run([module], run_id="dup"))
        await started.wait()

        with pytest.raises(ValueError):
            await engine.run([module], run_id="dup")

        engine.cancel("dup")
        await run

    @pytest.mark.asyncio
    async def test_close_cancels_active_runs(self, engine, registry):
        module, started = self._blocking_module(registry)

        run = asyncio.ensure_future(engine.run([module]))
        await started.wait()
        await engine.close()

        report = await run
        assert report.status == RunStatus.CANCELLED
