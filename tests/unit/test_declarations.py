"""
Declaration Model and Loader Unit Tests
"""

import pytest
from pydantic import ValidationError

from guardsymbi.errors import DeclarationError
from guardsymbi.loader import load_modules, parse_modules
from guardsymbi.models import (
    Argument,
    ErrorHandlerDecl,
    GuardActionKind,
    ModuleDecl,
    OperationRef,
    RecoveryAction,
    StepDecl,
    TaskDecl,
)

from conftest import PIPELINE


class TestOperationRef:

    def test_call_string_is_split(self):
        op = OperationRef.model_validate("JSON.parse")
        assert (op.module, op.function, op.args) == ("JSON", "parse", [])

    def test_arguments_literal_and_reference(self):
        op = OperationRef.model_validate({"call": "File.read", "args": ["input.json", "$config.path", 3]})

        assert op.args[0] == Argument(value="input.json")
        assert op.args[1].ref == "config.path"
        assert op.args[1].root_name == "config"
        assert op.args[2].value == 3

    def test_explicit_argument_mapping(self):
        op = OperationRef.model_validate({"call": "X.y", "args": [{"ref": "raw"}, {"value": "$literal"}]})
        assert op.args[0].ref == "raw"
        assert op.args[1].value == "$literal"

    def test_malformed_call_rejected(self):
        with pytest.raises(ValidationError):
            OperationRef.model_validate("parse")

    def test_ai_module_detected(self):
        assert OperationRef.model_validate("AI.optimize").is_ai
        assert not OperationRef.model_validate("JSON.parse").is_ai


class TestStepAndHandler:

    def test_on_error_shorthand_list(self):
        step = StepDecl.model_validate({
            "operation": "JSON.parse",
            "onError": ["AI.fix", "retry"],
        })
        assert [a.action for a in step.on_error.actions] == [RecoveryAction.AI_FIX, RecoveryAction.RETRY]
        assert step.on_error.max_attempts is None

    def test_on_error_action_with_message(self):
        handler = ErrorHandlerDecl.model_validate({"actions": [{"aiFix": "repair the JSON"}], "max_attempts": 3})
        assert handler.actions[0].action == RecoveryAction.AI_FIX
        assert handler.actions[0].message == "repair the JSON"
        assert handler.has(RecoveryAction.AI_FIX)

    def test_unknown_recovery_action_rejected(self):
        with pytest.raises(ValidationError):
            ErrorHandlerDecl.model_validate(["retry", "panic"])

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ValidationError):
            ErrorHandlerDecl.model_validate({"actions": ["retry"], "max_attempts": 0})

    def test_backoff_delay(self):
        handler = ErrorHandlerDecl.model_validate({
            "actions": ["retry"],
            "backoff": {"initial_delay": 0.5, "multiplier": 2, "max_delay": 1.5},
        })
        delays = [handler.backoff.delay_for(n) for n in (1, 2, 3)]
        assert delays == [0.5, 1.0, 1.5]

    def test_step_needs_operation_or_guard(self):
        with pytest.raises(ValidationError):
            StepDecl.model_validate({"name": "empty"})

    def test_guard_else_actions(self):
        step = StepDecl.model_validate({
            "guard": {
                "call": "DataValidator.check",
                "let": "valid",
                "else": [{"AI.suggestFix": "schema mismatch"}, "return"],
            }
        })
        kinds = [action.kind for action in step.guard.else_actions]
        assert kinds == [GuardActionKind.SUGGEST_FIX, GuardActionKind.RETURN]
        assert step.guard.binding == "valid"

    def test_guard_needs_exactly_one_expression(self):
        with pytest.raises(ValidationError):
            StepDecl.model_validate({"guard": {"call": "X.y", "ref": "z"}})


class TestTaskAndModule:

    def test_single_input_sugar(self):
        decl = TaskDecl.model_validate({
            "name": "report",
            "input": "validate.output",
            "steps": [{"operation": "PDF.render"}],
        })
        assert decl.inputs[0].name == "input"
        assert decl.inputs[0].task == "validate"
        assert decl.dependency_names == ["validate"]

    def test_steps_are_auto_named(self):
        decl = TaskDecl.model_validate({
            "name": "t",
            "steps": [{"operation": "A.b"}, {"name": "named", "operation": "A.c"}, {"operation": "A.d"}],
        })
        assert [s.name for s in decl.steps] == ["step1", "named", "step3"]

    def test_annotations_normalized(self):
        decl = TaskDecl.model_validate({"name": "t", "annotations": ["@MCP", "ai", "@mcp"], "steps": [{"operation": "A.b"}]})
        assert decl.annotations == ("mcp", "ai")
        assert decl.ai_enabled

    def test_unknown_annotation_rejected(self):
        with pytest.raises(ValidationError):
            TaskDecl.model_validate({"name": "t", "annotations": ["@gpu"], "steps": [{"operation": "A.b"}]})

    def test_task_needs_steps(self):
        with pytest.raises(ValidationError):
            TaskDecl.model_validate({"name": "t", "steps": []})

    def test_version_precedence(self):
        def key(version):
            return ModuleDecl(name="m", version=version).version_key

        assert key("1.2") == key("1.2.0")
        assert key("2.0.0-beta") < key("2.0.0")
        assert key("1.10.0") > key("1.9.3")
        assert key("2.0.0-beta.2") < key("2.0.0-beta.10")
        assert key("2.0.0-alpha") < key("2.0.0-beta")
        assert key("2.0.0-1") < key("2.0.0-alpha")
        assert key("2.0.0-beta") < key("2.0.0-beta.1")

    def test_invalid_version_rejected(self):
        with pytest.raises(ValidationError):
            ModuleDecl(name="m", version="latest")

    def test_imports_deduplicated(self):
        module = ModuleDecl(name="m", imports=["File", "JSON", "File"])
        assert module.imports == ["File", "JSON"]

    def test_declarations_are_immutable(self):
        module = ModuleDecl(name="m")
        with pytest.raises(ValidationError):
            module.name = "other"


class TestLoader:

    def test_load_sample_pipeline(self):
        modules = load_modules(PIPELINE)

        assert len(modules) == 1
        module = modules[0]
        assert module.name == "reportPipeline"
        assert module.run == "report"
        assert [t.name for t in module.tasks] == ["load", "validateAndOptimize", "report"]
        assert module.tasks[1].ai_enabled

    def test_load_from_text_with_module_list(self):
        text = """
modules:
  - name: a
    tasks:
      - name: one
        steps: [{operation: "X.y"}]
  - name: b
    version: "2.0"
"""
        modules = load_modules(text)
        assert [m.name for m in modules] == ["a", "b"]

    def test_invalid_tree_raises_declaration_error(self):
        with pytest.raises(DeclarationError) as exc_info:
            parse_modules({"name": "bad", "tasks": [{"name": "t", "steps": []}]})
        assert "bad" in exc_info.value.message
        assert exc_info.value.code == "DECLARATION_ERROR"

    def test_invalid_yaml_raises_declaration_error(self):
        with pytest.raises(DeclarationError):
            load_modules("name: [unclosed\nsteps: {")

    def test_missing_file_raises_declaration_error(self):
        with pytest.raises(DeclarationError):
            load_modules("does/not/exist.yaml")

    def test_scalar_document_rejected(self):
        with pytest.raises(DeclarationError):
            parse_modules("just a string")
