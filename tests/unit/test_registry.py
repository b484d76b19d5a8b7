"""
Operation Registry Unit Tests
"""

import sys
import types

import pytest

from guardsymbi.errors import ErrorKind
from guardsymbi.modules import OperationRegistry, OperationResult, import_operations


class TestOperationRegistry:

    @pytest.fixture
    def registry(self):
        return OperationRegistry()

    def test_register_and_get(self, registry):
        def read(path):
            """Read a text file."""
            return path

        spec = registry.register("File", "read", read)

        assert registry.get("File", "read") is spec
        assert spec.qualified_name == "File.read"
        assert spec.description == "Read a text file."
        assert not spec.is_async
        assert "File.read" in registry

    def test_async_detection(self, registry):
        async def render(data):
            return data

        assert registry.register("PDF", "render", render).is_async

    def test_decorator_uses_function_name(self, registry):
        @registry.operation("Text")
        def upper(value):
            return value.upper()

        assert upper("a") == "A"
        assert "Text.upper" in registry

    def test_ai_module_is_reserved(self, registry):
        with pytest.raises(ValueError):
            registry.register("AI", "fix", lambda value: value)

    def test_non_callable_rejected(self, registry):
        with pytest.raises(TypeError):
            registry.register("X", "y", "not callable")

    def test_overwrite_keeps_latest(self, registry):
        registry.register("X", "y", lambda: 1)
        registry.register("X", "y", lambda: 2)

        assert len(registry) == 1
        assert registry.get("X", "y").func() == 2

    def test_unregister(self, registry):
        registry.register("X", "y", lambda: 1)

        assert registry.unregister("X", "y") is True
        assert registry.unregister("X", "y") is False
        assert registry.get("X", "y") is None

    def test_listing(self, registry):
        registry.register_module("JSON", {"parse": lambda s: s, "dump": lambda v: v})
        registry.register("File", "read", lambda p: p)

        assert registry.modules() == ["File", "JSON"]
        assert [s.qualified_name for s in registry.list_operations("JSON")] == ["JSON.dump", "JSON.parse"]
        assert len(registry.list_operations()) == 3

    def test_import_operations(self, registry, monkeypatch):
        plugin = types.ModuleType("guardsymbi_test_plugin")

        def register_operations(target):
            target.register("Plugin", "hello", lambda name: f"hello {name}")

        plugin.register_operations = register_operations
        monkeypatch.setitem(sys.modules, "guardsymbi_test_plugin", plugin)

        import_operations(registry, "guardsymbi_test_plugin")

        assert "Plugin.hello" in registry

    def test_import_operations_requires_hook(self, registry, monkeypatch):
        monkeypatch.setitem(sys.modules, "guardsymbi_empty_plugin", types.ModuleType("guardsymbi_empty_plugin"))
        with pytest.raises(ImportError):
            import_operations(registry, "guardsymbi_empty_plugin")


class TestOperationResult:

    def test_ok(self):
        result = OperationResult.ok({"a": 1})
        assert result.success
        assert result.to_dict()["value"] == {"a": 1}

    def test_failure(self):
        result = OperationResult.failure("bad json", ErrorKind.PARSE_ERROR)
        assert not result.success
        assert result.to_dict() == {
            "success": False,
            "value": None,
            "error": "bad json",
            "kind": "ParseError",
        }
