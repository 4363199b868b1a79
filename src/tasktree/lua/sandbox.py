"""
LuaSandbox - Restricted Lua execution for definition files.

Definition files are plain Lua evaluated once at load time. The sandbox:
- Blocks os, io, debug and package
- Blocks loadfile, dofile, load, require and metatable access
- Hides private attributes of Python objects handed to Lua
- Enforces a timeout on execution

Error codes:
- E4101: Lua syntax error
- E4102: Lua runtime error
- E4103: Lua timeout
- E4104: Sandbox violation
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..errors import TaskTreeError

logger = logging.getLogger(__name__)


ERROR_CODES = {
    "syntax": "E4101",
    "runtime": "E4102",
    "timeout": "E4103",
    "sandbox": "E4104",
}

# Installed before `debug` is removed; returns the line of the innermost Lua
# frame calling into Python.
_LINE_TRACKER = """
local getinfo = debug.getinfo
return function()
    for level = 2, 12 do
        local info = getinfo(level, "Sl")
        if info == nil then
            return nil
        end
        if info.currentline ~= nil and info.currentline > 0 then
            return info.currentline
        end
    end
    return nil
end
"""


# =============================================================================
# LuaExecutionResult
# =============================================================================


@dataclass
class LuaExecutionResult:
    """Outcome of running a chunk in the sandbox.

    - success: Whether execution completed without error
    - result: Return value of the chunk (Lua objects are left unconverted)
    - error: Error message if failed
    - error_type: syntax, runtime, timeout or sandbox
    - line_number: Line where the error occurred, if known
    """

    success: bool
    result: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    line_number: Optional[int] = None

    @property
    def error_code(self) -> Optional[str]:
        if self.error_type is None:
            return None
        return ERROR_CODES.get(self.error_type, ERROR_CODES["runtime"])

    @classmethod
    def ok(cls, result: Any = None) -> "LuaExecutionResult":
        return cls(success=True, result=result)

    @classmethod
    def syntax_error(cls, message: str, line_number: Optional[int] = None) -> "LuaExecutionResult":
        return cls(success=False, error=message, error_type="syntax", line_number=line_number)

    @classmethod
    def runtime_error(cls, message: str, line_number: Optional[int] = None) -> "LuaExecutionResult":
        return cls(success=False, error=message, error_type="runtime", line_number=line_number)

    @classmethod
    def timeout_error(cls, timeout_seconds: float) -> "LuaExecutionResult":
        return cls(
            success=False,
            error=f"Script execution timed out after {timeout_seconds}s",
            error_type="timeout",
        )

    @classmethod
    def sandbox_violation(cls, blocked_item: str, line_number: Optional[int] = None) -> "LuaExecutionResult":
        return cls(
            success=False,
            error=f"Sandbox violation: attempted to access '{blocked_item}'",
            error_type="sandbox",
            line_number=line_number,
        )


# =============================================================================
# LuaSandbox
# =============================================================================


class LuaSandbox:
    """Secure Lua execution environment.

    Engine errors (TaskTreeError) raised by Python callbacks are not turned
    into runtime errors: they propagate out of execute() unchanged, so a
    malformed node reports its own code.

    Example:
        >>> sandbox = LuaSandbox(timeout_seconds=5.0)
        >>> result = sandbox.execute("return 1 + 2")
        >>> result.result
        3

        >>> result = sandbox.execute("os.execute('ls')")
        >>> result.error_type
        'sandbox'
    """

    # Modules that are completely blocked
    BLOCKED_MODULES: List[str] = [
        "os",
        "io",
        "debug",
        "package",
    ]

    # Individual functions that are blocked
    BLOCKED_FUNCTIONS: List[str] = [
        "loadfile",
        "dofile",
        "load",
        "loadstring",
        "require",
        "rawget",
        "rawset",
        "rawequal",
        "getmetatable",
        "setmetatable",
        "getfenv",
        "setfenv",
        "collectgarbage",
        "newproxy",
    ]

    def __init__(self, timeout_seconds: float = 5.0) -> None:
        self._timeout_seconds = timeout_seconds
        self._lua_runtime = None
        self._line_tracker: Optional[Callable[[], Any]] = None
        self._initialized = False

    @property
    def runtime(self):
        self._ensure_initialized()
        return self._lua_runtime

    def _ensure_initialized(self) -> None:
        """Lazily initialize the Lua runtime."""
        if self._initialized:
            return

        from lupa import LuaRuntime

        self._lua_runtime = LuaRuntime(
            unpack_returned_tuples=True,
            register_eval=False,
            register_builtins=False,
            attribute_filter=self._filter_attribute,
        )
        self._line_tracker = self._lua_runtime.execute(_LINE_TRACKER)

        lua_globals = self._lua_runtime.globals()
        for module in self.BLOCKED_MODULES:
            lua_globals[module] = None
        for func in self.BLOCKED_FUNCTIONS:
            lua_globals[func] = None

        def safe_print(*args):
            message = " ".join(str(arg) for arg in args)
            logger.debug(f"[Lua print] {message}")

        lua_globals["print"] = safe_print
        self._initialized = True

    @staticmethod
    def _filter_attribute(obj: Any, attr_name: Any, is_setting: bool) -> Any:
        if isinstance(attr_name, str) and not attr_name.startswith("_") and not is_setting:
            return attr_name
        raise AttributeError(f"Access to '{attr_name}' is not allowed from Lua")

    def current_line(self) -> Optional[int]:
        """Line of the Lua code currently calling into Python, if any."""
        if self._line_tracker is None:
            return None
        line = self._line_tracker()
        return int(line) if line is not None else None

    def table(self, *items: Any, **fields: Any) -> Any:
        """Create a Lua table (for tests and callers building arguments)."""
        return self.runtime.table(*items, **fields)

    def execute(
        self,
        code: str,
        env: Optional[Dict[str, Any]] = None,
        source_name: str = "<script>",
    ) -> LuaExecutionResult:
        """Execute Lua code in the sandbox.

        Args:
            code: Lua code to execute.
            env: Globals to inject (Python callables become Lua functions).
            source_name: Name for error reporting.

        Raises:
            TaskTreeError: Raised by a Python callback during execution.
        """
        violation = self._check_static_violations(code)
        if violation:
            return violation

        self._ensure_initialized()

        if env:
            lua_globals = self._lua_runtime.globals()
            for key, value in env.items():
                lua_globals[key] = value

        return self._execute_with_timeout(code, source_name)

    def _check_static_violations(self, code: str) -> Optional[LuaExecutionResult]:
        """Catch obvious uses of blocked names before running anything."""
        for module in self.BLOCKED_MODULES:
            patterns = [
                rf"\b{module}\s*\.\s*\w+",
                rf"\b{module}\s*\[\s*[\"']",
            ]
            for pattern in patterns:
                match = re.search(pattern, code)
                if match:
                    line_num = code[:match.start()].count("\n") + 1
                    return LuaExecutionResult.sandbox_violation(
                        blocked_item=match.group(0).strip(),
                        line_number=line_num,
                    )

        for func in self.BLOCKED_FUNCTIONS:
            match = re.search(rf"\b{func}\s*\(", code)
            if match:
                line_num = code[:match.start()].count("\n") + 1
                return LuaExecutionResult.sandbox_violation(
                    blocked_item=func,
                    line_number=line_num,
                )

        return None

    def _execute_with_timeout(self, code: str, source_name: str) -> LuaExecutionResult:
        holder: Dict[str, Any] = {"result": None, "raised": None}

        def run_code():
            try:
                compiled = self._lua_runtime.compile(code)
            except Exception as e:
                error_msg = str(e)
                holder["result"] = LuaExecutionResult.syntax_error(
                    message=error_msg,
                    line_number=self._extract_line_number(error_msg),
                )
                return

            try:
                holder["result"] = LuaExecutionResult.ok(compiled())
            except TaskTreeError as e:
                holder["raised"] = e
            except Exception as e:
                error_msg = str(e)
                line_num = self._extract_line_number(error_msg)
                if self._is_sandbox_violation(error_msg):
                    holder["result"] = LuaExecutionResult.sandbox_violation(
                        blocked_item=self._extract_blocked_item(error_msg),
                        line_number=line_num,
                    )
                else:
                    holder["result"] = LuaExecutionResult.runtime_error(
                        message=error_msg,
                        line_number=line_num,
                    )

        thread = threading.Thread(target=run_code, daemon=True, name=f"lua:{source_name}")
        thread.start()
        thread.join(timeout=self._timeout_seconds)

        if thread.is_alive():
            # The thread cannot be killed; the runtime is abandoned with it.
            self._initialized = False
            return LuaExecutionResult.timeout_error(self._timeout_seconds)

        if holder["raised"] is not None:
            raise holder["raised"]
        return holder["result"] or LuaExecutionResult.ok(None)

    def _extract_line_number(self, error_message: str) -> Optional[int]:
        for pattern in (r":(\d+):", r"line (\d+)"):
            match = re.search(pattern, error_message)
            if match:
                return int(match.group(1))
        return None

    def _is_sandbox_violation(self, error_message: str) -> bool:
        indicators = (
            "attempt to index a nil value",
            "attempt to call a nil value",
            "not allowed",
        )
        error_lower = error_message.lower()
        if not any(indicator in error_lower for indicator in indicators):
            return False
        names = self.BLOCKED_MODULES + self.BLOCKED_FUNCTIONS
        return any(re.search(rf"'{name}'", error_message) for name in names) or "not allowed" in error_lower

    def _extract_blocked_item(self, error_message: str) -> str:
        for name in self.BLOCKED_MODULES + self.BLOCKED_FUNCTIONS:
            if f"'{name}'" in error_message:
                return name
        match = re.search(r"Access to '([^']+)'", error_message)
        if match:
            return match.group(1)
        return "unknown blocked operation"


__all__ = ["ERROR_CODES", "LuaExecutionResult", "LuaSandbox"]
