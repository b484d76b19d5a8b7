"""
ErrorChecker - tags step failures with an ErrorKind
"""

import asyncio
import json
from typing import Iterable, Optional

import aiohttp
from pydantic import ValidationError

from ..config import DEFAULT_AI_FIXABLE
from ..errors import ErrorKind, StepFailure


class ErrorChecker:
    """
    Classifies failures and decides whether AI assistance is meaningful.

    An explicit kind set by the operation always wins; otherwise the
    original exception type decides. The AI-fixable set is configuration,
    not code.
    """

    def __init__(self, ai_fixable: Iterable[ErrorKind] = DEFAULT_AI_FIXABLE):
        self.ai_fixable = frozenset(ai_fixable)

    def classify(self, error: BaseException) -> ErrorKind:
        if isinstance(error, StepFailure):
            if error.kind is not None:
                return error.kind
            if error.original is not None:
                return self.classify(error.original)
            return ErrorKind.RUNTIME_ERROR

        if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
            return ErrorKind.TIMEOUT_ERROR
        if isinstance(error, (json.JSONDecodeError, SyntaxError)):
            return ErrorKind.PARSE_ERROR
        if isinstance(error, (ValidationError, ValueError)):
            return ErrorKind.VALIDATION_ERROR
        if isinstance(error, (OSError, aiohttp.ClientError)):
            return ErrorKind.IO_ERROR
        if isinstance(error, (LookupError, NameError)):
            return ErrorKind.RESOLUTION_ERROR
        return ErrorKind.RUNTIME_ERROR

    def wrap(
        self,
        error: BaseException,
        module: Optional[str] = None,
        function: Optional[str] = None,
    ) -> StepFailure:
        """Turn any exception escaping an operation into a classified StepFailure."""
        if isinstance(error, StepFailure):
            if error.module is None:
                error.module = module
                error.function = function
                error.details.update({"module": module, "function": function})
            return error.with_kind(self.classify(error))

        return StepFailure(
            message=str(error) or type(error).__name__,
            kind=self.classify(error),
            module=module,
            function=function,
            original=error,
        )

    def is_ai_fixable(self, kind: ErrorKind) -> bool:
        return kind in self.ai_fixable
