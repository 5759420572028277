"""
Project, job and test name inference.

Names are derived from the active call stack so that tests written without
any reporting code still show up grouped sensibly in reports.

Strategies:
    - PytestInferrer: running under pytest (PYTEST_CURRENT_TEST or _pytest frames)
    - UnittestInferrer: a unittest.TestCase method is on the stack
    - GenericInferrer: plain scripts, uses the entry script and its outermost function

Usage:
    frames = capture_stack()
    inferrer = get_inferrer(frames)
    settings = inferrer.infer_report_settings()
    test_name = inferrer.infer_test_name()
"""

import inspect
import logging
import os
import unittest
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Sequence

from tpagent.core.models import ReportSettings

logger = logging.getLogger(__name__)

UNNAMED_PROJECT = "Unnamed Project"
UNNAMED_JOB = "Unnamed Job"

PYTEST_ENV = "PYTEST_CURRENT_TEST"
PYTEST_MODULE_PREFIX = "_pytest"

# Modules whose presence on the stack means a command runs inside a polling wait
WAIT_MODULES = (
    "selenium.webdriver.support.wait",
)

# Frames of these packages never name a test
_INTERNAL_PREFIXES = ("tpagent", "selenium")


@dataclass(frozen=True)
class StackFrame:
    """The parts of a Python frame the inferrers need."""
    module: str
    function: str
    filename: str
    instance: Any = None


def capture_stack() -> List[StackFrame]:
    """Snapshot the caller's stack, innermost frame first."""
    frames = []
    frame = inspect.currentframe()
    try:
        frame = frame.f_back if frame is not None else None
        while frame is not None:
            frames.append(StackFrame(
                module=frame.f_globals.get("__name__", ""),
                function=frame.f_code.co_name,
                filename=frame.f_code.co_filename,
                instance=frame.f_locals.get("self"),
            ))
            frame = frame.f_back
    finally:
        del frame
    return frames


def is_inside_wait(frames: Sequence[StackFrame]) -> bool:
    """True when a polling wait (WebDriverWait.until/until_not) is on the stack."""
    return any(f.module in WAIT_MODULES for f in frames)


def _is_internal(frame: StackFrame) -> bool:
    return any(frame.module == p or frame.module.startswith(p + ".") for p in _INTERNAL_PREFIXES)


class NameInferrer(ABC):
    """Derives report names from a captured stack."""

    def __init__(self, frames: Sequence[StackFrame]):
        self.frames = [f for f in frames if not _is_internal(f)]

    @abstractmethod
    def infer_report_settings(self) -> Optional[ReportSettings]:
        """Project and job names, or None when they cannot be derived."""

    @abstractmethod
    def infer_test_name(self) -> Optional[str]:
        """Current test name, or None when it cannot be derived."""

    @staticmethod
    def unnamed() -> ReportSettings:
        logger.info("Failed to infer Project and Job names, will use default 'Unnamed' values.")
        return ReportSettings(UNNAMED_PROJECT, UNNAMED_JOB)


class PytestInferrer(NameInferrer):
    """
    Names for tests collected by pytest.

    project = directory holding the test module
    job = test module name
    test = test function name (including parametrization id)
    """

    @staticmethod
    def applies(frames: Sequence[StackFrame]) -> bool:
        if os.environ.get(PYTEST_ENV):
            return True
        return any(f.module.startswith(PYTEST_MODULE_PREFIX) for f in frames)

    @staticmethod
    def _node_id() -> Optional[str]:
        # "tests/test_login.py::TestLogin::test_ok[chrome] (call)"
        current = os.environ.get(PYTEST_ENV)
        if not current:
            return None
        return current.rsplit(" (", 1)[0]

    def _test_frame(self) -> Optional[StackFrame]:
        for frame in self.frames:
            if frame.function.startswith("test"):
                return frame
        return None

    def infer_report_settings(self) -> Optional[ReportSettings]:
        node_id = self._node_id()
        if node_id:
            path = Path(node_id.split("::", 1)[0])
        else:
            frame = self._test_frame()
            if frame is None:
                return None
            path = Path(frame.filename)
        project = path.parent.name or Path.cwd().name
        return ReportSettings(project, path.stem)

    def infer_test_name(self) -> Optional[str]:
        node_id = self._node_id()
        if node_id:
            return node_id.split("::")[-1]
        frame = self._test_frame()
        return frame.function if frame else None


class UnittestInferrer(NameInferrer):
    """
    Names for unittest.TestCase based tests.

    project = package of the test module
    job = test case class name
    test = test method name
    """

    @staticmethod
    def applies(frames: Sequence[StackFrame]) -> bool:
        return any(isinstance(f.instance, unittest.TestCase) for f in frames)

    def _test_case(self) -> Optional[unittest.TestCase]:
        for frame in self.frames:
            if isinstance(frame.instance, unittest.TestCase):
                return frame.instance
        return None

    def infer_report_settings(self) -> Optional[ReportSettings]:
        test_case = self._test_case()
        if test_case is None:
            return None
        cls = type(test_case)
        if "." in cls.__module__:
            project = cls.__module__.rsplit(".", 1)[0]
        else:
            source = inspect.getsourcefile(cls)
            project = Path(source).parent.name if source else cls.__module__
        return ReportSettings(project, cls.__name__)

    def infer_test_name(self) -> Optional[str]:
        test_case = self._test_case()
        if test_case is None:
            return None
        return getattr(test_case, "_testMethodName", None)


class GenericInferrer(NameInferrer):
    """
    Names for plain scripts.

    project = directory of the entry script
    job = entry script name
    test = outermost function called from the entry script
    """

    def _entry_frame(self) -> Optional[StackFrame]:
        for frame in reversed(self.frames):
            if frame.module == "__main__":
                return frame
        return self.frames[-1] if self.frames else None

    def infer_report_settings(self) -> Optional[ReportSettings]:
        entry = self._entry_frame()
        if entry is None or entry.filename.startswith("<"):
            return self.unnamed()
        path = Path(entry.filename).resolve()
        return ReportSettings(path.parent.name, path.stem)

    def infer_test_name(self) -> Optional[str]:
        entry = self._entry_frame()
        if entry is None:
            return None
        same_file = [f for f in reversed(self.frames) if f.filename == entry.filename]
        for frame in same_file:
            if frame.function != "<module>":
                return frame.function
        return Path(entry.filename).stem


def get_inferrer(frames: Sequence[StackFrame]) -> NameInferrer:
    """Pick the strategy matching the framework found on the stack."""
    if PytestInferrer.applies(frames):
        return PytestInferrer(frames)
    if UnittestInferrer.applies(frames):
        return UnittestInferrer(frames)
    return GenericInferrer(frames)


def infer_report_settings(frames: Optional[Sequence[StackFrame]] = None) -> ReportSettings:
    """Framework-specific names, falling back to the generic strategy and then to 'Unnamed'."""
    frames = frames if frames is not None else capture_stack()
    settings = get_inferrer(frames).infer_report_settings()
    if settings is None or not settings.is_complete:
        settings = GenericInferrer(frames).infer_report_settings()
    return settings or NameInferrer.unnamed()


def infer_test_name(frames: Optional[Sequence[StackFrame]] = None) -> Optional[str]:
    frames = frames if frames is not None else capture_stack()
    return get_inferrer(frames).infer_test_name()
