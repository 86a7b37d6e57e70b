"""Tests for logging infrastructure."""
import io
import json
import logging
from pathlib import Path

import pytest
import structlog

from conftest import MONDAY, FakeClock, history, req
from rostering.models.employee import Employee
from rostering.models.rules import RuleSet
from rostering.models.schedule import SlotResult
from rostering.models.shift import ShiftType
from rostering.solver.engine import SchedulingEngine
from rostering.utils.logging_setup import (
    TRACE,
    SolverLogger,
    get_logger,
    log_constraint,
    log_function_call,
    setup_logging,
)
from rostering.utils.structured_logging import (
    bind_context,
    clear_context,
    configure_structlog,
    get_structured_logger,
    run_context,
    unbind_context,
)


@pytest.fixture(autouse=True)
def reset_package_logger():
    yield
    logger = logging.getLogger("rostering")
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.NOTSET)


class TestLoggingSetup:
    """Tests for logging configuration."""

    def test_setup_logging_creates_logger(self, tmp_path):
        """Test that setup_logging returns a logger."""
        logger = setup_logging(level="DEBUG", log_file=str(tmp_path / "test.log"))

        assert logger.name == "rostering"
        assert len(logger.handlers) == 2  # Console + file

    def test_setup_logging_creates_log_file(self, tmp_path):
        """Test that log file is created."""
        log_file = tmp_path / "logs" / "test.log"
        logger = setup_logging(level="DEBUG", log_file=str(log_file))
        logger.info("Test message")

        assert log_file.exists()

    def test_setup_logging_no_file(self):
        """Test logging without file output."""
        logger = setup_logging(level="INFO", log_file=None)

        assert len(logger.handlers) == 1  # Console only

    def test_setup_is_idempotent(self):
        setup_logging(level="INFO", log_file=None)
        logger = setup_logging(level="INFO", log_file=None)
        assert len(logger.handlers) == 1

    def test_console_stream(self):
        stream = io.StringIO()
        logger = setup_logging(level="WARNING", log_file=None, stream=stream)
        logger.info("hidden")
        logger.warning("Coverage gap on 2024-03-04 night")
        assert "hidden" not in stream.getvalue()
        assert "Coverage gap on 2024-03-04 night" in stream.getvalue()
        assert "\033[" not in stream.getvalue()  # not a terminal

    def test_trace_level(self):
        """Test custom TRACE level exists."""
        assert TRACE == 5
        assert logging.getLevelName(TRACE) == "TRACE"

    def test_get_logger(self):
        logger = get_logger("rostering.solver")
        assert logger.name == "rostering.solver"

    def test_rotation_on_size(self, tmp_path):
        """Test log rotation when file exceeds max size."""
        log_file = tmp_path / "test.log"
        logger = setup_logging(level="DEBUG", log_file=str(log_file), max_bytes=1000, backup_count=2)

        for i in range(100):
            logger.info(f"Message {i}: " + "x" * 50)

        assert log_file.exists()
        assert list(Path(tmp_path).glob("test.log.*"))


class TestLogFunctionCall:
    """Tests for function call decorator."""

    def test_decorator_logs_entry_exit(self, caplog):
        @log_function_call
        def add(a, b):
            return a + b

        with caplog.at_level(TRACE):
            result = add(1, 2)

        assert result == 3
        assert "→ add" in caplog.text
        assert "← add returned: 3" in caplog.text

    def test_decorator_logs_exceptions(self, caplog):
        @log_function_call
        def fail():
            raise ValueError("test error")

        with caplog.at_level(logging.ERROR):
            with pytest.raises(ValueError):
                fail()

        assert "ValueError: test error" in caplog.text

    def test_arguments_condensed(self, caplog):
        @log_function_call
        def plan(employees, day):
            return len(employees)

        with caplog.at_level(TRACE):
            plan(["e1", "e2", "e3"], MONDAY)

        assert "→ plan(<list len=3>, 2024-03-04)" in caplog.text

    def test_decorator_preserves_function_name(self):
        @log_function_call
        def my_function():
            """Docstring."""

        assert my_function.__name__ == "my_function"
        assert my_function.__doc__ == "Docstring."


class TestLogConstraint:
    """Tests for constraint logging."""

    def test_log_constraint_satisfied(self, caplog):
        logger = logging.getLogger("test")

        with caplog.at_level(logging.DEBUG):
            log_constraint(logger, "rest_hours", True, "employee=e1")

        assert "✓" in caplog.text
        assert "rest_hours" in caplog.text

    def test_log_constraint_violated(self, caplog):
        logger = logging.getLogger("test")

        with caplog.at_level(logging.WARNING):
            log_constraint(logger, "consecutive_nights", False, "3 > 2")

        assert "✗" in caplog.text
        assert caplog.records[-1].levelno == logging.WARNING


class TestSolverLogger:
    """Tests for SolverLogger class."""

    def test_phase_and_step(self, caplog):
        slog = SolverLogger("test.solver")

        with caplog.at_level(logging.INFO):
            slog.phase("Generating schedule")
            slog.step("Post-pass analysis")

        assert "Generating schedule" in caplog.text
        assert "▸ Post-pass analysis" in caplog.text

    def test_slot_brackets_candidates(self, caplog):
        slog = SolverLogger("test.solver")
        slot = SlotResult(date=MONDAY, shift_type=ShiftType.NIGHT, required_count=2)

        with caplog.at_level(TRACE):
            with slog.slot(slot):
                assert slog.indent == 1
                slog.exclusions({"rest_hours": ["e2", "e3"]})
                slog.candidate("e1", 0.7426, 1)
                slot.employee_ids.append("e1")

        messages = [r.getMessage() for r in caplog.records]
        assert messages[0] == "┌─ 2024-03-04 night x2"
        assert "  ✗ rest_hours: e2, e3" in messages
        assert "  e1: score=0.743 eligible=1" in messages
        assert messages[-1] == "└─ filled 1/2"
        assert slog.indent == 0

    def test_slot_closes_on_error(self, caplog):
        slog = SolverLogger("test.solver")
        slot = SlotResult(date=MONDAY, shift_type=ShiftType.DAY, required_count=1)

        with caplog.at_level(logging.DEBUG):
            with pytest.raises(RuntimeError):
                with slog.slot(slot):
                    raise RuntimeError("deadline")

        assert slog.indent == 0
        assert "└─ filled 0/1" in caplog.text

    def test_override_flagged(self, caplog):
        with caplog.at_level(logging.DEBUG):
            SolverLogger("test.solver").candidate("e2", 0.5, 1, override=True)
        assert "[override]" in caplog.text


class TestStructuredLogging:
    """Tests for structlog run events."""

    @pytest.fixture
    def buffer(self):
        buffer = io.StringIO()
        configure_structlog(json_output=True, file=buffer)
        yield buffer
        clear_context()
        structlog.reset_defaults()

    @staticmethod
    def events(buffer):
        return [json.loads(line) for line in buffer.getvalue().strip().splitlines()]

    def test_json_events_carry_bound_context(self, buffer):
        bind_context(schedule_id="s-9", tenant_id="t-1")
        get_structured_logger("rostering.test").info("generation_started", slots=3)
        unbind_context("tenant_id")
        get_structured_logger("rostering.test").info("generation_finished")

        started, finished = self.events(buffer)
        assert started["event"] == "generation_started"
        assert started["schedule_id"] == "s-9"
        assert started["tenant_id"] == "t-1"
        assert started["slots"] == 3
        assert started["level"] == "info"
        assert "tenant_id" not in finished

    def test_run_context_unbinds(self, buffer):
        log = get_structured_logger("rostering.test")
        with run_context("s-1", "t-1", attempt=2):
            log.info("inside")
        log.info("outside")

        inside, outside = self.events(buffer)
        assert (inside["schedule_id"], inside["tenant_id"], inside["attempt"]) == ("s-1", "t-1", 2)
        assert not {"schedule_id", "tenant_id", "attempt"} & set(outside)

    def test_level_filter(self):
        buffer = io.StringIO()
        configure_structlog(json_output=True, level=logging.WARNING, file=buffer)
        try:
            get_structured_logger("rostering.test").info("generation_started")
            get_structured_logger("rostering.test").error("generation_failed", kind="generation_timeout")
        finally:
            structlog.reset_defaults()
        [event] = self.events(buffer)
        assert event["kind"] == "generation_timeout"

    def test_engine_events(self, buffer, three_employees):
        engine = SchedulingEngine(clock=FakeClock(step=0))
        engine.generate_schedule("s-2", "t-2", "2024-03-04", "2024-03-05", three_employees, [req(0, "day")])
        started, finished = self.events(buffer)
        assert started["event"] == "generation_started"
        assert finished["event"] == "generation_finished"
        assert finished["schedule_id"] == "s-2"
        assert finished["assignments"] == 1


class TestEngineLogging:
    """The engine reports failures and gaps through the package logger."""

    def test_failure_logged(self, caplog):
        caplog.set_level(logging.ERROR, logger="rostering")
        engine = SchedulingEngine(clock=FakeClock(step=0))
        engine.generate_schedule("s1", "t1", "2024-03-04", "2024-03-05", [], [req(0, "day")])
        assert "no_eligible_employees" in caplog.text

    def test_override_logged(self, caplog):
        caplog.set_level(logging.WARNING, logger="rostering")
        engine = SchedulingEngine(RuleSet(emergency_override_enabled=True), clock=FakeClock(step=0))
        employees = [Employee(id="e1", history=history((1, "day")))]
        result = engine.generate_schedule("s1", "t1", "2024-03-04", "2024-03-05", employees, [req(0, "night")])
        assert result.assignments[0].is_override
        assert "Emergency override" in caplog.text

    def test_fairness_target_miss_logged(self, caplog, three_employees):
        caplog.set_level(logging.WARNING, logger="rostering")
        engine = SchedulingEngine(RuleSet(), clock=FakeClock(step=0))
        engine.generate_schedule("s1", "t1", "2024-03-04", "2024-03-05", three_employees, [req(0, "day")])
        assert "[✗] target_gini" in caplog.text
