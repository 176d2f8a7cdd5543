"""
Tests for logging configuration helpers
"""

import json
import logging

import pytest

from utils.error_handling import TrainingCancelled
from utils.logging_config import LogOperation, StructuredFormatter

def make_record(**extra):
    record = logging.LogRecord("services.test", logging.INFO, __file__, 10, "trained %s", ("model",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record

class TestStructuredFormatter:
    """Test JSON log output"""

    def test_formats_message_and_extra_fields(self):
        output = json.loads(StructuredFormatter().format(make_record(scenario_id=3, stage="gating")))

        assert output["message"] == "trained model"
        assert output["level"] == "INFO"
        assert output["logger"] == "services.test"
        assert output["scenario_id"] == 3
        assert output["stage"] == "gating"
        assert "levelno" not in output

    def test_extra_fields_can_be_excluded(self):
        output = json.loads(StructuredFormatter(include_extra=False).format(make_record(scenario_id=3)))

        assert "scenario_id" not in output

class TestLogOperation:
    """Test timed operation logging"""

    def test_completed_operation(self, caplog):
        caplog.set_level(logging.INFO, logger="nerloop.ops")

        with LogOperation("publish", logger_name="nerloop.ops", extra_data={"model": "ner_model"}) as op:
            pass

        assert op.duration >= 0.0
        completed = caplog.records[-1]
        assert completed.status == "completed"
        assert completed.model == "ner_model"
        assert not hasattr(completed, "scenario_id")

    def test_failure_names_scenario_and_stage(self, caplog):
        """Test the closing record shows where the run stopped"""
        caplog.set_level(logging.DEBUG, logger="nerloop.ops")

        with pytest.raises(RuntimeError):
            with LogOperation("train_incremental", logger_name="nerloop.ops", scenario_id=7) as op:
                op.enter_stage("loading")
                op.enter_stage("training")
                raise RuntimeError("boom")

        failed = caplog.records[-1]
        assert failed.levelno == logging.ERROR
        assert failed.status == "failed"
        assert failed.error_type == "RuntimeError"
        assert failed.scenario_id == 7
        assert failed.stage == "training"
        assert "scenario 7" in failed.getMessage()
        assert "during training" in failed.getMessage()

    def test_repeated_stage_logged_once(self, caplog):
        caplog.set_level(logging.DEBUG, logger="nerloop.ops")

        with LogOperation("train_incremental", logger_name="nerloop.ops") as op:
            op.enter_stage("evaluating")
            op.enter_stage("evaluating")
            op.enter_stage("gating")

        assert op.stages == ["evaluating", "gating"]
        running = [r for r in caplog.records if getattr(r, "status", None) == "running"]
        assert [r.stage for r in running] == ["evaluating", "gating"]

    def test_cancellation_is_not_an_error(self, caplog):
        caplog.set_level(logging.INFO, logger="nerloop.ops")

        with pytest.raises(TrainingCancelled):
            with LogOperation("train_incremental", logger_name="nerloop.ops", scenario_id=2,
                              cancelled_on=(TrainingCancelled,)) as op:
                op.enter_stage("evaluating")
                raise TrainingCancelled("operator stop")

        closing = caplog.records[-1]
        assert closing.levelno == logging.INFO
        assert closing.status == "cancelled"
        assert closing.stage == "evaluating"
