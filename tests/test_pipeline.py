"""
Tests for the pipeline runner: ordering, hash chaining, fault isolation and
persisted state.
"""

import json

import pytest

from caseguard.verification import pipeline
from caseguard.verification.case_store import CaseContext
from caseguard.verification.hashing import compute_chain_hash, compute_step_hash
from caseguard.verification.steps import integrity


class TestRunPipeline:
    """Tests for run_pipeline."""

    def test_clean_case(self, clean_case):
        """Test a clean case passes every step in order."""
        result = pipeline.run_pipeline(clean_case.root)

        assert [s.name for s in result.steps] == ["capture", "integrity", "binding", "statistics"]
        assert [s.step for s in result.steps] == [1, 2, 3, 4]
        assert all(s.status == "pass" for s in result.steps)
        assert result.final_status == "pass"
        assert result.case_id == "case-001"
        assert result.article["citation_count"] == 4

    def test_step_hashes_chain(self, clean_case):
        """Test each step hash folds in the previous one."""
        result = pipeline.run_pipeline(clean_case.root)

        previous = None
        for step in result.steps:
            assert step.step_hash == compute_step_hash(step.input_hash, step.output_hash, previous)
            previous = step.step_hash
        assert result.chain_hash == compute_chain_hash(result.step_hashes)

    def test_idempotent(self, clean_case):
        """Test two runs over an unchanged case give identical hashes."""
        first = pipeline.run_pipeline(clean_case.root)
        second = pipeline.run_pipeline(clean_case.root)

        assert first.step_hashes == second.step_hashes
        assert first.chain_hash == second.chain_hash
        assert first.final_status == second.final_status

    def test_tampering_propagates(self, clean_case):
        """Test editing raw evidence changes that step's hash and every later one."""
        before = pipeline.run_pipeline(clean_case.root)
        (clean_case.root / "evidence" / "S001" / "raw.html").write_bytes(b"<html>tampered</html>")
        after = pipeline.run_pipeline(clean_case.root)

        # capture only reads metadata.json and content.md
        assert after.steps[0].step_hash == before.steps[0].step_hash
        for b, a in zip(before.steps[1:], after.steps[1:]):
            assert a.step_hash != b.step_hash
        assert after.chain_hash != before.chain_hash
        assert after.final_status == "fail"

    def test_article_edit_changes_chain(self, clean_case):
        """Test editing the article changes the chain."""
        before = pipeline.run_pipeline(clean_case.root)
        article = clean_case.root / "articles" / "full.md"
        article.write_text(article.read_text(encoding="utf-8") + "\nOne more line.\n", encoding="utf-8")

        assert pipeline.run_pipeline(clean_case.root).chain_hash != before.chain_hash

    def test_failure_does_not_stop_later_steps(self, case_builder):
        """Test every step runs even after a failure."""
        case_builder.add_source("S001", content="52% of users")
        case_builder.add_source("S002", registry=False)
        case_builder.write_article("72% of users [S001] and more [S002].")

        result = pipeline.run_pipeline(case_builder.root)

        assert [s.status for s in result.steps] == ["fail", "pass", "fail", "fail"]
        assert result.final_status == "fail"

    def test_warn_aggregates(self, case_builder):
        """Test a warned step with no failures gives warn overall."""
        case_builder.add_source("S001")
        case_builder.write_article(
            "See [S001](https://news.example.com/articles/s001) for method.\n\n"
            "More discussion follows here without any figures at all, for context.\n\n"
            + "\n\n".join(f"Indicator {i} moved by {10 + i}% during the long review period." for i in range(6))
            + "\n"
        )

        result = pipeline.run_pipeline(case_builder.root)

        assert result.step("statistics").status == "warn"
        assert result.final_status == "warn"

    def test_aggregate_status(self):
        """Test aggregation precedence."""
        from caseguard.verification.models import StepResult

        def steps(*statuses):
            return [StepResult(step=i, name=f"s{i}", status=s) for i, s in enumerate(statuses)]

        assert pipeline.aggregate_status(steps("pass", "pass")) == "pass"
        assert pipeline.aggregate_status(steps("pass", "warn")) == "warn"
        assert pipeline.aggregate_status(steps("warn", "fail")) == "fail"
        assert pipeline.aggregate_status(steps("pass", "error")) == "fail"

    def test_to_dict(self, clean_case):
        """Test the serialized state carries steps, issues and summary."""
        state = pipeline.run_pipeline(clean_case.root).to_dict()

        assert len(state["pipeline"]) == 4
        assert state["blocking_issues"] == []
        assert state["summary"] == {"total_steps": 4, "steps_passed": 4, "steps_warned": 0, "steps_failed": 0}
        json.dumps(state)


class TestFaultBoundary:
    """Tests for step error isolation."""

    def test_step_exception_becomes_error(self, clean_case, monkeypatch):
        """Test a crashing step is recorded and later steps still run."""
        def boom(context, previous_step_hash=None):
            raise RuntimeError("disk on fire")

        monkeypatch.setattr(integrity, "run", boom)

        result = pipeline.run_pipeline(clean_case.root)
        crashed = result.step("integrity")

        assert crashed.status == "error"
        assert crashed.issue_types() == ["UNEXPECTED_ERROR"]
        assert "disk on fire" in crashed.issues[0].message
        assert crashed.step_hash == compute_step_hash(
            crashed.input_hash, crashed.output_hash, result.steps[0].step_hash)
        assert result.step("binding").status == "pass"
        assert result.step("statistics").status == "pass"
        assert result.final_status == "fail"

    def test_malformed_title_is_not_an_error(self, case_builder):
        """Test a list-valued metadata title doesn't crash the integrity step."""
        case_builder.add_source("S001", metadata={"title": ["a", "b"]})
        case_builder.write_article("Claim [S001].")

        result = pipeline.run_pipeline(case_builder.root)

        assert result.step("integrity").status == "pass"
        assert result.step("integrity").metrics["hash_verified"] == 1


class TestSingleStep:
    """Tests for run_single_step."""

    def test_runs_one_step(self, clean_case):
        """Test a named step runs alone."""
        result = pipeline.run_single_step(clean_case.root, "binding")

        assert result.name == "binding"
        assert result.status == "pass"

    def test_reuses_loaded_context(self, clean_case):
        """Test a pre-loaded context is used instead of re-reading the case."""
        context = CaseContext.load(clean_case.root)
        (clean_case.root / "articles" / "full.md").unlink()

        result = pipeline.run_single_step(clean_case.root, "statistics", context=context)

        assert result.status == "pass"
        assert result.metrics["numbers_with_citations"] == 2

    def test_unknown_step(self, clean_case):
        """Test an unknown name raises ValueError."""
        with pytest.raises(ValueError, match="Unknown step"):
            pipeline.run_single_step(clean_case.root, "semantic")


class TestPersistedState:
    """Tests for verification-state.json and its readers."""

    def test_no_state(self, clean_case):
        """Test readers handle a case never verified."""
        assert pipeline.get_verification_summary(clean_case.root) is None
        status = pipeline.is_verification_current(clean_case.root)
        assert status == {"current": False, "reason": "No verification state found"}

    def test_not_written_by_default(self, clean_case):
        """Test the runner only writes state on request."""
        pipeline.run_pipeline(clean_case.root)
        assert not (clean_case.root / "verification-state.json").exists()

    def test_write_and_summarize(self, clean_case):
        """Test written state is summarized."""
        result = pipeline.run_pipeline(clean_case.root, write_state=True)
        summary = pipeline.get_verification_summary(clean_case.root)

        assert summary["final_status"] == "pass"
        assert summary["chain_hash"] == result.chain_hash
        assert summary["blocking_issues_count"] == 0

    def test_current_until_article_changes(self, clean_case):
        """Test staleness is detected from the article hash."""
        pipeline.run_pipeline(clean_case.root, write_state=True)
        assert pipeline.is_verification_current(clean_case.root)["current"]

        (clean_case.root / "articles" / "full.md").write_text("Rewritten.", encoding="utf-8")
        status = pipeline.is_verification_current(clean_case.root)

        assert not status["current"]
        assert status["reason"] == "Article has changed since verification"
