from __future__ import annotations

import pytest

from pipetrace.core.cache.step_outputs import StepOutputCache
from pipetrace.core.chain.controller import JobDetailsController
from pipetrace.core.chain.errors import RootFetchFailure


def _seed_resumed_run(source) -> None:
    source.add_job(
        "job-a",
        type="blog",
        status="completed",
        created_at="2024-01-01T10:00:00Z",
        started_at="2024-01-01T10:00:00Z",
        completed_at="2024-01-01T10:06:00Z",
        metadata={"resume_job_id": "job-b", "title": "Launch post"},
    )
    source.add_job(
        "job-b",
        type="resume_pipeline",
        status="completed",
        started_at="2024-01-01T10:20:00Z",
        completed_at="2024-01-01T10:30:00Z",
        metadata={"original_job_id": "job-a", "original_content_type": "blog"},
    )
    source.add_summary(
        "job-a",
        [
            {"step_number": 1, "step_name": "research", "timestamp": "2024-01-01T10:02:00Z"},
            {"step_number": 2, "step_name": "draft", "timestamp": "2024-01-01T10:05:00Z"},
        ],
        performance_metrics={"execution_time_seconds": 5.0, "total_tokens_used": 100},
        quality_warnings=["thin sources"],
    )
    source.add_summary(
        "job-b",
        [{"step_number": 3, "step_name": "edit", "timestamp": "2024-01-01T10:25:00Z"}],
        performance_metrics={"execution_time_seconds": 3.0, "total_tokens_used": 50},
    )
    source.results["job-a"] = {"result": {"step_results": {"research": {"notes": "n"}, "draft": {"text": "t"}}}}
    source.results["job-b"] = {
        "result": {"step_results": {"edit": {"text": "t2"}}, "quality_warnings": ["thin sources", "long title"]}
    }
    source.add_approval(
        id="ap-1",
        job_id="job-a",
        step_name="draft",
        agent_name="writer",
        status="approved",
        created_at="2024-01-01T10:06:00Z",
        reviewed_at="2024-01-01T10:15:00Z",
    )


def test_root_and_resume_job_render_the_same_view(fake_source) -> None:
    _seed_resumed_run(fake_source)
    controller = JobDetailsController(fake_source)

    from_root = controller.fetch_job_details("job-a")
    from_resume = controller.fetch_job_details("job-b")

    assert from_root.model_dump() == from_resume.model_dump()
    assert from_resume.job_id == "job-a"
    assert [(s.job_id, s.step_name) for s in from_resume.steps] == [
        ("job-a", "research"),
        ("job-a", "draft"),
        ("job-b", "edit"),
    ]
    assert from_resume.subjobs == ["job-b"]
    assert from_resume.metadata.title == "Launch post"
    assert from_resume.metadata.chain_status == "all_completed"
    assert [a.id for a in from_resume.approvals] == ["ap-1"]
    assert any(e.event_type == "approval" and e.step_number == 2 for e in from_resume.timeline)
    assert [(c.id, c.job_id, c.label) for c in from_resume.contexts] == [
        (0, "job-a", "Initial Execution"),
        (1, "job-b", "Resume After Approval 1"),
    ]


def test_metrics_and_warnings_are_merged_across_chain(fake_source) -> None:
    _seed_resumed_run(fake_source)

    view = JobDetailsController(fake_source).fetch_job_details("job-a")

    assert view.performance_metrics.execution_time_seconds == 8.0
    assert view.performance_metrics.total_tokens_used == 150
    assert view.quality_warnings == ["thin sources", "long title"]


def test_step_outputs_are_published_under_job_and_filename(fake_source) -> None:
    _seed_resumed_run(fake_source)
    cache = StepOutputCache()

    JobDetailsController(fake_source, on_step_data_add=cache.add).fetch_job_details("job-b")

    assert sorted(cache.keys()) == ["job-a_step_1.json", "job-a_step_2.json", "job-b_step_3.json"]
    assert cache.get("job-b_step_3.json") == {"text": "t2"}


def test_timeline_for_resume_job_reports_root(fake_source) -> None:
    _seed_resumed_run(fake_source)

    timeline = JobDetailsController(fake_source).fetch_timeline("job-b")

    assert timeline.job_id == "job-b"
    assert timeline.root_job_id == "job-a"
    assert timeline.chain_length == 2
    assert timeline.total_events == len(timeline.events)
    assert timeline.events[0].event_type == "job_boundary"


def test_failed_middle_subjob_does_not_hide_later_ones(fake_source) -> None:
    fake_source.add_job("root", status="completed", metadata={"resume_job_id": "sub-1"})
    fake_source.add_job("sub-1", type="resume_pipeline", status="completed", metadata={"original_job_id": "root", "resume_job_id": "sub-2"})
    fake_source.add_job("sub-2", type="resume_pipeline", status="failed", metadata={"original_job_id": "sub-1", "resume_job_id": "sub-3"})
    fake_source.add_job("sub-3", type="resume_pipeline", status="completed", metadata={"original_job_id": "sub-2"})
    fake_source.add_summary("root", [{"step_number": 1, "step_name": "research"}], subjobs=["sub-1", "sub-2", "sub-3"])
    fake_source.add_summary("sub-1", [{"step_number": 2, "step_name": "draft"}])
    fake_source.add_summary("sub-3", [{"step_number": 4, "step_name": "publish"}])
    fake_source.broken.add("sub-2")

    view = JobDetailsController(fake_source).fetch_job_details("root")

    assert view.subjobs == ["sub-1", "sub-2", "sub-3"]
    assert [(s.job_id, s.step_name) for s in view.steps] == [
        ("root", "research"),
        ("sub-1", "draft"),
        ("sub-3", "publish"),
    ]
    assert [c.job_id for c in view.contexts] == ["root", "sub-1", "sub-2", "sub-3"]
    assert view.metadata.chain_status == "in_progress"


def test_root_fetch_failure_is_raised_and_recorded(fake_source) -> None:
    controller = JobDetailsController(fake_source)

    with pytest.raises(RootFetchFailure):
        controller.fetch_job_details("missing")

    assert controller.error is not None
    assert controller.selected_job is None


def test_successful_fetch_clears_previous_error(fake_source) -> None:
    _seed_resumed_run(fake_source)
    controller = JobDetailsController(fake_source)
    with pytest.raises(RootFetchFailure):
        controller.fetch_job_details("missing")

    controller.fetch_job_details("job-a")

    assert controller.error is None
    assert controller.selected_job.job_id == "job-a"


def test_subjob_drill_down_scopes_to_one_job(fake_source) -> None:
    _seed_resumed_run(fake_source)

    view = JobDetailsController(fake_source).fetch_subjob_details("job-b")

    assert view.job_id == "job-b"
    assert view.parent_job_id == "job-a"
    assert [(s.step_name, s.execution_context_id) for s in view.steps] == [("edit", 1)]
    assert [c.label for c in view.contexts] == ["Resume After Approval 1"]
    assert view.subjobs is None


def test_embedded_result_is_used_when_result_endpoint_fails(fake_source) -> None:
    fake_source.add_job(
        "solo",
        status="completed",
        result={"step_results": {"outline": {"sections": 3}}, "quality_warnings": ["short"]},
    )
    cache = StepOutputCache()

    view = JobDetailsController(fake_source, on_step_data_add=cache.add).fetch_job_details("solo")

    assert [(s.step_number, s.step_name) for s in view.steps] == [(1, "outline")]
    assert view.quality_warnings == ["short"]
    assert cache.get("solo_step_1.json") == {"sections": 3}


def test_blocked_chain_status(fake_source) -> None:
    _seed_resumed_run(fake_source)
    fake_source.jobs["job-b"] = fake_source.jobs["job-b"].model_copy(update={"status": "waiting_for_approval"})

    view = JobDetailsController(fake_source).fetch_job_details("job-a")

    assert view.metadata.chain_status == "blocked"


def test_superseded_reconstruction_is_discarded(fake_source) -> None:
    _seed_resumed_run(fake_source)
    fake_source.add_job("other", status="completed")
    controller = JobDetailsController(fake_source)
    original_fetch = fake_source.fetch_results_summary
    triggered = {"done": False}

    def fetch_summary_and_switch(job_id: str):
        if job_id == "job-a" and not triggered["done"]:
            triggered["done"] = True
            controller.fetch_job_details("other")
        return original_fetch(job_id)

    fake_source.fetch_results_summary = fetch_summary_and_switch

    returned = controller.fetch_job_details("job-a")

    assert returned.job_id == "job-a"
    assert controller.selected_job.job_id == "other"


def test_paused_article_run_renders_identically_from_either_job(fake_source) -> None:
    # Only the resume job knows about the link; the paused job carries no forward pointer.
    fake_source.add_job("job-a", type="blog", status="waiting_for_approval", created_at="2024-03-01T09:00:00Z")
    fake_source.add_job("job-b", type="resume_pipeline", status="processing", metadata={"original_job_id": "job-a"})
    fake_source.add_summary(
        "job-a",
        [
            {"step_number": 1, "step_name": "seo_keywords", "status": "completed"},
            {"step_number": 2, "step_name": "article_generation", "status": "waiting_for_approval"},
        ],
    )
    fake_source.add_summary("job-b", [{"step_number": 3, "step_name": "final"}])
    fake_source.add_approval(id="ap-9", job_id="job-a", step_name="article_generation", status="pending")
    controller = JobDetailsController(fake_source)

    from_a = controller.fetch_job_details("job-a")
    from_b = controller.fetch_job_details("job-b")

    assert from_a.model_dump() == from_b.model_dump()
    assert from_a.job_id == "job-a"
    assert from_a.subjobs == ["job-b"]
    assert [(s.job_id, s.step_name, s.status) for s in from_a.steps] == [
        ("job-a", "seo_keywords", "completed"),
        ("job-a", "article_generation", "waiting_for_approval"),
        ("job-b", "final", "completed"),
    ]
    approval = next(e for e in from_b.timeline if e.event_type == "approval")
    assert approval.step_name == "article_generation"
    assert approval.color == "warning"
    assert from_b.metadata.chain_status == "blocked"


def test_back_linked_resume_job_is_found_in_either_request_order(fake_source) -> None:
    fake_source.add_job("job-a", status="completed")
    fake_source.add_job("job-b", type="resume_pipeline", status="completed", metadata={"original_job_id": "job-a"})
    fake_source.add_job("job-c", type="resume_pipeline", status="completed", metadata={"original_job_id": "job-b"})
    fake_source.add_summary("job-c", [{"step_number": 5, "step_name": "publish"}])

    from_b = JobDetailsController(fake_source).fetch_job_details("job-b")
    from_a = JobDetailsController(fake_source).fetch_job_details("job-a")

    assert from_a.model_dump() == from_b.model_dump()
    assert from_a.subjobs == ["job-b", "job-c"]
    assert [(s.job_id, s.step_name) for s in from_a.steps] == [("job-c", "publish")]


def test_unavailable_job_list_still_splices_requested_resume_job(fake_source) -> None:
    fake_source.add_job("job-a", status="completed")
    fake_source.add_job("job-b", type="resume_pipeline", status="completed", metadata={"original_job_id": "job-a"})
    fake_source.add_summary("job-b", [{"step_number": 1, "step_name": "final"}])
    fake_source.broken.add("*")

    view = JobDetailsController(fake_source).fetch_job_details("job-b")

    assert view.job_id == "job-a"
    assert view.subjobs == ["job-b"]
    assert [s.step_name for s in view.steps] == ["final"]
