"""
Integration tests for the score aggregation engine.

Each test seeds a small 360 (target, rating group, raters, precomputed
dimension scores) and runs generate_report against it.
"""

import asyncio
import uuid

import pytest
from sqlalchemy import func, select, text

from assessment_reports.database import AsyncSessionLocal, engine
from assessment_reports.errors import NotFoundError
from assessment_reports.models import (
    Answer,
    Assessment,
    Dimension,
    FeedbackEntry,
    Field,
    Group,
    GroupMember,
    ReportData,
)
from assessment_reports.services.report_generator import generate_report

from conftest import add_rows, add_scores, make_assignment, make_profile


async def _generate(assignment_id):
    async with AsyncSessionLocal() as db:
        return await generate_report(db, assignment_id)


def _section(document, name):
    return next(d for d in document.dimensions if d.dimension_name == name)


@pytest.mark.asyncio
async def test_zero_score_is_included_in_averages(
    peer_assignment, test_dimensions, test_benchmarks
):
    """A 0 on one dimension pulls the overall score down instead of vanishing."""
    await add_scores(
        peer_assignment,
        {test_dimensions["Leadership"]: 0.0, test_dimensions["Communication"]: 3.5},
    )

    report = await _generate(peer_assignment.id)

    assert report.partial is False
    assert [d.dimension_name for d in report.dimensions] == ["Communication", "Leadership"]
    leadership = _section(report, "Leadership")
    assert leadership.overall_score == 0.0
    assert leadership.rater_breakdown.all_raters == 0.0
    assert leadership.rater_breakdown.peer == 0.0
    assert leadership.rater_breakdown.supervisor is None
    assert _section(report, "Communication").overall_score == 3.5
    assert report.overall_score == pytest.approx(1.75)


@pytest.mark.asyncio
async def test_benchmarks_geonorms_and_improvement_flags(
    peer_assignment, test_dimensions, test_benchmarks
):
    await add_scores(
        peer_assignment,
        {test_dimensions["Leadership"]: 0.0, test_dimensions["Communication"]: 3.5},
    )

    report = await _generate(peer_assignment.id)

    communication = _section(report, "Communication")
    assert communication.industry_benchmark == 4.0
    assert communication.improvement_needed is True

    leadership = _section(report, "Leadership")
    # A benchmark of exactly 0 is still a benchmark
    assert leadership.industry_benchmark == 0.0
    assert leadership.geonorm == 0.0
    assert leadership.geonorm_participant_count == 1
    assert leadership.improvement_needed is False


@pytest.mark.asyncio
async def test_rater_breakdown_by_type(
    test_raters, test_assessment, test_target, test_group, test_dimensions
):
    """Peer, supervisor and self scores land in their own buckets."""
    peer = make_assignment(test_raters["peer"], test_assessment, test_target, test_group, offset=1)
    manager = make_assignment(test_raters["manager"], test_assessment, test_target, test_group, offset=2)
    self_rating = make_assignment(test_target, test_assessment, test_target, test_group, offset=3)
    await add_rows(peer, manager, self_rating)
    leadership = test_dimensions["Leadership"]
    await add_scores(peer, {leadership: 4.0})
    await add_scores(manager, {leadership: 2.0})
    await add_scores(self_rating, {leadership: 3.0})

    report = await _generate(peer.id)

    breakdown = _section(report, "Leadership").rater_breakdown
    assert breakdown.all_raters == 3.0
    assert breakdown.peer == 4.0
    assert breakdown.supervisor == 2.0
    assert breakdown.self_rating == 3.0
    assert breakdown.direct_report is None
    assert breakdown.other is None
    assert report.participant_response_summary.completed == 3
    dumped = report.model_dump(by_alias=True)
    assert dumped["dimensions"][0]["rater_breakdown"]["self"] == 3.0


@pytest.mark.asyncio
async def test_geonorm_excludes_the_subject(
    test_raters, test_assessment, test_target, test_group, test_dimensions
):
    peer = make_assignment(test_raters["peer"], test_assessment, test_target, test_group, offset=1)
    self_rating = make_assignment(test_target, test_assessment, test_target, test_group, offset=2)
    await add_rows(peer, self_rating)
    leadership = test_dimensions["Leadership"]
    await add_scores(peer, {leadership: 4.0})
    await add_scores(self_rating, {leadership: 1.0})

    report = await _generate(peer.id)

    section = _section(report, "Leadership")
    assert section.overall_score == 2.5
    assert section.geonorm == 4.0
    assert section.geonorm_participant_count == 1
    assert section.improvement_needed is True


@pytest.mark.asyncio
async def test_partial_report_when_nobody_has_completed(
    test_raters, test_assessment, test_target, test_group, test_dimensions, test_benchmarks
):
    pending = make_assignment(
        test_raters["peer"], test_assessment, test_target, test_group, completed=False
    )
    await add_rows(pending)

    report = await _generate(pending.id)

    assert report.partial is True
    assert report.overall_score == 0
    assert report.participant_response_summary.completed == 0
    assert report.participant_response_summary.total == 3
    assert len(report.dimensions) == 2
    for section in report.dimensions:
        assert section.overall_score == 0
        assert section.rater_breakdown.all_raters is None
        assert section.rater_breakdown.peer is None
        assert section.geonorm is None
        assert section.geonorm_participant_count == 0
        assert section.improvement_needed is False
        assert section.specific_feedback is None
    assert _section(report, "Communication").industry_benchmark == 4.0


@pytest.mark.asyncio
async def test_partial_report_without_any_group(test_raters, test_assessment, test_dimensions):
    """A self-assessment with no group and no completion: total is 0."""
    pending = make_assignment(test_raters["peer"], test_assessment, completed=False)
    await add_rows(pending)

    report = await _generate(pending.id)

    assert report.partial is True
    assert report.group_id is None
    assert report.participant_response_summary.total == 0


@pytest.mark.asyncio
async def test_falls_back_to_unscoped_assignments(
    test_raters, test_assessment, test_target, test_group, test_dimensions
):
    """Completed ratings outside the group still count before declaring partial."""
    pending = make_assignment(
        test_raters["peer"], test_assessment, test_target, test_group, completed=False
    )
    ungrouped = make_assignment(test_raters["manager"], test_assessment, test_target, offset=5)
    await add_rows(pending, ungrouped)
    await add_scores(ungrouped, {test_dimensions["Leadership"]: 2.0})

    report = await _generate(pending.id)

    assert report.partial is False
    assert _section(report, "Leadership").rater_breakdown.supervisor == 2.0


@pytest.mark.asyncio
async def test_group_resolved_from_target_when_assignment_has_none(
    test_raters, test_assessment, test_target, test_group, test_dimensions
):
    rating = make_assignment(test_raters["subordinate"], test_assessment, test_target)
    await add_rows(rating)
    await add_scores(rating, {test_dimensions["Communication"]: 1.0})

    report = await _generate(rating.id)

    assert report.group_id == str(test_group.id)
    assert _section(report, "Communication").rater_breakdown.direct_report == 1.0


@pytest.mark.asyncio
async def test_unscored_dimension_is_omitted(peer_assignment, test_dimensions):
    await add_scores(peer_assignment, {test_dimensions["Communication"]: 3.0})

    report = await _generate(peer_assignment.id)

    assert [d.dimension_name for d in report.dimensions] == ["Communication"]
    assert report.overall_score == 3.0


@pytest.mark.asyncio
async def test_text_answers_roll_up_to_root_dimension(
    peer_assignment, test_assessment, test_dimensions, test_raters
):
    leadership = test_dimensions["Leadership"]
    child = Dimension(
        id=uuid.uuid4(),
        assessment_id=test_assessment.id,
        name="Vision",
        code="VIS",
        parent_id=leadership.id,
    )
    question = Field(
        id=uuid.uuid4(),
        assessment_id=test_assessment.id,
        dimension_id=child.id,
        type="text_input",
        content="What should Tara keep doing?",
    )
    answers = [
        Answer(
            id=uuid.uuid4(),
            assignment_id=peer_assignment.id,
            field_id=question.id,
            user_id=test_raters["peer"].id,
            value="  Keeps the team focused.  ",
        ),
        Answer(
            id=uuid.uuid4(),
            assignment_id=peer_assignment.id,
            field_id=question.id,
            user_id=test_raters["peer"].id,
            value="   ",
        ),
    ]
    await add_rows(child, question, *answers)
    await add_scores(peer_assignment, {leadership: 3.0})

    report = await _generate(peer_assignment.id)

    assert [d.dimension_name for d in report.dimensions] == ["Leadership"]
    assert _section(report, "Leadership").text_feedback == ["Keeps the team focused."]


@pytest.mark.asyncio
async def test_feedback_attached_to_sections(peer_assignment, test_assessment, test_dimensions):
    leadership = test_dimensions["Leadership"]
    rows = [
        FeedbackEntry(
            id=uuid.uuid4(), assessment_id=test_assessment.id, dimension_id=None,
            type="overall", feedback="<p>Thanks for taking part.</p>",
        ),
        FeedbackEntry(
            id=uuid.uuid4(), assessment_id=test_assessment.id, dimension_id=leadership.id,
            type="overall", feedback="<p>Leadership matters.</p>",
        ),
        FeedbackEntry(
            id=uuid.uuid4(), assessment_id=test_assessment.id, dimension_id=leadership.id,
            type="specific", feedback="<p>Room to grow.</p>", min_score=0.0, max_score=2.0,
        ),
    ]
    await add_rows(*rows)
    await add_scores(peer_assignment, {leadership: 0.0})

    report = await _generate(peer_assignment.id)

    section = _section(report, "Leadership")
    assert report.overall_feedback == "<p>Thanks for taking part.</p>"
    assert section.overall_feedback == "<p>Leadership matters.</p>"
    assert section.specific_feedback == "<p>Room to grow.</p>"
    assert section.specific_feedback_id == str(rows[2].id)


@pytest.mark.asyncio
async def test_report_is_upserted_without_touching_pdf_state(peer_assignment, test_dimensions):
    await add_scores(peer_assignment, {test_dimensions["Leadership"]: 2.0})
    await _generate(peer_assignment.id)

    async with AsyncSessionLocal() as db:
        record = (await db.execute(
            select(ReportData).where(ReportData.assignment_id == peer_assignment.id)
        )).scalar_one()
        record.pdf_status = "ready"
        record.pdf_storage_path = f"{peer_assignment.id}/v1.pdf"
        await db.commit()

    report = await _generate(str(peer_assignment.id))

    async with AsyncSessionLocal() as db:
        count = (await db.execute(
            select(func.count()).select_from(ReportData)
            .where(ReportData.assignment_id == peer_assignment.id)
        )).scalar_one()
        record = (await db.execute(
            select(ReportData).where(ReportData.assignment_id == peer_assignment.id)
        )).scalar_one()
    assert count == 1
    assert record.pdf_status == "ready"
    assert record.pdf_storage_path == f"{peer_assignment.id}/v1.pdf"
    assert record.overall_score == report.overall_score == 2.0
    assert record.report["dimensions"][0]["dimension_name"] == "Leadership"


@pytest.mark.asyncio
@pytest.mark.parametrize("assignment_id", [str(uuid.uuid4()), "not-a-uuid"])
async def test_unknown_assignment_is_not_found(setup_db, assignment_id):
    with pytest.raises(NotFoundError, match="Assignment not found"):
        await _generate(assignment_id)


@pytest.mark.asyncio
async def test_assessment_without_dimensions_is_rejected(test_raters):
    empty = Assessment(id=uuid.uuid4(), title="Empty")
    assignment = make_assignment(test_raters["peer"], empty)
    await add_rows(empty, assignment)

    with pytest.raises(NotFoundError, match="no dimensions configured"):
        await _generate(assignment.id)


@pytest.mark.asyncio
async def test_failed_benchmark_and_feedback_lookups_degrade_to_none(
    peer_assignment, test_dimensions, test_benchmarks
):
    await add_scores(
        peer_assignment,
        {test_dimensions["Leadership"]: 0.0, test_dimensions["Communication"]: 3.5},
    )
    async with engine.begin() as conn:
        await conn.execute(text("DROP TABLE dimension_industry_benchmarks"))
        await conn.execute(text("DROP TABLE feedback_library"))

    report = await _generate(peer_assignment.id)

    assert report.partial is False
    assert [d.dimension_name for d in report.dimensions] == ["Communication", "Leadership"]
    assert report.overall_score == pytest.approx(1.75)
    assert report.overall_feedback is None
    for section in report.dimensions:
        assert section.industry_benchmark is None
        assert section.overall_feedback is None
    assert _section(report, "Leadership").geonorm == 0.0


@pytest.mark.asyncio
async def test_concurrent_generation_writes_one_row(peer_assignment, test_dimensions):
    await add_scores(peer_assignment, {test_dimensions["Leadership"]: 2.0})

    first, second = await asyncio.gather(
        _generate(peer_assignment.id), _generate(peer_assignment.id)
    )

    assert first.overall_score == second.overall_score == 2.0
    async with AsyncSessionLocal() as db:
        count = (await db.execute(
            select(func.count()).select_from(ReportData)
            .where(ReportData.assignment_id == peer_assignment.id)
        )).scalar_one()
    assert count == 1


@pytest.mark.asyncio
async def test_targeted_rating_without_any_group_is_partial(
    test_raters, test_assessment, test_target, test_dimensions
):
    rating = make_assignment(test_raters["peer"], test_assessment, test_target)
    await add_rows(rating)
    await add_scores(rating, {test_dimensions["Leadership"]: 2.0})

    report = await _generate(rating.id)

    assert report.group_id is None
    assert report.partial is True
    assert report.overall_score == 0
    assert report.participant_response_summary.completed == 0
    assert report.participant_response_summary.total == 0
    assert all(d.rater_breakdown.all_raters is None for d in report.dimensions)


@pytest.mark.asyncio
async def test_self_assessment_uses_membership_group_and_user_identity(test_client_org):
    assessment = Assessment(id=uuid.uuid4(), title="Leader or Blocker", is_360=False)
    focus = Dimension(id=uuid.uuid4(), assessment_id=assessment.id, name="Focus", code="FOC")
    user = make_profile("Una User", test_client_org)
    colleague = make_profile("Cal Colleague", test_client_org)
    group = Group(id=uuid.uuid4(), name="Cohort A")
    members = [
        GroupMember(id=uuid.uuid4(), group_id=group.id, profile_id=user.id),
        GroupMember(id=uuid.uuid4(), group_id=group.id, profile_id=colleague.id),
    ]
    own = make_assignment(user, assessment, offset=1)
    theirs = make_assignment(colleague, assessment, offset=2)
    await add_rows(assessment, focus, user, colleague, group, *members, own, theirs)
    await add_scores(own, {focus: 2.0})
    await add_scores(theirs, {focus: 4.0})

    report = await _generate(own.id)

    assert report.partial is False
    assert report.target_id is None
    assert report.subject_id == str(user.id)
    assert report.subject_name == "Una User"
    assert report.subject_email == user.email
    assert report.group_id == str(group.id)
    section = _section(report, "Focus")
    assert section.rater_breakdown.self_rating == 2.0
    assert section.geonorm == 4.0
    assert section.geonorm_participant_count == 1
    assert section.improvement_needed is True


@pytest.mark.asyncio
async def test_360_does_not_fall_back_to_membership_group(
    test_raters, test_assessment, test_group, test_dimensions
):
    """The peer belongs to the target's group but is not its subject."""
    own = make_assignment(test_raters["peer"], test_assessment)
    await add_rows(own)
    await add_scores(own, {test_dimensions["Leadership"]: 3.0})

    report = await _generate(own.id)

    assert report.group_id is None
    assert report.partial is True
    assert report.subject_name == "Pat Peer"
