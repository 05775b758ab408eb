"""
Tests for the peer-norm (geonorm) calculator.
"""

import uuid

import pytest

from assessment_reports.database import AsyncSessionLocal
from assessment_reports.models import AssignmentDimensionScore
from assessment_reports.services.geonorm import calculate_geonorms, compute_geonorms
from assessment_reports.services.report_repository import ReportRepository

from conftest import add_rows, add_scores, make_assignment

DIM_A = uuid.uuid4()
DIM_B = uuid.uuid4()


def score(dimension_id, value):
    return AssignmentDimensionScore(
        assignment_id=uuid.uuid4(), dimension_id=dimension_id, avg_score=value, answer_count=1
    )


def test_compute_geonorms_includes_zero():
    norms = compute_geonorms([score(DIM_A, 0.0), score(DIM_A, 3.0)], [DIM_A, DIM_B])

    assert norms[DIM_A].avg_score == 1.5
    assert norms[DIM_A].participant_count == 2
    assert DIM_B not in norms


def test_compute_geonorms_minimum_participants():
    rows = [score(DIM_A, 2.0), score(DIM_B, 1.0), score(DIM_B, 3.0)]

    norms = compute_geonorms(rows, [DIM_A, DIM_B], min_participants=2)

    assert DIM_A not in norms
    assert norms[DIM_B].avg_score == 2.0


def test_compute_geonorms_ignores_other_dimensions():
    assert compute_geonorms([score(uuid.uuid4(), 5.0)], [DIM_A]) == {}


@pytest.mark.asyncio
async def test_calculate_geonorms_for_group(
    test_raters, test_assessment, test_target, test_group, test_dimensions
):
    leadership = test_dimensions["Leadership"]
    peer = make_assignment(test_raters["peer"], test_assessment, test_target, test_group, offset=1)
    manager = make_assignment(test_raters["manager"], test_assessment, test_target, test_group, offset=2)
    unfinished = make_assignment(
        test_raters["subordinate"], test_assessment, test_target, test_group, completed=False
    )
    await add_rows(peer, manager, unfinished)
    await add_scores(peer, {leadership: 0.0})
    await add_scores(manager, {leadership: 4.0})
    await add_scores(unfinished, {leadership: 1.0})

    async with AsyncSessionLocal() as db:
        norms = await calculate_geonorms(
            ReportRepository(db), test_group.id, test_assessment.id, [leadership.id],
            exclude_profile_id=test_target.id,
        )

    assert norms[leadership.id].avg_score == 2.0
    assert norms[leadership.id].participant_count == 2


@pytest.mark.asyncio
async def test_calculate_geonorms_excludes_profile(
    test_raters, test_assessment, test_target, test_group, test_dimensions
):
    leadership = test_dimensions["Leadership"]
    peer = make_assignment(test_raters["peer"], test_assessment, test_target, test_group)
    await add_rows(peer)
    await add_scores(peer, {leadership: 3.0})

    async with AsyncSessionLocal() as db:
        norms = await calculate_geonorms(
            ReportRepository(db), test_group.id, test_assessment.id, [leadership.id],
            exclude_profile_id=test_raters["peer"].id,
        )

    assert norms == {}


@pytest.mark.asyncio
async def test_calculate_geonorms_without_group(setup_db):
    async with AsyncSessionLocal() as db:
        assert await calculate_geonorms(ReportRepository(db), None, uuid.uuid4(), [DIM_A]) == {}
