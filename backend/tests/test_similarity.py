from __future__ import annotations

import random

import pytest

from shape_router.similarity import SimilarityWeights, similarity, similarity_breakdown
from shape_router.templates import (
    ShapeKind,
    create_template,
    resample_adaptive,
    rotate,
)

LAT0, LON0 = 35.8242, 127.1480


def test_score_is_bounded_for_random_routes() -> None:
    rng = random.Random(42)
    template = resample_adaptive(create_template(ShapeKind.HEART, LAT0, LON0, 3000.0), 40)
    for _ in range(25):
        route = [
            (LAT0 + rng.uniform(-0.02, 0.02), LON0 + rng.uniform(-0.02, 0.02))
            for _ in range(rng.randint(1, 30))
        ]
        score = similarity(template, route)
        assert 0.0 <= score <= 100.0


@pytest.mark.parametrize("kind", [ShapeKind.SQUARE, ShapeKind.TRIANGLE, ShapeKind.HEART, ShapeKind.BOOK])
def test_template_against_itself_scores_at_least_95(kind: ShapeKind) -> None:
    template = resample_adaptive(create_template(kind, LAT0, LON0, 4000.0), 40)
    assert similarity(template, list(template)) >= 95.0


def test_rotated_route_scores_lower_than_aligned_route() -> None:
    template = resample_adaptive(create_template(ShapeKind.TRIANGLE, LAT0, LON0, 4000.0), 40)
    turned = rotate(template, LAT0, LON0, 180.0)
    assert similarity(template, list(turned)) < similarity(template, list(template))


def test_empty_inputs_score_zero() -> None:
    template = resample_adaptive(create_template(ShapeKind.SQUARE, LAT0, LON0, 4000.0), 40)
    assert similarity(template, []) == 0.0
    assert similarity([], list(template)) == 0.0


def test_breakdown_total_uses_weights() -> None:
    template = resample_adaptive(create_template(ShapeKind.SQUARE, LAT0, LON0, 4000.0), 40)
    route = [(lat + 0.001, lon) for lat, lon in template]
    parts = similarity_breakdown(template, route)
    expected = parts.distance * 0.01 + parts.direction * 0.54 + parts.order * 0.10 + parts.center * 0.35
    assert parts.total == pytest.approx(expected)

    center_only = similarity_breakdown(
        template,
        route,
        weights=SimilarityWeights(distance=0.0, direction=0.0, order=0.0, center=1.0),
    )
    assert center_only.total == pytest.approx(parts.center)
    assert SimilarityWeights.from_settings() == SimilarityWeights()
