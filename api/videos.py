"""
Video catalog blueprint.

Browsing needs a valid access token; opening a single video additionally needs
an active subscription. Queries are built with SQLAlchemy Core against the
columns the live schema really has (see models.schema); enrichment columns
that are missing are filled with defaults by VideoOutSchema.
"""
from __future__ import annotations

from datetime import date
from typing import List

from flask import Blueprint, request, jsonify
from sqlalchemy import and_, false, func, not_, or_, select

from api.errors import NotFound, ValidationFailed
from api.utils.pagination import pagination_meta, parse_pagination
from models import storage
from models.schemas.video import VideoOutSchema
from models.video import Video
from utils.decorators import auth_required, require_active_subscription

bp = Blueprint("videos", __name__)

videos = Video.__table__

video_out_schema = VideoOutSchema()
videos_out_schema = VideoOutSchema(many=True)

DEFAULT_SORT = "newest"

# sortBy -> ordered (column, direction) pairs
SORT_ORDERS = {
    "newest": [("created_at", "desc")],
    "oldest": [("created_at", "asc")],
    "title": [("title", "asc")],
    "rating": [("rating", "desc"), ("created_at", "desc")],
    "popular": [("view_count", "desc"), ("created_at", "desc")],
}

DURATION_BUCKETS = ("short", "medium", "long")

SUGGESTION_LIMIT = 10


def _has(column: str) -> bool:
    return storage.capabilities.has("videos", column)


def _rows(result) -> list:
    return [dict(row._mapping) for row in result]


def _select_videos():
    return select(*storage.capabilities.columns(videos))


def order_by_for(sort_by: str) -> List:
    """ORDER BY clauses for a sort key; unknown keys and missing columns fall back to newest."""
    pairs = SORT_ORDERS.get(sort_by, SORT_ORDERS[DEFAULT_SORT])
    if not all(_has(column) for column, _ in pairs):
        pairs = SORT_ORDERS[DEFAULT_SORT]
    clauses = [getattr(videos.c[column], direction)() for column, direction in pairs]
    # stable pagination when the sort key ties
    clauses.append(videos.c.id.asc())
    return clauses


def duration_condition(bucket: str):
    """Bucket on the hour part of the display duration ("1h 45m", "45m")."""
    col = videos.c.duration
    under_an_hour = or_(col.is_(None), not_(col.like("%h%")), col.like("0h%"))
    one_to_two = or_(col.like("1h%"), col.like("2h%"))
    if bucket == "short":
        return under_an_hour
    if bucket == "medium":
        return one_to_two
    return and_(not_(under_an_hour), not_(one_to_two))


def _parse_rating(raw: str) -> float:
    try:
        return float(raw.replace("+", "").strip())
    except ValueError:
        raise ValidationFailed(errors=[{"field": "rating", "message": "rating must be a number, e.g. 7 or 7+"}])


def _parse_year(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValidationFailed(errors=[{"field": "year", "message": "year must be an integer"}])


def build_conditions(args) -> list:
    conditions = []

    search = (args.get("search") or "").strip()
    if search:
        pattern = f"%{search.lower()}%"
        conditions.append(
            or_(func.lower(videos.c.title).like(pattern), func.lower(videos.c.description).like(pattern))
        )

    category = args.get("category")
    if category:
        conditions.append(videos.c.category == category)

    genre = args.get("genre")
    if genre:
        # without a genre column every video's genre is its category
        column = videos.c.genre if _has("genre") else videos.c.category
        conditions.append(column == genre)

    rating = args.get("rating")
    if rating:
        min_rating = _parse_rating(rating)
        if _has("rating"):
            conditions.append(videos.c.rating >= min_rating)
        elif min_rating > 0:
            conditions.append(false())

    year = args.get("year")
    if year:
        release_year = _parse_year(year)
        if _has("release_year"):
            conditions.append(videos.c.release_year == release_year)
        elif release_year != date.today().year:
            conditions.append(false())

    duration = args.get("duration")
    if duration in DURATION_BUCKETS:
        conditions.append(duration_condition(duration))

    return conditions


@bp.get("")
@auth_required()
def list_videos():
    """
    List videos with filtering, sorting and pagination
    ---
    tags:
      - Videos
    security:
      - Bearer: []
    parameters:
      - { in: query, name: search, type: string, description: "Substring of title or description" }
      - { in: query, name: category, type: string }
      - { in: query, name: genre, type: string }
      - { in: query, name: rating, type: string, description: "Minimum rating, e.g. 7 or 7+" }
      - { in: query, name: year, type: integer }
      - { in: query, name: duration, type: string, enum: [short, medium, long] }
      - { in: query, name: sortBy, type: string, enum: [newest, oldest, title, rating, popular], default: newest }
      - { in: query, name: page, type: integer, default: 1 }
      - { in: query, name: limit, type: integer, default: 12 }
    responses:
      200:
        description: "{videos, pagination, filters}"
      400:
        description: Malformed numeric parameter
      401:
        description: Unauthorized
    """
    page, limit = parse_pagination(default_limit=12)
    sort_by = request.args.get("sortBy", DEFAULT_SORT)
    conditions = build_conditions(request.args)

    total = storage.execute(
        select(func.count()).select_from(videos).where(*conditions)
    ).scalar_one()
    rows = storage.execute(
        _select_videos()
        .where(*conditions)
        .order_by(*order_by_for(sort_by))
        .offset((page - 1) * limit)
        .limit(limit)
    )

    return jsonify(
        {
            "videos": videos_out_schema.dump(_rows(rows)),
            "pagination": pagination_meta(page, limit, total),
            "filters": {
                "search": request.args.get("search", ""),
                "category": request.args.get("category", ""),
                "genre": request.args.get("genre", ""),
                "rating": request.args.get("rating", ""),
                "year": request.args.get("year", ""),
                "duration": request.args.get("duration", ""),
                "sortBy": sort_by,
            },
        }
    )


@bp.get("/categories")
@auth_required()
def list_categories():
    """
    Distinct categories
    ---
    tags:
      - Videos
    security:
      - Bearer: []
    responses:
      200:
        description: Sorted list of category names
    """
    col = videos.c.category
    result = storage.execute(
        select(col).where(col.is_not(None), col != "").distinct().order_by(col.asc())
    )
    return jsonify([row[0] for row in result])


@bp.get("/genres")
@auth_required()
def list_genres():
    """
    Distinct genres (categories when the catalog has no genre column)
    ---
    tags:
      - Videos
    security:
      - Bearer: []
    responses:
      200:
        description: Sorted list of genre names
    """
    col = videos.c.genre if _has("genre") else videos.c.category
    result = storage.execute(
        select(col).where(col.is_not(None), col != "").distinct().order_by(col.asc())
    )
    return jsonify([row[0] for row in result])


@bp.get("/search/suggestions")
@auth_required()
def search_suggestions():
    """
    Title suggestions for a partial query
    ---
    tags:
      - Videos
    security:
      - Bearer: []
    parameters:
      - { in: query, name: query, type: string, description: "At least 2 characters" }
    responses:
      200:
        description: Up to 10 matching titles
    """
    query = (request.args.get("query") or "").strip()
    if len(query) < 2:
        return jsonify([])
    title = videos.c.title
    result = storage.execute(
        select(title)
        .where(func.lower(title).like(f"%{query.lower()}%"))
        .distinct()
        .order_by(title.asc())
        .limit(SUGGESTION_LIMIT)
    )
    return jsonify([row[0] for row in result])


@bp.get("/category/<category>")
@auth_required()
def list_by_category(category: str):
    """
    Newest videos in one category
    ---
    tags:
      - Videos
    security:
      - Bearer: []
    parameters:
      - { in: path, name: category, type: string, required: true }
      - { in: query, name: page, type: integer, default: 1 }
      - { in: query, name: limit, type: integer, default: 12 }
    responses:
      200:
        description: List of videos
    """
    page, limit = parse_pagination(default_limit=12)
    rows = storage.execute(
        _select_videos()
        .where(videos.c.category == category)
        .order_by(*order_by_for(DEFAULT_SORT))
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return jsonify(videos_out_schema.dump(_rows(rows)))


@bp.get("/<video_id>")
@auth_required()
@require_active_subscription()
def get_video(video_id: str):
    """
    Get a single video (active subscription required)
    ---
    tags:
      - Videos
    security:
      - Bearer: []
    parameters:
      - { in: path, name: video_id, type: string, required: true }
    responses:
      200:
        description: Video found
      401:
        description: Unauthorized
      403:
        description: SUBSCRIPTION_REQUIRED
      404:
        description: VIDEO_NOT_FOUND
    """
    row = storage.execute(_select_videos().where(videos.c.id == video_id)).first()
    if row is None:
        raise NotFound("Video not found", code="VIDEO_NOT_FOUND")
    return jsonify(video_out_schema.dump(dict(row._mapping)))
