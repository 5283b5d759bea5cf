from datetime import date

from marshmallow import Schema, fields


class VideoOutSchema(Schema):
    """Catalog row. Enrichment fields fall back to defaults when the column is missing."""

    id = fields.String()
    title = fields.String()
    description = fields.String(allow_none=True)
    thumbnail = fields.String(allow_none=True)
    video_url = fields.String(allow_none=True)
    duration = fields.String(allow_none=True)
    category = fields.String(allow_none=True)
    genre = fields.Method("get_genre")
    rating = fields.Method("get_rating")
    release_year = fields.Method("get_release_year")
    view_count = fields.Method("get_view_count")
    created_at = fields.DateTime()

    @staticmethod
    def _value(obj, key):
        if isinstance(obj, dict):
            return obj.get(key)
        return getattr(obj, key, None)

    def get_genre(self, obj):
        return self._value(obj, "genre") or self._value(obj, "category") or "Unknown"

    def get_rating(self, obj):
        rating = self._value(obj, "rating")
        return float(rating) if rating is not None else 0.0

    def get_release_year(self, obj):
        year = self._value(obj, "release_year")
        return year if year is not None else date.today().year

    def get_view_count(self, obj):
        return self._value(obj, "view_count") or 0
