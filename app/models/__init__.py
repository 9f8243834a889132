from app.models.video import Video

__all__ = ["Video"]
