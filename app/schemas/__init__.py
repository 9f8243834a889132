from app.schemas.video import VideoCreate, VideoResponse
