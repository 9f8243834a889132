import asyncio
import sys
import os
import uuid

# Add project root to sys.path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.core.config import settings
from app.core.security import create_access_token
from app.db.session import async_session_maker
from app.models.video import Video


async def create_video(title, user_id):
    async with async_session_maker() as session:
        video = Video(user_id=user_id, title=title)
        session.add(video)
        await session.commit()
        await session.refresh(video)

    token = create_access_token(
        user_id,
        settings.JWT_SECRET_KEY,
        settings.JWT_ALGORITHM,
        settings.ACCESS_TOKEN_EXPIRE_MINUTES,
    )
    print("Success: Video created!")
    print(f"Video ID: {video.id}")
    print(f"User ID: {user_id}")
    print(f"Bearer token: {token}")
    print(f"Upload with: curl -H 'Authorization: Bearer {token}' -F 'video=@clip.mp4;type=video/mp4' "
          f"http://localhost:8000/api/v1/videos/{video.id}/video")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts/create_video.py <title> [user_id]")
        sys.exit(1)

    title = sys.argv[1]
    user_id = uuid.UUID(sys.argv[2]) if len(sys.argv) > 2 else uuid.uuid4()
    asyncio.run(create_video(title, user_id))
