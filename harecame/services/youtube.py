"""
YouTube Data API v3 access for Harecame.
Read-only: live viewer statistics plus URL helpers for the player embed.
"""
import re

import requests
from flask import current_app

from ..retry import retry_with_backoff

_VIDEO_ID_PATTERN = re.compile(r'(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/|youtube\.com/live/)([^&\n?#/]+)')


class VideoPlatformError(RuntimeError):
    """The video platform could not be queried"""


def is_configured(config=None) -> bool:
    config = config or current_app.config
    return bool(config.get('YOUTUBE_API_KEY'))


def watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


def embed_url(video_id: str) -> str:
    return f"https://www.youtube.com/embed/{video_id}?autoplay=1&mute=1"


def extract_video_id(url: str):
    """Video id from a watch, youtu.be, embed or live URL"""
    if not url:
        return None
    match = _VIDEO_ID_PATTERN.search(url)
    return match.group(1) if match else None


def _fetch_video(video_id: str, config) -> dict:
    response = requests.get(
        f"{config['YOUTUBE_API_URL']}/videos",
        params={
            'part': 'liveStreamingDetails,statistics',
            'id': video_id,
            'key': config['YOUTUBE_API_KEY'],
        },
        timeout=config.get('YOUTUBE_TIMEOUT', 5),
    )
    response.raise_for_status()
    return response.json()


def get_stream_stats(video_id: str, config=None, max_retries: int = 3, sleep=None) -> dict:
    """
    Current live statistics of a video.
    Returns {'viewerCount': int, 'isLive': bool}
    """
    config = config or current_app.config
    if not config.get('YOUTUBE_API_KEY'):
        raise VideoPlatformError('YouTube API key not configured')

    def log_retry(attempt, error):
        print(f"[YouTube] Stats request for {video_id} failed (attempt {attempt}/{max_retries + 1}): {error}")

    retry_kwargs = {'sleep': sleep} if sleep is not None else {}
    try:
        payload = retry_with_backoff(
            lambda: _fetch_video(video_id, config),
            max_retries=max_retries,
            on_retry=log_retry,
            retry_on=(requests.RequestException,),
            **retry_kwargs,
        )
    except requests.RequestException as e:
        raise VideoPlatformError(f'YouTube API request failed: {e}') from e

    items = payload.get('items') or []
    if not items:
        raise VideoPlatformError(f'Video not found: {video_id}')

    details = items[0].get('liveStreamingDetails') or {}
    is_live = 'actualStartTime' in details and 'actualEndTime' not in details
    viewers = details.get('concurrentViewers')

    return {
        'viewerCount': int(viewers) if viewers is not None else 0,
        'isLive': is_live,
    }
