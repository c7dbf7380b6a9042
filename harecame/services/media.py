"""
Media room access tokens (LiveKit) for camera operators.
"""
import json

from flask import current_app
from livekit import api


class MediaTokenError(RuntimeError):
    """The media room token could not be issued"""


def generate_room_token(room_name: str, identity: str, name: str = None, metadata=None,
                        can_publish: bool = True, can_subscribe: bool = True,
                        can_publish_data: bool = True, config=None) -> str:
    """Issue a LiveKit access token granting entry to one room"""
    config = config or current_app.config
    api_key = config.get('LIVEKIT_API_KEY')
    api_secret = config.get('LIVEKIT_API_SECRET')

    if not api_key or not api_secret:
        raise MediaTokenError('Missing LiveKit API credentials')

    if metadata is not None and not isinstance(metadata, str):
        metadata = json.dumps(metadata)

    grants = api.VideoGrants(
        room_join=True,
        room=room_name,
        can_publish=can_publish,
        can_subscribe=can_subscribe,
        can_publish_data=can_publish_data,
    )

    token = (
        api.AccessToken(api_key, api_secret)
        .with_identity(identity)
        .with_name(name or identity)
        .with_grants(grants)
        .with_ttl(config['MEDIA_TOKEN_TTL'])
    )
    if metadata:
        token = token.with_metadata(metadata)

    try:
        return token.to_jwt()
    except Exception as e:
        raise MediaTokenError(f'Failed to sign media token: {e}') from e
