from typing import Optional
from glide import (
    ExpirySet,
    ExpiryType,
    GlideClient,
    GlideClientConfiguration,
    NodeAddress,
    ServerCredentials,
)
from notequeue.config import settings


_client: Optional[GlideClient] = None


async def get_valkey_client() -> GlideClient:
    """
    Get or create a Valkey client instance.
    Returns a singleton client to reuse connections.
    """
    global _client

    if _client is None:
        config = GlideClientConfiguration(
            addresses=[NodeAddress(settings.valkey_host, settings.valkey_port)],
            database_id=settings.valkey_db,
        )

        if settings.valkey_auth_token:
            config.credentials = ServerCredentials(password=settings.valkey_auth_token)
            config.use_tls = True

        _client = await GlideClient.create(config)

    return _client


async def get_key(key: str) -> Optional[str]:
    client = await get_valkey_client()
    value = await client.get(key)
    return value.decode("utf-8") if value else None


async def set_key(key: str, value: str, ttl: Optional[int] = None) -> bool:
    """
    Set a key-value pair in Valkey, optionally expiring after ttl seconds.
    """
    client = await get_valkey_client()

    expiry_set = ExpirySet(expiry_type=ExpiryType.SEC, value=ttl) if ttl else None
    await client.set(key=key, value=value, expiry=expiry_set)

    return True


async def delete_key(key: str) -> bool:
    client = await get_valkey_client()
    result = await client.delete([key])
    return result > 0


async def close_valkey_client():
    """
    Close the Valkey client connection.
    Should be called on application shutdown.
    """
    global _client

    if _client:
        await _client.close()
        _client = None
