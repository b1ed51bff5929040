"""FastAPI dependencies for identifying the acting user.

Authentication happens upstream (gateway / session layer); by the time a
request reaches this service the caller's id has been verified and is
forwarded in the ``X-Actor-Id`` header.  Every write records it in the
ledger, the batch stamps, and the activity log.
"""

from fastapi import Header, HTTPException, status


async def get_current_actor(
    x_actor_id: str | None = Header(None, alias="X-Actor-Id"),
) -> str:
    actor_id = (x_actor_id or "").strip()
    if not actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id header is required",
        )
    return actor_id
