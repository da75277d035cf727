"""FastAPI dependencies: current user from the identity provider JWT, feature gates."""

import logging
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from saas_billing.core.auth import decode_token
from saas_billing.db.session import get_db
from saas_billing.services import subscription_queries
from saas_billing.services.features import has_feature_access

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CurrentUser:
    """User record as asserted by the identity provider token."""

    id: str
    email: str | None = None


async def get_current_user(request: Request) -> CurrentUser:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")
    token = auth_header[7:].strip()
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = decode_token(token)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    except RuntimeError as e:
        logger.error("Token verification unavailable: %s", e)
        raise HTTPException(status_code=503, detail="Authentication is not configured")
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return CurrentUser(id=str(user_id), email=payload.get("email"))


def require_feature(feature: str):
    """Dependency factory: 403 unless the user's plan includes feature."""

    async def _require_feature(
        session: Annotated[AsyncSession, Depends(get_db)],
        user: Annotated[CurrentUser, Depends(get_current_user)],
    ) -> CurrentUser:
        subscription = await subscription_queries.get_by_user_id(session, user.id)
        if not has_feature_access(subscription, feature):
            raise HTTPException(
                status_code=403,
                detail=f"Your plan does not include {feature}",
                headers={"X-Upgrade-Required": "true"},
            )
        return user

    return _require_feature
