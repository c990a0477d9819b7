# middleware/auth_middleware.py

import logging
import re
from typing import Optional, List

from fastapi import Request, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from starlette import status
from starlette.responses import JSONResponse

from utils.auth_utils import verify_token

security = HTTPBearer()
logger = logging.getLogger(__name__)


class FirebaseAuthMiddleware:
    """Rejects HTTP requests without a valid Firebase ID token.

    WebSocket connections pass through; the stream endpoint checks its own token.
    """

    def __init__(self, app, exclude_paths: Optional[List[str]] = None):
        self.app = app
        default_exclude_paths = [
            r"^/$",
            r"^/docs$",
            r"^/openapi.json$",
            r"^/redoc$",
            r"^/favicon\.ico$",
        ]
        self.exclude_paths = (exclude_paths or []) + default_exclude_paths
        self.exclude_patterns = [re.compile(pattern) for pattern in self.exclude_paths]

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive=receive)
        path = request.url.path

        if any(pattern.match(path) for pattern in self.exclude_patterns) or request.method == "OPTIONS":
            await self.app(scope, receive, send)
            return

        try:
            credentials: HTTPAuthorizationCredentials = await security(request)
            request.state.user = verify_token(credentials.credentials)
        except HTTPException as http_exc:
            response = JSONResponse(
                status_code=http_exc.status_code,
                content={"detail": http_exc.detail},
                headers=http_exc.headers,
            )
            await response(scope, receive, send)
            return
        except Exception as e:
            logger.exception("Unexpected error during authentication for path %s: %s", path, e)
            response = JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"detail": "Internal Server Error during authentication process"},
            )
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)
