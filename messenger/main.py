from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Query, status
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import json
import logging
from typing import Optional

from messenger import events
from messenger.config import settings
from messenger.engine import ChatEngine
from messenger.errors import ChatError
from messenger.models.base import utcnow
from messenger.security.auth import verify_token
from messenger.routes import auth, conversations, messages, users

# Configure logging
logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)


def create_app(engine: Optional[ChatEngine] = None) -> FastAPI:
    """Application factory. A prebuilt engine (tests) skips backend setup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager"""
        logger.info(f"Starting up {settings.APP_NAME}...")
        app.state.engine = engine or await ChatEngine.from_settings(settings)

        yield

        logger.info(f"Shutting down {settings.APP_NAME}...")
        await app.state.engine.shutdown()

    app = FastAPI(
        title=f"{settings.APP_NAME} API",
        description="Real-time message delivery, presence and conversation state",
        version="1.0.0",
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth.router, prefix="/api/auth", tags=["Authentication"])
    app.include_router(users.router, prefix="/api/users", tags=["Users"])
    app.include_router(conversations.router, prefix="/api/conversations", tags=["Conversations"])
    app.include_router(messages.router, prefix="/api/messages", tags=["Messages"])

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket, token: str = Query(...)):
        """WebSocket endpoint for real-time communication"""
        engine_ = websocket.app.state.engine
        payload = verify_token(token)
        user = None
        if payload:
            try:
                user = await engine_.directory.find_user(payload.get('user_id', ''))
            except ChatError as e:
                logger.error(f"Could not authenticate socket: {e}")
        if user is None:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()
        connection = await engine_.connections.connect(websocket, user.id)

        try:
            while True:
                try:
                    data = await websocket.receive_text()
                    message_data = json.loads(data)
                    if not isinstance(message_data, dict):
                        raise ValueError("frame must be a JSON object")
                except json.JSONDecodeError:
                    await connection.send(events.error(events.ERR_BAD_JSON, "Invalid JSON format"))
                    continue
                except ValueError as e:
                    await connection.send(events.error(events.ERR_BAD_JSON, str(e)))
                    continue

                # Check rate limiting
                if not engine_.connections.rate_limit_check(connection):
                    await connection.send(events.error(
                        events.ERR_RATE_LIMITED, "Rate limit exceeded. Please slow down.",
                        message_data.get('req_id'), retryable=True,
                    ))
                    continue

                response = await engine_.handler.handle_message(connection, message_data)
                if response:
                    await connection.send(response)

        except WebSocketDisconnect:
            logger.info(f"WebSocket disconnected for user {user.id}")
        except Exception as e:
            logger.error(f"WebSocket connection error for user {user.id}: {e}")
        finally:
            await engine_.connections.disconnect(connection, "Connection closed")

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "message": f"{settings.APP_NAME} API",
            "version": "1.0.0",
            "status": "running"
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "timestamp": utcnow().isoformat(),
            "active_connections": len(app.state.engine.connections.get_online_users())
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "messenger.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
