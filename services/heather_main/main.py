# File: services/heather_main/main.py
"""
HEATHER main service.

The process holds one signed-in session. Callers prove they own it with the
session's access token (`Authorization: Bearer`, or `?token=` on websockets);
anyone else sees an anonymous state.
"""
import asyncio
import logging
import secrets
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from heather_main.config import Settings, load_settings
from heather_main.core.session_controller import SessionController
from heather_main.lib.document_analyzer import HealthDocumentAnalyzer
from heather_main.lib.errors import (
    AnalysisError,
    AuthenticationError,
    ConfigurationError,
    PersistenceError,
)
from heather_main.lib.health_chat import HealthChatService
from heather_main.lib.messaging import MessagingService
from heather_main.lib.navigation import NavigationRouter
from heather_main.lib.supabase_backend import (
    SupabaseAuthBackend,
    SupabaseProfileStore,
    create_supabase_client,
)
from heather_main.models import (
    ChatRequest,
    ConversationCreate,
    HealthDocumentRequest,
    LoginRequest,
    MessageCreate,
    ProfileCompletion,
    ProfileUpdateRequest,
    SignupRequest,
    UserProfile,
)

logger = logging.getLogger(__name__)


@dataclass
class AppRuntime:
    """Everything the endpoints need, built once per process."""
    settings: Settings
    analyzer: HealthDocumentAnalyzer
    chat: HealthChatService
    router: Optional[NavigationRouter] = None
    controller: Optional[SessionController] = None
    messaging: Optional[MessagingService] = None
    config_error: Optional[str] = None


RuntimeFactory = Callable[[Settings], Awaitable[AppRuntime]]


async def build_runtime(settings: Settings) -> AppRuntime:
    runtime = AppRuntime(
        settings=settings,
        analyzer=HealthDocumentAnalyzer(api_key=settings.gemini_api_key),
        chat=HealthChatService(api_key=settings.gemini_api_key),
    )

    try:
        client = await create_supabase_client(settings)
    except ConfigurationError as e:
        # Reported once here; auth endpoints answer 503 with the same message
        logger.critical(f"Authentication disabled: {e}")
        runtime.config_error = str(e)
        return runtime

    runtime.router = NavigationRouter()
    runtime.controller = SessionController(
        SupabaseAuthBackend(client),
        SupabaseProfileStore(client),
        runtime.router,
        redirect_to=settings.site_url.rstrip("/") + "/",
        profile_timeout=settings.profile_fetch_timeout,
    )
    runtime.messaging = MessagingService(client)
    return runtime


# --- DEPENDENCIES ---
def get_runtime(request: Request) -> AppRuntime:
    return request.app.state.runtime


def get_controller(runtime: AppRuntime = Depends(get_runtime)) -> SessionController:
    if runtime.controller is None:
        raise HTTPException(status_code=503, detail=runtime.config_error or "Authentication unavailable")
    return runtime.controller


bearer_scheme = HTTPBearer(auto_error=False)


def get_caller_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    return credentials.credentials if credentials else None


def owns_session(controller: SessionController, token: Optional[str]) -> bool:
    expected = controller.access_token
    if not token or not expected:
        return False
    return secrets.compare_digest(token, expected)


def get_current_user(
    controller: SessionController = Depends(get_controller),
    token: Optional[str] = Depends(get_caller_token),
) -> UserProfile:
    user = controller.get_state().user
    if user is None or not owns_session(controller, token):
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


def get_messaging(runtime: AppRuntime = Depends(get_runtime)) -> MessagingService:
    if runtime.messaging is None:
        raise HTTPException(status_code=503, detail=runtime.config_error or "Messaging unavailable")
    return runtime.messaging


def state_payload(runtime: AppRuntime, token: Optional[str] = None, include_token: bool = False) -> Dict[str, Any]:
    """Auth snapshot for the view layer, plus any redirect it should follow.

    While a user is signed in, only the holder of that session's token sees
    the user and the pending redirect.
    """
    controller = runtime.controller
    state = controller.get_state()
    visible = state.user is None or include_token or owns_session(controller, token)
    if not visible:
        return {
            "user": None,
            "isAuthenticated": False,
            "isLoading": state.is_loading,
            "isInitialized": state.is_initialized,
            "redirect": None,
        }

    redirect = runtime.router.pop_redirect() if runtime.router else None
    payload = {
        "user": state.user.model_dump(by_alias=True, mode="json") if state.user else None,
        "isAuthenticated": state.is_authenticated,
        "isLoading": state.is_loading,
        "isInitialized": state.is_initialized,
        "redirect": redirect.model_dump() if redirect else None,
    }
    if include_token:
        payload["accessToken"] = controller.access_token
    return payload


def create_app(
    runtime_factory: RuntimeFactory = build_runtime,
    settings: Optional[Settings] = None,
) -> FastAPI:
    settings = settings or load_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        runtime = await runtime_factory(settings)
        app.state.runtime = runtime
        if runtime.controller is not None:
            await runtime.controller.start()
        logger.info("HEATHER service started")
        yield
        if runtime.controller is not None:
            runtime.controller.stop()
        logger.info("HEATHER service shutting down")

    app = FastAPI(
        title="HEATHER Main Service",
        description="Patient/doctor platform: sessions, profiles, messaging, document analysis",
        version="1.0.0",
        lifespan=lifespan,
    )

    allowed_origins = settings.allowed_origins
    if not allowed_origins:
        logger.warning("No CORS origins specified, allowing all for debug purposes.")
        allowed_origins = ["*"]

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- HEALTH CHECK ---
    @app.get("/health")
    async def health_check(runtime: AppRuntime = Depends(get_runtime)):
        return {
            "status": "healthy" if runtime.config_error is None else "degraded",
            "auth_available": runtime.controller is not None,
            "gemini_available": runtime.analyzer.available,
            "config_error": runtime.config_error,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    # --- AUTH ---
    @app.get("/auth/state")
    async def auth_state(
        runtime: AppRuntime = Depends(get_runtime),
        controller: SessionController = Depends(get_controller),
        token: Optional[str] = Depends(get_caller_token),
    ):
        return state_payload(runtime, token)

    @app.post("/auth/login")
    async def login(
        body: LoginRequest,
        runtime: AppRuntime = Depends(get_runtime),
        controller: SessionController = Depends(get_controller),
    ):
        try:
            await controller.login(body.email, body.password)
        except AuthenticationError as e:
            raise HTTPException(status_code=401, detail=e.reason)
        await controller.wait_until_idle()
        return state_payload(runtime, include_token=True)

    @app.post("/auth/signup")
    async def signup(
        body: SignupRequest,
        runtime: AppRuntime = Depends(get_runtime),
        controller: SessionController = Depends(get_controller),
    ):
        try:
            result = await controller.signup(body.name, body.email, body.password, body.role)
        except AuthenticationError as e:
            raise HTTPException(status_code=400, detail=e.reason)
        await controller.wait_until_idle()
        return {**result.model_dump(by_alias=True), **state_payload(runtime, include_token=True)}

    @app.post("/auth/logout")
    async def logout(
        runtime: AppRuntime = Depends(get_runtime),
        controller: SessionController = Depends(get_controller),
        token: Optional[str] = Depends(get_caller_token),
    ):
        if controller.get_state().user is not None and not owns_session(controller, token):
            raise HTTPException(status_code=401, detail="Not authenticated")
        await controller.logout()
        return state_payload(runtime)

    @app.patch("/auth/profile")
    async def update_profile(
        body: ProfileUpdateRequest,
        controller: SessionController = Depends(get_controller),
        user: UserProfile = Depends(get_current_user),
    ):
        changes = body.model_dump(exclude_unset=True, exclude_none=True)
        try:
            updated = await controller.update_profile(**changes)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        return updated.model_dump(by_alias=True, mode="json")

    @app.post("/auth/profile/complete")
    async def complete_profile(
        body: ProfileCompletion,
        runtime: AppRuntime = Depends(get_runtime),
        controller: SessionController = Depends(get_controller),
        user: UserProfile = Depends(get_current_user),
        token: Optional[str] = Depends(get_caller_token),
    ):
        try:
            await controller.complete_profile(body)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except PersistenceError as e:
            raise HTTPException(status_code=502, detail=f"There was a problem saving your profile: {e}")
        return state_payload(runtime, token)

    # --- MESSAGING ---
    @app.get("/conversations")
    async def list_conversations(
        user: UserProfile = Depends(get_current_user),
        messaging: MessagingService = Depends(get_messaging),
    ):
        return await messaging.fetch_conversations(user.id)

    @app.post("/conversations", status_code=201)
    async def create_conversation(
        body: ConversationCreate,
        user: UserProfile = Depends(get_current_user),
        messaging: MessagingService = Depends(get_messaging),
    ):
        try:
            return await messaging.create_conversation(body.patient_id, body.doctor_id)
        except PersistenceError as e:
            raise HTTPException(status_code=502, detail=str(e))

    @app.get("/conversations/{conversation_id}/messages")
    async def list_messages(
        conversation_id: str,
        user: UserProfile = Depends(get_current_user),
        messaging: MessagingService = Depends(get_messaging),
    ):
        return await messaging.fetch_messages(conversation_id)

    @app.post("/conversations/{conversation_id}/messages", status_code=201)
    async def send_message(
        conversation_id: str,
        body: MessageCreate,
        user: UserProfile = Depends(get_current_user),
        messaging: MessagingService = Depends(get_messaging),
    ):
        try:
            return await messaging.send_message(conversation_id, user.id, body.content)
        except PersistenceError as e:
            raise HTTPException(status_code=502, detail=str(e))

    @app.websocket("/conversations/{conversation_id}/stream")
    async def stream_messages(websocket: WebSocket, conversation_id: str, token: Optional[str] = None):
        runtime: AppRuntime = websocket.app.state.runtime
        controller, messaging = runtime.controller, runtime.messaging
        if (
            controller is None
            or messaging is None
            or controller.get_state().user is None
            or not owns_session(controller, token)
        ):
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return

        await websocket.accept()
        queue: asyncio.Queue = asyncio.Queue()
        channel = await messaging.subscribe_to_messages(conversation_id, queue.put_nowait)

        async def forward():
            while True:
                await websocket.send_json(await queue.get())

        sender = asyncio.create_task(forward())
        try:
            while True:
                # Client frames carry nothing; this only notices the disconnect
                await websocket.receive_text()
        except WebSocketDisconnect:
            logger.info(f"Message stream for {conversation_id} closed")
        finally:
            sender.cancel()
            await messaging.unsubscribe(channel)

    # --- HEALTH CHAT ---
    @app.post("/chat")
    async def chat(
        body: ChatRequest,
        runtime: AppRuntime = Depends(get_runtime),
    ):
        try:
            result = await runtime.chat.send_message(body.message)
        except ValueError as e:
            return JSONResponse(status_code=400, content={"error": str(e)})
        except (AnalysisError, ConfigurationError) as e:
            logger.error(f"Error in chat: {e}")
            return JSONResponse(status_code=500, content={"error": str(e)})
        return result.model_dump()

    # --- HEALTH DOCUMENT ANALYSIS ---
    @app.post("/analyze-health-document")
    async def analyze_health_document(
        body: HealthDocumentRequest,
        runtime: AppRuntime = Depends(get_runtime),
    ):
        try:
            result = await runtime.analyzer.analyze(body.description, body.pdf_data, body.file_name)
        except ValueError as e:
            return JSONResponse(status_code=400, content={"error": str(e)})
        except (AnalysisError, ConfigurationError) as e:
            logger.error(f"Error in analyze-health-document: {e}")
            return JSONResponse(status_code=500, content={"error": str(e) or "Failed to analyze document"})
        return result.model_dump(by_alias=True)

    return app


app = create_app()

# --- DEV SERVER ---
if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
