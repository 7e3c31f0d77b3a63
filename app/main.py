import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.models.database import init_db
from app.config import settings
from app.api.router import router
from app.errors import AssistantError, CartItemNotFound, EmptyCartError, MessageValidationError
from app.services.chat import ChatOrchestrator
from app.services.context import ContextAssembler
from app.services.sensay import SensayClient
from app.services.shopify import ShopifyClient

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

logger = logging.getLogger("shoppy")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # startup: create tables and the upstream clients
    await init_db(settings.SQLITE_DB_PATH)
    catalog = ShopifyClient(
        settings.SHOPIFY_STORE_DOMAIN,
        settings.SHOPIFY_STOREFRONT_ACCESS_TOKEN,
        settings.SHOPIFY_ADMIN_ACCESS_TOKEN,
    )
    replica = SensayClient(
        settings.SENSAY_API_URL,
        settings.SENSAY_API_KEY,
        settings.SENSAY_API_VERSION,
        timeout=settings.SENSAY_TIMEOUT_SECONDS,
    )
    app.state.catalog = catalog
    app.state.orchestrator = ChatOrchestrator(
        settings.SQLITE_DB_PATH,
        catalog=catalog,
        replica=replica,
        replica_id=settings.SENSAY_REPLICA_UUID,
        store_domain=settings.SHOPIFY_STORE_DOMAIN,
        search_limit=settings.PRODUCT_SEARCH_LIMIT,
        assembler=ContextAssembler(
            settings.SQLITE_DB_PATH,
            context_limit=settings.CONTEXT_MESSAGE_LIMIT,
            focus_scan_limit=settings.FOCUS_SCAN_LIMIT,
            history_limit=settings.PURCHASE_HISTORY_LIMIT,
        ),
    )
    logger.info("Shopping assistant ready (replica %s)", settings.SENSAY_REPLICA_UUID)
    yield
    # shutdown: close HTTP clients
    await catalog.close()
    await replica.close()

app = FastAPI(
    title="Shoppy Shopping Assistant",
    description="A conversational shopping assistant backed by an AI replica and a Shopify store.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AssistantError)
async def assistant_error_handler(request: Request, exc: AssistantError):
    if isinstance(exc, (MessageValidationError, EmptyCartError)):
        status_code = 400
    elif isinstance(exc, CartItemNotFound):
        status_code = 404
    else:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        status_code = 500
    return JSONResponse(status_code=status_code, content={"error": exc.user_message})


app.include_router(router)


@app.get("/api/health")
async def health():
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "Shoppy Shopping Assistant",
    }
