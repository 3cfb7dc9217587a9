import logging
from contextlib import asynccontextmanager

import stripe
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.config import settings
from core.database import create_db_and_tables
from core.errors import DomainError, ProcessorError
from routes.admin import router as admin_router
from routes.businesses import router as businesses_router
from routes.checkout import router as checkout_router
from routes.memberships import router as memberships_router
from routes.plans import router as plans_router
from routes.subscriptions import router as subscriptions_router
from routes.webhooks import router as webhooks_router

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


# =========================================
# 🏁 Lifespan (DB initialization)
# =========================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    create_db_and_tables()
    print("✅ Database tables created on startup.")
    yield
    print("✅ Application shutting down.")


# =========================================
#  ✅ FastAPI App
# =========================================
app = FastAPI(lifespan=lifespan, title="Wine Club Platform Backend")

allowed_origins = [
    settings.FRONTEND_URL,
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =========================================
# ⚠️ Error Handlers
# =========================================
@app.exception_handler(DomainError)
async def domain_error_handler(request: Request, exc: DomainError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(stripe.StripeError)
async def stripe_error_handler(request: Request, exc: stripe.StripeError):
    logger.error("❌ Stripe error on %s %s: %s", request.method, request.url.path, exc)
    error = ProcessorError.from_stripe(exc)
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


# =========================================
# 📦 Routers
# =========================================
app.include_router(businesses_router)
app.include_router(memberships_router)
app.include_router(plans_router)
app.include_router(subscriptions_router)
app.include_router(checkout_router)
app.include_router(webhooks_router)
app.include_router(admin_router)


# =========================================
# 🩺 Health Check
# =========================================
@app.get("/health")
def health_check():
    return {"status": "ok", "message": "Backend is running", "stripe_configured": settings.STRIPE_CONFIGURED}


@app.get("/")
def read_root():
    return {"message": "Welcome to the Wine Club Platform Backend!"}
