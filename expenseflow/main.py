from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn
import logging

from expenseflow.config import settings
from expenseflow.database import db
from expenseflow.errors import ExpenseAppError
from expenseflow.api import approvals, auth, company, expenses, ocr, reports, users

# Setup Logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    db.connect()
    await db.ensure_indexes()
    yield
    db.close()


app = FastAPI(
    title="ExpenseFlow API",
    description="Expense submission, approval workflow and reporting",
    version="1.0.0",
    lifespan=lifespan
)

# CORS Config
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error Handlers
@app.exception_handler(ExpenseAppError)
async def app_error_handler(request: Request, exc: ExpenseAppError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={
            "message": "Validation failed",
            "code": "VALIDATION_ERROR",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"message": "Internal server error", "error": str(exc)})


# Router Registration
app.include_router(auth.router)
app.include_router(users.router)
app.include_router(company.router)
app.include_router(expenses.router)
app.include_router(approvals.router)
app.include_router(ocr.router)
app.include_router(reports.router)


# Health Check
@app.get("/health")
async def health_check():
    return {"status": "ok", "environment": settings.ENVIRONMENT}


if __name__ == "__main__":
    uvicorn.run("expenseflow.main:app", host="0.0.0.0", port=8000, reload=True)
