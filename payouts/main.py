from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from payouts.db.database import init_db
from payouts.routes import creators, engagement, revenue, commissions, payouts


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize and cleanup resources."""
    await init_db()
    yield


app = FastAPI(
    title='Creator Payouts API',
    description='Revenue attribution and payout engine for recipe creators',
    version='0.1.0',
    lifespan=lifespan,
)

# CORS for the creator dashboard
app.add_middleware(
    CORSMiddleware,
    allow_origins=['*'],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

# Routes
app.include_router(creators.router, prefix='/api/creators', tags=['creators'])
app.include_router(engagement.router, prefix='/api/engagement', tags=['engagement'])
app.include_router(revenue.router, prefix='/api/revenue', tags=['revenue'])
app.include_router(commissions.router, prefix='/api/commissions', tags=['commissions'])
app.include_router(payouts.router, prefix='/api/payouts', tags=['payouts'])


@app.get('/health')
async def health_check():
    """Health check endpoint."""
    return {'status': 'ok', 'service': 'creator-payouts'}
