"""
API Router
Combines all endpoint routers
"""
from fastapi import APIRouter
from salescaller.api.v1.endpoints import (
    calls,
    health,
    jobs,
    leads,
    orders,
    payments,
    reports,
    webhooks,
    whatsapp,
)

api_router = APIRouter()

# Workflows
api_router.include_router(leads.router)
api_router.include_router(calls.router)
api_router.include_router(orders.router)
api_router.include_router(payments.router)
api_router.include_router(whatsapp.router)
api_router.include_router(jobs.router)

# Provider callbacks
api_router.include_router(webhooks.router)

# Read-only
api_router.include_router(reports.router)
api_router.include_router(health.router)
