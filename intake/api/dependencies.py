"""
FastAPI dependencies.

Services are built once in the app lifespan and stored on ``app.state``;
routes receive them through ``Depends`` so tests can swap them with
``app.dependency_overrides``.
"""

from __future__ import annotations

from fastapi import Request

from intake.services.call_pipeline import CallPipeline
from intake.services.caller_store import CallerIdentityStore
from intake.services.lead_reconciliation import LeadReconciler


def get_pipeline(request: Request) -> CallPipeline:
    return request.app.state.pipeline


def get_caller_store(request: Request) -> CallerIdentityStore:
    return request.app.state.pipeline.callers


def get_lead_reconciler(request: Request) -> LeadReconciler:
    return request.app.state.pipeline.leads
