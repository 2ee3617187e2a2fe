from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from oficina.auth import Principal, WorkshopContext, get_current_principal, get_workshop_context
from oficina.db import get_db
from oficina.dependencies import render
from oficina.services.dashboard_service import build_dashboard
from oficina.services.inventory_service import low_stock_items
from oficina.services.subscription_service import get_active_plan, trial_days_left

router = APIRouter(tags=['dashboard'])


@router.get('/dashboard')
def dashboard_page(
    request: Request,
    principal: Principal = Depends(get_current_principal),
    ctx: WorkshopContext = Depends(get_workshop_context),
    db: Session = Depends(get_db),
):
    summary = build_dashboard(db, ctx=ctx)
    return render(
        request,
        'dashboard.html',
        {
            'summary': summary,
            'low_stock': low_stock_items(db, ctx=ctx),
            'plan': get_active_plan(principal.created_at),
            'trial_days_left': trial_days_left(principal.created_at),
        },
    )
