from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from oficina.auth import WorkshopContext, get_workshop_context
from oficina.db import get_db
from oficina.dependencies import render
from oficina.security.csrf import verify_csrf
from oficina.services import ai_service
from oficina.services.order_service import vehicle_history_text

router = APIRouter(tags=['ai'])


@router.get('/diagnostics')
def diagnostics_page(request: Request, ctx: WorkshopContext = Depends(get_workshop_context)):
    return render(request, 'diagnostics.html', {'form': {}, 'result': None})


@router.post('/diagnostics')
async def diagnostics_submit(
    request: Request,
    ctx: WorkshopContext = Depends(get_workshop_context),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    symptoms = str(form.get('symptoms', ''))
    history = str(form.get('vehicle_history', ''))
    result = ai_service.diagnose(symptoms, history)
    return render(
        request,
        'diagnostics.html',
        {
            'form': {'symptoms': symptoms, 'vehicle_history': history},
            'result': result,
            'formatted': ai_service.format_diagnosis(result.data) if result.ok else None,
        },
    )


@router.get('/vehicle-history')
def vehicle_history_page(
    request: Request,
    plate: str | None = None,
    ctx: WorkshopContext = Depends(get_workshop_context),
    db: Session = Depends(get_db),
):
    history = vehicle_history_text(db, ctx=ctx, plate=plate) if plate else ''
    return render(
        request,
        'vehicle_history.html',
        {'form': {'plate': plate or '', 'vehicle_history': history}, 'result': None},
    )


@router.post('/vehicle-history')
async def vehicle_history_submit(
    request: Request,
    ctx: WorkshopContext = Depends(get_workshop_context),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    history = str(form.get('vehicle_history', ''))
    symptoms = str(form.get('current_symptoms', ''))
    result = ai_service.analyze_vehicle_history(history, symptoms)
    return render(
        request,
        'vehicle_history.html',
        {
            'form': {'plate': str(form.get('plate', '')), 'vehicle_history': history, 'current_symptoms': symptoms},
            'result': result,
        },
    )
