from __future__ import annotations

import csv
from datetime import date
from io import StringIO

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from oficina.auth import Principal, WorkshopContext, get_current_principal, require_admin_context
from oficina.db import get_db
from oficina.dependencies import redirect_with, render
from oficina.models import TransactionType
from oficina.security.csrf import verify_csrf
from oficina.services import ledger_service
from oficina.services.audit_service import log_audit
from oficina.services.dashboard_service import build_financial_overview
from oficina.services.subscription_service import can_see_cashflow, get_active_plan
from oficina.view_state import ConfirmingDelete, Editing, parse_view_state

router = APIRouter(prefix='/financial', tags=['financial'])


def _parse_date(raw: str | None) -> date | None:
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Invalid date filter') from exc


def _parse_type(raw: str | None) -> TransactionType | None:
    if not raw:
        return None
    try:
        return TransactionType(raw.upper())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail='Invalid type filter') from exc


@router.get('')
def financial_page(
    request: Request,
    search: str | None = None,
    type: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    principal: Principal = Depends(get_current_principal),
    ctx: WorkshopContext = Depends(require_admin_context),
    db: Session = Depends(get_db),
):
    view = parse_view_state(
        request.query_params,
        lambda transaction_id: ledger_service.get_transaction(db, ctx=ctx, transaction_id=transaction_id),
        allowed=[Editing.kind, ConfirmingDelete.kind],
    )
    plan = get_active_plan(principal.created_at)
    transactions = ledger_service.list_transactions(
        db,
        ctx=ctx,
        search=search,
        tx_type=_parse_type(type),
        date_from=_parse_date(date_from),
        date_to=_parse_date(date_to),
    )
    return render(
        request,
        'financial.html',
        {
            'overview': build_financial_overview(db, ctx=ctx),
            'plan': plan,
            'show_cashflow': can_see_cashflow(plan),
            'transactions': transactions,
            'filters': {'search': search or '', 'type': type or '', 'date_from': date_from or '', 'date_to': date_to or ''},
            'transaction_types': list(TransactionType),
            'view': view,
        },
    )


@router.get('/export.csv')
def export_csv(
    search: str | None = None,
    type: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    ctx: WorkshopContext = Depends(require_admin_context),
    db: Session = Depends(get_db),
):
    transactions = ledger_service.list_transactions(
        db,
        ctx=ctx,
        search=search,
        tx_type=_parse_type(type),
        date_from=_parse_date(date_from),
        date_to=_parse_date(date_to),
    )

    sio = StringIO()
    writer = csv.writer(sio)
    writer.writerow(['Data', 'Descrição', 'Categoria', 'Tipo', 'Valor', 'Origem', 'Referência'])
    for row in transactions:
        writer.writerow(
            [
                row.date.date().isoformat(),
                row.description,
                row.category,
                row.type.value,
                row.value,
                row.reference_type.value,
                row.reference_id or '',
            ]
        )

    log_audit(db, ctx=ctx, action='TRANSACTIONS_EXPORTED_CSV', metadata={'rows': len(transactions)})
    db.commit()

    sio.seek(0)
    return StreamingResponse(
        iter([sio.getvalue()]),
        media_type='text/csv',
        headers={'Content-Disposition': 'attachment; filename=lancamentos.csv'},
    )


@router.post('/save')
async def save_transaction(
    request: Request,
    ctx: WorkshopContext = Depends(require_admin_context),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    raw_id = str(form.get('transaction_id', '')).strip()
    transaction_id = int(raw_id) if raw_id.isdigit() else None
    try:
        data = ledger_service.parse_transaction_input(dict(form))
        if transaction_id is None:
            row = ledger_service.create_transaction(db, ctx=ctx, data=data)
        else:
            row = ledger_service.update_transaction(db, ctx=ctx, transaction_id=transaction_id, data=data)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        db.rollback()
        return redirect_with('/financial', error=str(exc), view=Editing.kind, id=transaction_id)

    log_audit(
        db,
        ctx=ctx,
        action='TRANSACTION_CREATED' if transaction_id is None else 'TRANSACTION_UPDATED',
        entity_type='financial_transaction',
        entity_id=row.id,
        metadata={'type': row.type.value, 'value': str(row.value)},
    )
    db.commit()
    return redirect_with('/financial', notice='Lançamento salvo.')


@router.post('/{transaction_id}/delete')
def delete_transaction(
    transaction_id: int,
    ctx: WorkshopContext = Depends(require_admin_context),
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    try:
        row = ledger_service.delete_transaction(db, ctx=ctx, transaction_id=transaction_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PermissionError as exc:
        return redirect_with('/financial', error=str(exc))

    log_audit(
        db,
        ctx=ctx,
        action='TRANSACTION_DELETED',
        entity_type='financial_transaction',
        entity_id=transaction_id,
        metadata={'type': row.type.value, 'value': str(row.value)},
    )
    db.commit()
    return redirect_with('/financial', notice='Lançamento excluído.')
