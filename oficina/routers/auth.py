from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from oficina.auth import WorkshopContext, context_for
from oficina.config import settings
from oficina.db import get_db
from oficina.dependencies import get_client_ip, render
from oficina.models import UserProfile
from oficina.security.csrf import verify_csrf
from oficina.security.passwords import verify_password
from oficina.security.sessions import create_web_session, revoke_web_session
from oficina.services.audit_service import log_audit, log_auth_event
from oficina.services.workshop_service import parse_signup_input, signup

router = APIRouter(tags=['auth'])

LOGIN_FAILED = 'Usuário ou senha inválidos'


def _login_response(token: str) -> RedirectResponse:
    response = RedirectResponse('/dashboard', status_code=303)
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_minutes * 60,
    )
    return response


def _user_context(user: UserProfile, request: Request) -> WorkshopContext:
    return WorkshopContext(workshop_id=user.workshop_id, actor_id=user.id, role=user.role, ip=get_client_ip(request))


@router.get('/login')
def login_page(request: Request):
    return render(request, 'login.html', {})


@router.post('/login')
async def login_submit(
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    username = str(form.get('username', '')).strip().lower()
    password = str(form.get('password', ''))
    ip = get_client_ip(request)
    user_agent = request.headers.get('user-agent')

    user = db.execute(select(UserProfile).where(UserProfile.username == username)).scalar_one_or_none()
    failure_reason = None
    if not user:
        failure_reason = 'UNKNOWN_USERNAME'
    elif not user.active:
        failure_reason = 'INACTIVE_USER'
    elif not verify_password(password, user.password_hash):
        failure_reason = 'BAD_PASSWORD'

    if failure_reason:
        log_auth_event(
            db,
            attempted_username=username,
            success=False,
            failure_reason=failure_reason,
            user_id=user.id if user else None,
            ip=ip,
            user_agent=user_agent,
        )
        db.commit()
        return render(request, 'login.html', {'error': LOGIN_FAILED}, status_code=401)

    token = create_web_session(db, user.id, ip=ip, user_agent=user_agent)
    log_auth_event(db, attempted_username=username, success=True, user_id=user.id, ip=ip, user_agent=user_agent)
    log_audit(db, ctx=_user_context(user, request), action='AUTH_LOGIN', metadata={'username': username})
    db.commit()
    return _login_response(token)


@router.get('/signup')
def signup_page(request: Request):
    return render(request, 'signup.html', {})


@router.post('/signup')
async def signup_submit(
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    form = await request.form()
    try:
        data = parse_signup_input(dict(form))
        workshop, user = signup(db, data=data)
    except ValueError as exc:
        db.rollback()
        return render(
            request,
            'signup.html',
            {'error': str(exc), 'form': {'workshop_name': form.get('workshop_name', ''), 'username': form.get('username', '')}},
            status_code=400,
        )

    ip = get_client_ip(request)
    token = create_web_session(db, user.id, ip=ip, user_agent=request.headers.get('user-agent'))
    log_audit(
        db,
        ctx=_user_context(user, request),
        action='WORKSHOP_SIGNUP',
        entity_type='workshop',
        entity_id=workshop.id,
        metadata={'username': user.username},
    )
    db.commit()
    return _login_response(token)


@router.post('/logout')
def logout(request: Request, db: Session = Depends(get_db), _: None = Depends(verify_csrf)):
    principal = getattr(request.state, 'principal', None)
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        revoke_web_session(db, token)

    if principal:
        log_audit(db, ctx=context_for(principal, request), action='AUTH_LOGOUT')
    db.commit()

    response = RedirectResponse('/login', status_code=303)
    response.delete_cookie(settings.session_cookie_name)
    return response
