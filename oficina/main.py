from decimal import Decimal
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from oficina.config import settings
from oficina.logging_config import configure_logging
from oficina.routers import ai, auth, dashboard, financial, inventory, mechanics, orders
from oficina.routers import settings as workshop_settings
from oficina.security.csrf import install_csrf_cookie_middleware
from oficina.security.headers import install_security_headers
from oficina.security.sessions import install_auth_session_middleware
from oficina.services.subscription_service import get_active_plan

configure_logging(level=settings.log_level, json_output=settings.log_json)

app = FastAPI(title='Oficina Manager')

TEMPLATE_DIR = Path(__file__).resolve().parent / 'templates'
app.state.templates = Jinja2Templates(directory=str(TEMPLATE_DIR))


def _csrf_token(request: Request) -> str:
    return getattr(request.state, 'csrf_token', '')


def _brl(value) -> str:
    amount = Decimal(value or 0).quantize(Decimal('0.01'))
    text = f'{amount:,.2f}'.replace(',', '_').replace('.', ',').replace('_', '.')
    return f'R$ {text}'


def _br_date(value) -> str:
    if value is None:
        return ''
    return value.strftime('%d/%m/%Y')


def _plan_for(principal) -> str:
    return get_active_plan(principal.created_at if principal else None).value


app.state.templates.env.globals['csrf_token'] = _csrf_token
app.state.templates.env.globals['plan_for'] = _plan_for
app.state.templates.env.filters['brl'] = _brl
app.state.templates.env.filters['br_date'] = _br_date

install_security_headers(app)
install_csrf_cookie_middleware(app)
install_auth_session_middleware(app)

app.include_router(auth.router)
app.include_router(dashboard.router)
app.include_router(orders.router)
app.include_router(inventory.router)
app.include_router(mechanics.router)
app.include_router(financial.router)
app.include_router(ai.router)
app.include_router(workshop_settings.router)


@app.get('/')
def root():
    return RedirectResponse('/dashboard', status_code=303)


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
