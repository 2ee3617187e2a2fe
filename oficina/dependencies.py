from urllib.parse import urlencode

from fastapi import Request
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates


def get_templates(request: Request) -> Jinja2Templates:
    return request.app.state.templates


def get_client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get('x-forwarded-for')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    if request.client:
        return request.client.host
    return None


def redirect_with(path: str, *, notice: str | None = None, error: str | None = None, **params) -> RedirectResponse:
    """303 back to a page, carrying a flash message in the query string."""
    query = {key: value for key, value in params.items() if value not in (None, '')}
    if notice:
        query['notice'] = notice
    if error:
        query['error'] = error
    target = f'{path}?{urlencode(query)}' if query else path
    return RedirectResponse(target, status_code=303)


def flash_messages(request: Request) -> dict[str, str | None]:
    return {
        'notice': request.query_params.get('notice'),
        'error': request.query_params.get('error'),
    }


def render(request: Request, template_name: str, context: dict, status_code: int = 200):
    templates = get_templates(request)
    payload = {'request': request, 'principal': getattr(request.state, 'principal', None)}
    payload.update(flash_messages(request))
    payload.update(context)
    return templates.TemplateResponse(template_name, payload, status_code=status_code)
