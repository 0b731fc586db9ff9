from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, Form, HTTPException, Request
from fastapi.responses import FileResponse, HTMLResponse, RedirectResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from tablecrm_pos.api.sources import DataSource, build_data_source
from tablecrm_pos.config import Settings, settings as default_settings
from tablecrm_pos.constants import REFERENCE_KINDS, REFERENCE_TITLES, SELECTION_FIELDS, SUBMIT_MODES
from tablecrm_pos.db.sqlite import TokenStore
from tablecrm_pos.models import option_label
from tablecrm_pos.services.order_form import OrderFormController, SubmitState
from tablecrm_pos.services.receipt_pdf import generate_receipt_pdf
from tablecrm_pos.utils.formatters import money
from tablecrm_pos.utils.validators import is_finite_number

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = BASE_DIR / "templates"
STATIC_DIR = BASE_DIR / "static"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
templates.env.filters["money"] = money


def _label(kind: str, entity: Any) -> str:
    if kind == "organizations":
        return entity.label
    return option_label(entity)


def _redirect() -> RedirectResponse:
    return RedirectResponse(url="/", status_code=303)


def create_app(
    cfg: Optional[Settings] = None,
    source: Optional[DataSource] = None,
    token_store: Optional[TokenStore] = None,
) -> FastAPI:
    cfg = cfg or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.basicConfig(
            level=cfg.log_level,
            format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        )
        data_source = source or build_data_source(cfg)
        store = token_store or TokenStore(db_path=cfg.db_path)
        app.state.controller = OrderFormController(data_source, store)
        await app.state.controller.restore_token()
        try:
            yield
        finally:
            app.state.controller.cancel_pending()
            await data_source.aclose()

    app = FastAPI(title="TableCRM POS", lifespan=lifespan)

    if STATIC_DIR.exists():
        app.mount("/static", StaticFiles(directory=str(STATIC_DIR)), name="static")

    def _controller(request: Request) -> OrderFormController:
        return request.app.state.controller

    @app.get("/", response_class=HTMLResponse)
    async def index(request: Request):
        ctl = _controller(request)
        refs = [
            {
                "kind": kind,
                "title": REFERENCE_TITLES[kind],
                "field": next(f for f, k in SELECTION_FIELDS.items() if k == kind),
                "loading": ctl.references[kind].loading,
                "options": [(o.id, _label(kind, o)) for o in ctl.references[kind].items],
            }
            for kind in REFERENCE_KINDS
        ]
        return templates.TemplateResponse(
            request,
            "index.html",
            {
                "ctl": ctl,
                "refs": refs,
                "is_error": ctl.submit_state == SubmitState.ERROR,
            },
        )

    # ---------------- token ----------------

    @app.post("/token")
    async def token_save(request: Request, token: str = Form("")):
        await _controller(request).save_token(token)
        return _redirect()

    # ---------------- client ----------------

    @app.post("/client/search")
    async def client_search(request: Request, phone: str = Form("")):
        ctl = _controller(request)
        ctl.set_client_phone(phone)
        await ctl.settle()
        return _redirect()

    @app.post("/client/select")
    async def client_select(request: Request, client_id: str = Form(...)):
        if not _controller(request).select_client_by_id(client_id):
            raise HTTPException(status_code=404, detail="client not in search results")
        return _redirect()

    # ---------------- references ----------------

    @app.post("/selection")
    async def selection(request: Request, field: str = Form(...), value: str = Form("")):
        if field not in SELECTION_FIELDS:
            raise HTTPException(status_code=400, detail=f"unknown field: {field}")
        _controller(request).set_selection(field, value)
        return _redirect()

    # ---------------- products / cart ----------------

    @app.post("/products/search")
    async def products_search(request: Request, query: str = Form("")):
        ctl = _controller(request)
        ctl.set_product_query(query)
        await ctl.settle()
        return _redirect()

    @app.post("/products/add")
    async def products_add(request: Request, product_id: str = Form(...)):
        if _controller(request).add_product_by_id(product_id) is None:
            raise HTTPException(status_code=404, detail="product not in search results")
        return _redirect()

    @app.post("/cart/{item_id}/update")
    async def cart_update(
        request: Request,
        item_id: str,
        quantity: float = Form(...),
        price: float = Form(...),
        discount: float = Form(0),
    ):
        ctl = _controller(request)
        if ctl.find_cart_item(item_id) is None:
            raise HTTPException(status_code=404, detail="cart item not found")
        if not all(is_finite_number(v) for v in (quantity, price, discount)):
            raise HTTPException(status_code=400, detail="quantity, price and discount must be finite numbers")
        ctl.update_cart_item(item_id, "quantity", quantity)
        ctl.update_cart_item(item_id, "price", price)
        ctl.update_cart_item(item_id, "discount", discount)
        return _redirect()

    @app.post("/cart/{item_id}/remove")
    async def cart_remove(request: Request, item_id: str):
        _controller(request).remove_from_cart(item_id)
        return _redirect()

    # ---------------- submit ----------------

    @app.post("/submit")
    async def submit(request: Request, mode: str = Form(...), comment: str = Form("")):
        ctl = _controller(request)
        if mode not in SUBMIT_MODES:
            raise HTTPException(status_code=400, detail=f"unknown mode: {mode}")
        ctl.set_comment(comment)
        await ctl.submit(mode)
        return _redirect()

    @app.get("/receipt", response_class=FileResponse)
    async def receipt(request: Request):
        ctl = _controller(request)
        if ctl.last_sale is None:
            raise HTTPException(status_code=404, detail="no sale yet")
        path = generate_receipt_pdf(ctl.last_sale, cfg.export_dir)
        logger.info("Чек сформирован: %s", path)
        return FileResponse(path, media_type="application/pdf", filename=Path(path).name)

    return app


app = create_app()
